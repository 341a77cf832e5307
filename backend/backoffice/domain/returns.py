"""
Return and refund lifecycle.

WHY: A customer brings back part of a past sale. The return is priced from
the original sale lines so that any discount the customer got is not
refunded twice, it cannot exceed what is still unreturned on each line, and
the store policy decides whether a manager must sign it off first.

LIFECYCLE:
    create --> approved                 (inside the return window)
    create --> pending_approval         (past the window)
    pending_approval --approve--> approved
    pending_approval --reject---> rejected
    approved --complete--> completed    (refund paid, resellable units restocked)
    pending_approval|approved --cancel--> cancelled

    completed, rejected and cancelled are terminal.

STOCK:
    Only completion touches the ledger, and only for resellable (undamaged)
    items, which go back to the outlet the sale was made at.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from ..time_utils import utcnow
from .identifiers import PREFIX_RETURN, is_valid_identifier
from .ledger import MOVEMENT_RETURN, REFERENCE_RETURN, StockLedger, StockMovement
from .policies import ReturnPolicy, check_category, check_return_window
from .refunds import calculate_item_refund, sale_line_price
from .results import (
    LifecycleResult,
    ValidationResult,
    invalid_transition,
    policy_blocked,
    terminal_state,
    validation_error,
)
from .workflow import StatusMachine


RETURN_STATUS_PENDING_APPROVAL = "pending_approval"
RETURN_STATUS_APPROVED = "approved"
RETURN_STATUS_COMPLETED = "completed"
RETURN_STATUS_REJECTED = "rejected"
RETURN_STATUS_CANCELLED = "cancelled"

RETURN_STATUSES = frozenset({
    RETURN_STATUS_PENDING_APPROVAL,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_COMPLETED,
    RETURN_STATUS_REJECTED,
    RETURN_STATUS_CANCELLED,
})

# Returns in these statuses no longer hold any quantity of the sale.
RELEASED_STATUSES = frozenset({RETURN_STATUS_REJECTED, RETURN_STATUS_CANCELLED})

RETURN_MACHINE = StatusMachine(
    resource="return",
    transitions={
        RETURN_STATUS_PENDING_APPROVAL: frozenset({
            RETURN_STATUS_APPROVED, RETURN_STATUS_REJECTED, RETURN_STATUS_CANCELLED,
        }),
        RETURN_STATUS_APPROVED: frozenset({RETURN_STATUS_COMPLETED, RETURN_STATUS_CANCELLED}),
        RETURN_STATUS_COMPLETED: frozenset(),
        RETURN_STATUS_REJECTED: frozenset(),
        RETURN_STATUS_CANCELLED: frozenset(),
    },
)

REASON_DAMAGED = "damaged"
REASON_WRONG_PRODUCT = "wrong_product"
REASON_NOT_AS_DESCRIBED = "not_as_described"
REASON_CHANGED_MIND = "changed_mind"
REASON_OTHER = "other"

RETURN_REASONS = frozenset({
    REASON_DAMAGED,
    REASON_WRONG_PRODUCT,
    REASON_NOT_AS_DESCRIBED,
    REASON_CHANGED_MIND,
    REASON_OTHER,
})

REFUND_METHOD_CASH = "cash"
REFUND_METHOD_CARD = "card"
REFUND_METHOD_EWALLET = "e-wallet"

REFUND_METHODS = frozenset({REFUND_METHOD_CASH, REFUND_METHOD_CARD, REFUND_METHOD_EWALLET})


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class SaleLine:
    id: str
    product_id: str
    quantity: int
    unit_price: int
    discount_amount: int = 0
    original_price: Optional[int] = None
    category_id: Optional[str] = None
    returned_quantity: int = 0
    product_name: Optional[str] = None


@dataclass(frozen=True)
class Sale:
    id: str
    outlet_id: Optional[str]
    sale_date: datetime
    lines: tuple[SaleLine, ...] = ()

    def line(self, line_id: str) -> Optional[SaleLine]:
        for line in self.lines:
            if line.id == line_id:
                return line
        return None

    @property
    def lines_by_id(self) -> dict[str, SaleLine]:
        return {line.id: line for line in self.lines}


@dataclass(frozen=True)
class ReturnItemInput:
    transaction_item_id: str
    quantity: int
    reason: str = REASON_OTHER
    is_damaged: bool = False
    reason_detail: Optional[str] = None


@dataclass(frozen=True)
class ReturnInput:
    transaction_id: str
    items: Sequence[ReturnItemInput]
    notes: Optional[str] = None


@dataclass(frozen=True)
class ReturnItem:
    transaction_item_id: str
    product_id: str
    quantity: int
    original_price: int
    discount_amount: int
    refund_amount: int
    reason: str
    is_damaged: bool = False
    is_resellable: bool = True
    reason_detail: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class Return:
    id: Optional[str]
    return_number: str
    transaction_id: str
    outlet_id: Optional[str]
    status: str
    total_refund: int
    requires_approval: bool
    created_by: str
    items: tuple[ReturnItem, ...] = ()
    refund_method: Optional[str] = None
    approved_by: Optional[str] = None
    approval_reason: Optional[str] = None
    rejected_reason: Optional[str] = None
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return RETURN_MACHINE.is_terminal(self.status)


def _is_blank(value) -> bool:
    return value is None or not str(value).strip()


# =============================================================================
# QUANTITIES
# =============================================================================

def returned_quantities(returns: Iterable[Return]) -> dict[str, int]:
    """Quantity already claimed per sale line by returns that are not rejected or cancelled."""
    totals: dict[str, int] = {}
    for ret in returns:
        if ret.status in RELEASED_STATUSES:
            continue
        for item in ret.items:
            totals[item.transaction_item_id] = totals.get(item.transaction_item_id, 0) + item.quantity
    return totals


def calculate_available_quantity(original_quantity: int, returned_quantity: int) -> int:
    return max(0, original_quantity - returned_quantity)


def validate_return_quantities(
    items: Sequence[ReturnItemInput],
    sale: Sale,
    already_returned: Mapping[str, int],
) -> ValidationResult:
    """
    Check requested quantities against what is still returnable per sale line.

    Lines requested more than once are checked on their combined quantity.
    """
    errors = []
    lines = sale.lines_by_id
    requested: OrderedDict[str, int] = OrderedDict()

    for index, item in enumerate(items, start=1):
        line = lines.get(item.transaction_item_id)
        if line is None:
            errors.append(validation_error(
                f"Item {index}: Sale line {item.transaction_item_id} not found in transaction {sale.id}",
                item=index, transaction_item_id=item.transaction_item_id,
            ))
            continue
        if item.quantity <= 0:
            errors.append(validation_error(
                f"Return quantity must be greater than 0 for product {line.product_id}",
                item=index, product_id=line.product_id, product_name=line.product_name,
                transaction_item_id=line.id, requested=item.quantity,
            ))
            continue
        requested[line.id] = requested.get(line.id, 0) + item.quantity

    for line_id, quantity in requested.items():
        line = lines[line_id]
        available = calculate_available_quantity(line.quantity, already_returned.get(line_id, 0))
        if quantity > available:
            errors.append(validation_error(
                f"Return quantity for product {line.product_id} exceeds available quantity. "
                f"Available: {available}, requested: {quantity}",
                transaction_item_id=line_id,
                product_id=line.product_id,
                product_name=line.product_name,
                available=available,
                requested=quantity,
            ))

    return ValidationResult(tuple(errors))


def validate_return_input(data: ReturnInput, sale: Sale, already_returned: Mapping[str, int]) -> ValidationResult:
    errors = []
    if _is_blank(data.transaction_id):
        errors.append(validation_error("Transaction is required", field="transaction_id"))
    elif data.transaction_id != sale.id:
        errors.append(validation_error(
            f"Return references transaction {data.transaction_id}, not {sale.id}",
            field="transaction_id",
        ))

    if not data.items:
        errors.append(validation_error("At least one item is required", field="items"))
        return ValidationResult(tuple(errors))

    for index, item in enumerate(data.items, start=1):
        if item.reason not in RETURN_REASONS:
            errors.append(validation_error(
                f"Item {index}: Invalid return reason '{item.reason}'",
                item=index, reason=item.reason,
            ))

    errors.extend(validate_return_quantities(data.items, sale, already_returned).errors)
    return ValidationResult(tuple(errors))


# =============================================================================
# CREATION
# =============================================================================

def create_return(
    data: ReturnInput,
    sale: Sale,
    *,
    return_number: str,
    created_by: str,
    already_returned: Mapping[str, int] | None = None,
    policy: ReturnPolicy | None = None,
    return_id: str | None = None,
    now: datetime | None = None,
) -> LifecycleResult[Return]:
    """
    Validate, price and build a new return against `sale`.

    Steps:
        1. Validate reasons and quantities (all errors collected)
        2. Price every item from its sale line, discount preserved
        3. Apply the policy: a non-returnable category blocks the whole
           return; otherwise a sale past the window needs approval
        4. Start in `approved`, or `pending_approval` when approval is needed

    Args:
        data: Items to return and notes
        sale: The original sale with its lines
        return_number: Pre-allocated RTN-YYYYMMDD-#### number
        created_by: Actor creating the return
        already_returned: Quantity per sale line held by other live returns
        policy: Active return policy (None means no restrictions)
    """
    already_returned = already_returned or {}
    validation = validate_return_input(data, sale, already_returned)
    errors = list(validation.errors)
    if not is_valid_identifier(return_number, PREFIX_RETURN):
        errors.append(validation_error(f"Invalid return number '{return_number}'", field="return_number"))
    if errors:
        return LifecycleResult.fail(*errors)

    lines = sale.lines_by_id
    items = []
    for index, item in enumerate(data.items, start=1):
        line = lines[item.transaction_item_id]
        price = sale_line_price(line)
        try:
            refund_amount = calculate_item_refund(price, line.discount_amount, item.quantity)
        except ValueError as e:
            errors.append(validation_error(
                f"Item {index}: {e}", item=index, transaction_item_id=line.id, product_id=line.product_id,
            ))
            continue
        items.append(ReturnItem(
            transaction_item_id=line.id,
            product_id=line.product_id,
            quantity=item.quantity,
            original_price=price,
            discount_amount=line.discount_amount,
            refund_amount=refund_amount,
            reason=item.reason,
            is_damaged=item.is_damaged,
            is_resellable=not item.is_damaged,
            reason_detail=(item.reason_detail or "").strip() or None,
        ))
    if errors:
        return LifecycleResult.fail(*errors)

    now = now or utcnow()
    requires_approval = False
    if policy is not None and policy.is_active:
        blocked = []
        for item in items:
            category_id = lines[item.transaction_item_id].category_id
            check = check_category(category_id, policy)
            if not check.allowed:
                blocked.append(policy_blocked(
                    f"{check.reason} (product {item.product_id})",
                    product_id=item.product_id, category_id=category_id,
                ))
        if blocked:
            return LifecycleResult.fail(*blocked)
        requires_approval = check_return_window(sale.sale_date, policy, now=now).requires_approval

    notes = data.notes.strip() if data.notes else None
    ret = Return(
        id=return_id,
        return_number=return_number,
        transaction_id=sale.id,
        outlet_id=sale.outlet_id,
        status=RETURN_STATUS_PENDING_APPROVAL if requires_approval else RETURN_STATUS_APPROVED,
        total_refund=sum(item.refund_amount for item in items),
        requires_approval=requires_approval,
        created_by=created_by,
        items=tuple(items),
        notes=notes or None,
        created_at=now,
        updated_at=now,
    )
    return LifecycleResult.ok(ret)


# =============================================================================
# APPROVAL GATE
# =============================================================================

_ALREADY = {
    RETURN_STATUS_COMPLETED: "Return is already completed",
    RETURN_STATUS_CANCELLED: "Return is already cancelled",
    RETURN_STATUS_REJECTED: "Return is already rejected",
    RETURN_STATUS_APPROVED: "Return is already approved",
}


def can_approve_or_reject(ret: Return, target: str = RETURN_STATUS_APPROVED):
    """None if `ret` is awaiting approval, else the error naming its status."""
    if ret.status == RETURN_STATUS_PENDING_APPROVAL:
        return None
    message = _ALREADY.get(ret.status, f"Return is not awaiting approval (current status: {ret.status})")
    if RETURN_MACHINE.is_terminal(ret.status):
        return terminal_state("return", ret.status, message, target)
    return invalid_transition("return", ret.status, target, message)


def approve_return(
    ret: Return,
    approver_id: str,
    reason: str,
    *,
    now: datetime | None = None,
) -> LifecycleResult[Return]:
    """pending_approval -> approved, recording who approved it and why."""
    errors = []
    if _is_blank(approver_id):
        errors.append(validation_error("Approver is required", field="approved_by"))
    if _is_blank(reason):
        errors.append(validation_error("Reason is required", field="reason"))
    if errors:
        return LifecycleResult.fail(*errors)

    error = can_approve_or_reject(ret, RETURN_STATUS_APPROVED)
    if error is not None:
        return LifecycleResult.fail(error)

    return LifecycleResult.ok(replace(
        ret,
        status=RETURN_STATUS_APPROVED,
        approved_by=approver_id,
        approval_reason=reason.strip(),
        updated_at=now or utcnow(),
    ))


def reject_return(ret: Return, reason: str, *, now: datetime | None = None) -> LifecycleResult[Return]:
    """pending_approval -> rejected, recording why."""
    if _is_blank(reason):
        return LifecycleResult.fail(validation_error("Reason is required", field="reason"))

    error = can_approve_or_reject(ret, RETURN_STATUS_REJECTED)
    if error is not None:
        return LifecycleResult.fail(error)

    return LifecycleResult.ok(replace(
        ret,
        status=RETURN_STATUS_REJECTED,
        rejected_reason=reason.strip(),
        updated_at=now or utcnow(),
    ))


# =============================================================================
# COMPLETION / CANCELLATION
# =============================================================================

def complete_return(
    ret: Return,
    ledger: StockLedger,
    refund_method: str,
    *,
    now: datetime | None = None,
) -> LifecycleResult[Return]:
    """
    approved -> completed: pay the refund and restock resellable units.

    Each resellable item adds its quantity to the ledger at the return's
    outlet and emits a `return` movement. Damaged items are not restocked.

    Returns:
        Result with the completed return, the new ledger and the movements
    """
    if ret.status == RETURN_STATUS_COMPLETED:
        return LifecycleResult.fail(terminal_state(
            "return", ret.status, "Return is already completed", RETURN_STATUS_COMPLETED,
        ))
    if ret.status in RELEASED_STATUSES:
        return LifecycleResult.fail(terminal_state(
            "return", ret.status, "Return has been cancelled or rejected", RETURN_STATUS_COMPLETED,
        ))
    if ret.status == RETURN_STATUS_PENDING_APPROVAL:
        return LifecycleResult.fail(invalid_transition(
            "return", ret.status, RETURN_STATUS_COMPLETED, "Return is still awaiting approval",
        ))
    error = RETURN_MACHINE.check(ret.status, RETURN_STATUS_COMPLETED)
    if error is not None:
        return LifecycleResult.fail(error)

    if refund_method not in REFUND_METHODS:
        return LifecycleResult.fail(validation_error(
            f"Invalid refund method '{refund_method}'. Must be one of: {', '.join(sorted(REFUND_METHODS))}",
            field="refund_method", refund_method=refund_method,
        ))

    resellable = [item for item in ret.items if item.is_resellable and item.quantity > 0]
    if resellable and not ret.outlet_id:
        return LifecycleResult.fail(validation_error(
            "Return has no outlet to restock resellable items", field="outlet_id",
        ))

    new_ledger = ledger
    movements = []
    for item in resellable:
        new_ledger = new_ledger.adjust(ret.outlet_id, item.product_id, item.quantity)
        movements.append(StockMovement(
            outlet_id=ret.outlet_id,
            product_id=item.product_id,
            movement_type=MOVEMENT_RETURN,
            quantity=item.quantity,
            reference_type=REFERENCE_RETURN,
            reference_id=ret.id or ret.return_number,
            notes=f"Return {ret.return_number}",
        ))

    now = now or utcnow()
    completed = replace(
        ret,
        status=RETURN_STATUS_COMPLETED,
        refund_method=refund_method,
        completed_at=now,
        updated_at=now,
    )
    return LifecycleResult.ok(completed, ledger=new_ledger, movements=movements)


def sale_line_increments(ret: Return) -> dict[str, int]:
    """Quantity to add to each sale line's returned_quantity when `ret` completes."""
    totals: dict[str, int] = {}
    for item in ret.items:
        totals[item.transaction_item_id] = totals.get(item.transaction_item_id, 0) + item.quantity
    return totals


def cancel_return(ret: Return, *, now: datetime | None = None) -> LifecycleResult[Return]:
    """pending_approval|approved -> cancelled. No stock effect."""
    if ret.status == RETURN_STATUS_COMPLETED:
        return LifecycleResult.fail(terminal_state(
            "return", ret.status, "Completed returns cannot be cancelled", RETURN_STATUS_CANCELLED,
        ))
    if ret.status in (RETURN_STATUS_CANCELLED, RETURN_STATUS_REJECTED):
        return LifecycleResult.fail(terminal_state(
            "return", ret.status, _ALREADY[ret.status], RETURN_STATUS_CANCELLED,
        ))
    error = RETURN_MACHINE.check(ret.status, RETURN_STATUS_CANCELLED)
    if error is not None:
        return LifecycleResult.fail(error)

    return LifecycleResult.ok(replace(ret, status=RETURN_STATUS_CANCELLED, updated_at=now or utcnow()))


def transition_return(
    ret: Return,
    target: str,
    *,
    actor_id: str | None = None,
    reason: str | None = None,
    refund_method: str | None = None,
    ledger: StockLedger | None = None,
    now: datetime | None = None,
) -> LifecycleResult[Return]:
    """Dispatch to approve/reject/complete/cancel by target status."""
    if target == RETURN_STATUS_APPROVED:
        return approve_return(ret, actor_id, reason, now=now)
    if target == RETURN_STATUS_REJECTED:
        return reject_return(ret, reason, now=now)
    if target == RETURN_STATUS_COMPLETED:
        return complete_return(ret, ledger or StockLedger(), refund_method, now=now)
    if target == RETURN_STATUS_CANCELLED:
        return cancel_return(ret, now=now)
    error = RETURN_MACHINE.check(ret.status, target)
    return LifecycleResult.fail(error or invalid_transition("return", ret.status, target))


# =============================================================================
# LISTINGS
# =============================================================================

def is_pending_approval(ret: Return) -> bool:
    return ret.status == RETURN_STATUS_PENDING_APPROVAL and ret.requires_approval


def filter_pending_approvals(returns: Iterable[Return]) -> list[Return]:
    return [ret for ret in returns if is_pending_approval(ret)]


def filter_returns(
    returns: Iterable[Return],
    *,
    status: str | None = None,
    outlet_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[Return]:
    """Filter by status, outlet and inclusive created_at range."""
    result = list(returns)
    if status:
        result = [r for r in result if r.status == status]
    if outlet_id:
        result = [r for r in result if r.outlet_id == outlet_id]
    if start_date is not None:
        result = [r for r in result if r.created_at is not None and r.created_at >= start_date]
    if end_date is not None:
        result = [r for r in result if r.created_at is not None and r.created_at <= end_date]
    return result
