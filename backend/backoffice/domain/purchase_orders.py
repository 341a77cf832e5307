"""
Purchase order lifecycle.

WHY: Purchasing is where stock enters the business. The order records what
was asked of the supplier; receiving records what actually arrived. Only
the received quantity ever reaches the stock ledger, and any difference
against the order is written into the order notes rather than rejected.

LIFECYCLE:
    pending --approve--> approved --receive--> received
    pending|approved --cancel--> cancelled

    received and cancelled are terminal.

TOTALS:
    total_amount = sum(quantity * unit_price) over the items. It is always
    computed here, never accepted from the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, Optional, Sequence

from ..time_utils import utcnow
from .identifiers import PREFIX_PURCHASE_ORDER, is_valid_identifier
from .ledger import MOVEMENT_IN, REFERENCE_PURCHASE_ORDER, StockLedger, StockMovement
from .results import (
    KIND_INVALID_TRANSITION,
    LifecycleResult,
    ValidationResult,
    invalid_transition,
    validation_error,
)
from .workflow import StatusMachine


PO_STATUS_PENDING = "pending"
PO_STATUS_APPROVED = "approved"
PO_STATUS_RECEIVED = "received"
PO_STATUS_CANCELLED = "cancelled"

PO_STATUSES = frozenset({PO_STATUS_PENDING, PO_STATUS_APPROVED, PO_STATUS_RECEIVED, PO_STATUS_CANCELLED})

PO_MACHINE = StatusMachine(
    resource="purchase order",
    transitions={
        PO_STATUS_PENDING: frozenset({PO_STATUS_APPROVED, PO_STATUS_CANCELLED}),
        PO_STATUS_APPROVED: frozenset({PO_STATUS_RECEIVED, PO_STATUS_CANCELLED}),
        PO_STATUS_RECEIVED: frozenset(),
        PO_STATUS_CANCELLED: frozenset(),
    },
)

TERMINAL_STATUSES = PO_MACHINE.terminal_statuses

NOTES_SEPARATOR = "; "


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class PurchaseOrderItemInput:
    product_id: str
    quantity: int
    unit_price: int


@dataclass(frozen=True)
class PurchaseOrderInput:
    supplier_id: str
    outlet_id: str
    items: Sequence[PurchaseOrderItemInput]
    expected_date: Optional[datetime] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PurchaseOrderItem:
    product_id: str
    quantity: int
    unit_price: int
    total_price: int
    received_quantity: int = 0
    id: Optional[str] = None


@dataclass(frozen=True)
class PurchaseOrder:
    id: Optional[str]
    order_number: str
    supplier_id: str
    user_id: str
    outlet_id: str
    total_amount: int
    status: str
    order_date: datetime
    items: tuple[PurchaseOrderItem, ...] = ()
    expected_date: Optional[datetime] = None
    received_date: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return PO_MACHINE.is_terminal(self.status)


@dataclass(frozen=True)
class ReceivedItem:
    product_id: str
    received_quantity: int


@dataclass(frozen=True)
class Discrepancy:
    product_id: str
    ordered_quantity: int
    received_quantity: int

    @property
    def difference(self) -> int:
        return self.received_quantity - self.ordered_quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "ordered_quantity": self.ordered_quantity,
            "received_quantity": self.received_quantity,
            "difference": self.difference,
        }


@dataclass(frozen=True)
class DiscrepancyReport:
    discrepancies: tuple[Discrepancy, ...] = field(default_factory=tuple)

    @property
    def has_discrepancy(self) -> bool:
        return bool(self.discrepancies)


def _is_blank(value) -> bool:
    return value is None or not str(value).strip()


# =============================================================================
# CREATION
# =============================================================================

def validate_purchase_order_input(data: PurchaseOrderInput) -> ValidationResult:
    """
    Check a new order. Every problem is collected; nothing is fail-fast.

    Rules:
    - supplier and outlet are required
    - at least one item
    - each item: product id present, quantity > 0, unit price >= 0
    - each product on one line only
    """
    errors = []

    if _is_blank(data.supplier_id):
        errors.append(validation_error("Supplier is required", field="supplier_id"))

    if _is_blank(data.outlet_id):
        errors.append(validation_error("Outlet is required", field="outlet_id"))

    if not data.items:
        errors.append(validation_error("At least one item is required", field="items"))
    else:
        seen: set[str] = set()
        for index, item in enumerate(data.items, start=1):
            if _is_blank(item.product_id):
                errors.append(validation_error(f"Item {index}: Product ID is required", item=index))
            elif item.product_id.strip() in seen:
                errors.append(validation_error(
                    f"Item {index}: Product {item.product_id.strip()} is listed more than once",
                    item=index, product_id=item.product_id.strip(),
                ))
            else:
                seen.add(item.product_id.strip())
            if item.quantity <= 0:
                errors.append(validation_error(
                    f"Item {index}: Quantity must be greater than 0",
                    item=index, product_id=item.product_id, quantity=item.quantity,
                ))
            if item.unit_price < 0:
                errors.append(validation_error(
                    f"Item {index}: Unit price cannot be negative",
                    item=index, product_id=item.product_id, unit_price=item.unit_price,
                ))

    return ValidationResult(tuple(errors))


def calculate_total(items: Iterable) -> int:
    """Sum of quantity * unit_price; 0 for no items."""
    return sum(item.quantity * item.unit_price for item in items)


def create_purchase_order(
    data: PurchaseOrderInput,
    *,
    order_number: str,
    user_id: str,
    order_id: str | None = None,
    now: datetime | None = None,
) -> LifecycleResult[PurchaseOrder]:
    """
    Validate and build a new order in `pending`.

    Args:
        data: Supplier, outlet and requested items
        order_number: Pre-allocated PO-YYYYMMDD-#### number
        user_id: Actor creating the order
        order_id: Record id, when the caller assigns one up front
        now: Creation time (defaults to utcnow)
    """
    validation = validate_purchase_order_input(data)
    errors = list(validation.errors)
    if not is_valid_identifier(order_number, PREFIX_PURCHASE_ORDER):
        errors.append(validation_error(f"Invalid order number '{order_number}'", field="order_number"))
    if errors:
        return LifecycleResult.fail(*errors)

    now = now or utcnow()
    items = tuple(
        PurchaseOrderItem(
            product_id=item.product_id.strip(),
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.quantity * item.unit_price,
        )
        for item in data.items
    )

    notes = data.notes.strip() if data.notes else None
    order = PurchaseOrder(
        id=order_id,
        order_number=order_number,
        supplier_id=data.supplier_id.strip(),
        user_id=user_id,
        outlet_id=data.outlet_id.strip(),
        total_amount=calculate_total(items),
        status=PO_STATUS_PENDING,
        order_date=now,
        items=items,
        expected_date=data.expected_date,
        notes=notes or None,
        created_at=now,
        updated_at=now,
    )
    return LifecycleResult.ok(order)


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def validate_status_transition(current: str, target: str):
    """None if allowed, else the LifecycleError for the rejected transition."""
    return PO_MACHINE.check(current, target)


def approve_purchase_order(order: PurchaseOrder, *, now: datetime | None = None) -> LifecycleResult[PurchaseOrder]:
    return _change_status(order, PO_STATUS_APPROVED, now)


def cancel_purchase_order(order: PurchaseOrder, *, now: datetime | None = None) -> LifecycleResult[PurchaseOrder]:
    return _change_status(order, PO_STATUS_CANCELLED, now)


def transition_purchase_order(
    order: PurchaseOrder,
    target: str,
    *,
    ledger: StockLedger | None = None,
    received_items: Sequence[ReceivedItem] = (),
    notes: str | None = None,
    now: datetime | None = None,
) -> LifecycleResult[PurchaseOrder]:
    """
    Move an order to `target`.

    `received` goes through receive_purchase_order and therefore needs the
    received quantities and a ledger snapshot.
    """
    if target == PO_STATUS_RECEIVED:
        return receive_purchase_order(
            order, received_items, ledger or StockLedger(), notes=notes, now=now,
        )
    return _change_status(order, target, now)


def _change_status(order: PurchaseOrder, target: str, now: datetime | None) -> LifecycleResult[PurchaseOrder]:
    error = validate_status_transition(order.status, target)
    if error is not None:
        return LifecycleResult.fail(error)
    return LifecycleResult.ok(replace(order, status=target, updated_at=now or utcnow()))


# =============================================================================
# RECEIVING
# =============================================================================

def receive_status_error(order: PurchaseOrder):
    """
    None if the order can be received, else the transition error.

    Terminal orders get the terminal-state error every other transition gets;
    a pending order is told that only approved orders can be received.
    """
    error = PO_MACHINE.check(order.status, PO_STATUS_RECEIVED)
    if error is None or error.kind != KIND_INVALID_TRANSITION:
        return error
    return invalid_transition(
        PO_MACHINE.resource,
        order.status,
        PO_STATUS_RECEIVED,
        message=(
            f"Cannot receive purchase order with status '{order.status}'. "
            f"Only approved purchase orders can be received."
        ),
    )


def validate_receive_input(order: PurchaseOrder, received_items: Sequence[ReceivedItem]) -> ValidationResult:
    """
    Check a receipt against the order. All problems are collected.

    The order status is checked separately by receive_status_error.

    Rules:
    - at least one received item
    - each received product must be on the order, listed once
    - received quantity must not be negative (0 is allowed)
    """
    errors = []

    if not received_items:
        errors.append(validation_error("At least one received item is required", field="received_items"))
        return ValidationResult(tuple(errors))

    ordered = {item.product_id for item in order.items}
    seen: set[str] = set()
    for index, item in enumerate(received_items, start=1):
        if _is_blank(item.product_id):
            errors.append(validation_error(f"Received item {index}: Product ID is required", item=index))
        elif item.product_id not in ordered:
            errors.append(validation_error(
                f"Received item {index}: Product {item.product_id} not found in purchase order",
                item=index, product_id=item.product_id,
            ))
        elif item.product_id in seen:
            errors.append(validation_error(
                f"Received item {index}: Product {item.product_id} is listed more than once",
                item=index, product_id=item.product_id,
            ))
        else:
            seen.add(item.product_id)

        if item.received_quantity < 0:
            errors.append(validation_error(
                f"Received item {index}: Received quantity cannot be negative",
                item=index, product_id=item.product_id, received_quantity=item.received_quantity,
            ))

    return ValidationResult(tuple(errors))


def check_receipt_discrepancy(
    order_items: Sequence[PurchaseOrderItem],
    received_items: Sequence[ReceivedItem],
) -> DiscrepancyReport:
    """
    Compare ordered against received quantities for every order item.

    A product missing from the receipt counts as received 0.
    difference = received - ordered.
    """
    received = {item.product_id: item.received_quantity for item in received_items}
    discrepancies = []
    for item in order_items:
        received_qty = received.get(item.product_id, 0)
        if received_qty != item.quantity:
            discrepancies.append(Discrepancy(item.product_id, item.quantity, received_qty))
    return DiscrepancyReport(tuple(discrepancies))


def discrepancy_notes(report: DiscrepancyReport) -> str:
    """Human-readable note for a receipt that did not match the order ('' if it did)."""
    if not report.has_discrepancy:
        return ""
    lines = []
    for d in report.discrepancies:
        word = "surplus" if d.difference > 0 else "shortage"
        lines.append(
            f"Product {d.product_id}: ordered {d.ordered_quantity}, "
            f"received {d.received_quantity} ({word} {abs(d.difference)})"
        )
    return "Discrepancy: " + NOTES_SEPARATOR.join(lines)


def append_notes(existing: str | None, *additions: str | None) -> str | None:
    parts = [p for p in (existing, *additions) if p and p.strip()]
    return NOTES_SEPARATOR.join(parts) if parts else None


def receive_purchase_order(
    order: PurchaseOrder,
    received_items: Sequence[ReceivedItem],
    ledger: StockLedger,
    *,
    notes: str | None = None,
    now: datetime | None = None,
) -> LifecycleResult[PurchaseOrder]:
    """
    Receive an approved order into the ledger.

    Each item received with quantity > 0 increases the ledger at the order's
    outlet by exactly the received quantity and emits an `in` movement
    linked to the order. Items received at 0 change nothing. Over and short
    deliveries succeed; the discrepancy is appended to the order notes after
    any existing notes and any operator notes.

    Returns:
        Result with the received order, the new ledger and the movements
    """
    status_error = receive_status_error(order)
    if status_error is not None:
        return LifecycleResult.fail(status_error)

    validation = validate_receive_input(order, received_items)
    if not validation.valid:
        return LifecycleResult.from_validation(validation)

    now = now or utcnow()
    report = check_receipt_discrepancy(order.items, received_items)
    received = {item.product_id: item.received_quantity for item in received_items}

    new_ledger = ledger
    movements = []
    for item in received_items:
        if item.received_quantity <= 0:
            continue
        new_ledger = new_ledger.adjust(order.outlet_id, item.product_id, item.received_quantity)
        movements.append(StockMovement(
            outlet_id=order.outlet_id,
            product_id=item.product_id,
            movement_type=MOVEMENT_IN,
            quantity=item.received_quantity,
            reference_type=REFERENCE_PURCHASE_ORDER,
            reference_id=order.id or order.order_number,
            notes=f"Receipt of purchase order {order.order_number}",
        ))

    items = tuple(
        replace(item, received_quantity=received.get(item.product_id, 0))
        for item in order.items
    )

    received_order = replace(
        order,
        status=PO_STATUS_RECEIVED,
        items=items,
        received_date=now,
        updated_at=now,
        notes=append_notes(order.notes, notes, discrepancy_notes(report)),
    )
    return LifecycleResult.ok(received_order, ledger=new_ledger, movements=movements)


# =============================================================================
# FILTERING
# =============================================================================

def filter_purchase_orders(
    orders: Iterable[PurchaseOrder],
    *,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
) -> list[PurchaseOrder]:
    """Filter by status, inclusive order-date range and order-number substring."""
    result = list(orders)
    if status:
        result = [o for o in result if o.status == status]
    if start_date is not None:
        result = [o for o in result if o.order_date >= start_date]
    if end_date is not None:
        result = [o for o in result if o.order_date <= end_date]
    if search and search.strip():
        needle = search.strip().lower()
        result = [o for o in result if needle in o.order_number.lower()]
    return result
