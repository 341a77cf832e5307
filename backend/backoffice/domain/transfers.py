"""
Stock transfer lifecycle.

WHY: Moving stock between outlets must never create or destroy units. A
transfer reserves nothing while pending or approved; the ledger changes only
on completion, and then by the same amount at both ends.

LIFECYCLE:
    pending --approve--> approved --complete--> completed
    pending|approved --cancel--> cancelled

INVARIANT:
    For every product touched, source + destination quantity is the same
    before and after completion.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional, Sequence

from ..time_utils import utcnow
from .identifiers import PREFIX_TRANSFER, is_valid_identifier
from .ledger import (
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_TRANSFER_OUT,
    REFERENCE_STOCK_TRANSFER,
    StockLedger,
    StockMovement,
)
from .results import (
    LifecycleResult,
    ValidationResult,
    insufficient_stock,
    invalid_transition,
    terminal_state,
    validation_error,
)
from .workflow import StatusMachine


TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_APPROVED = "approved"
TRANSFER_STATUS_COMPLETED = "completed"
TRANSFER_STATUS_CANCELLED = "cancelled"

TRANSFER_STATUSES = frozenset({
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_APPROVED,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_CANCELLED,
})

TRANSFER_MACHINE = StatusMachine(
    resource="transfer",
    transitions={
        TRANSFER_STATUS_PENDING: frozenset({TRANSFER_STATUS_APPROVED, TRANSFER_STATUS_CANCELLED}),
        TRANSFER_STATUS_APPROVED: frozenset({TRANSFER_STATUS_COMPLETED, TRANSFER_STATUS_CANCELLED}),
        TRANSFER_STATUS_COMPLETED: frozenset(),
        TRANSFER_STATUS_CANCELLED: frozenset(),
    },
)


@dataclass(frozen=True)
class TransferItemInput:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class TransferInput:
    source_outlet_id: str
    destination_outlet_id: str
    items: Sequence[TransferItemInput]
    notes: Optional[str] = None


@dataclass(frozen=True)
class TransferItem:
    product_id: str
    quantity: int
    id: Optional[str] = None


@dataclass(frozen=True)
class StockTransfer:
    id: Optional[str]
    transfer_number: str
    source_outlet_id: str
    destination_outlet_id: str
    status: str
    created_by: str
    items: tuple[TransferItem, ...] = ()
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return TRANSFER_MACHINE.is_terminal(self.status)


def _requested_per_product(items: Iterable) -> "OrderedDict[str, int]":
    # Lines for the same product draw from the same source stock.
    totals: OrderedDict[str, int] = OrderedDict()
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


def check_stock_availability(ledger: StockLedger, outlet_id: str, items: Iterable) -> list:
    """One insufficient_stock error per product whose requested total exceeds stock at `outlet_id`."""
    errors = []
    for product_id, requested in _requested_per_product(items).items():
        available = ledger.quantity(outlet_id, product_id)
        if available < requested:
            errors.append(insufficient_stock(outlet_id, product_id, available, requested))
    return errors


def validate_transfer(data: TransferInput, ledger: StockLedger) -> ValidationResult:
    """
    Check a transfer request. All problems are collected.

    Rules:
    - source and destination are present and differ
    - at least one item, each with a product id and quantity > 0
    - the source holds enough of every product (checked per product, so one
      short product fails the whole request)
    """
    errors = []

    if not data.source_outlet_id:
        errors.append(validation_error("Source outlet is required", field="source_outlet_id"))
    if not data.destination_outlet_id:
        errors.append(validation_error("Destination outlet is required", field="destination_outlet_id"))
    if (
        data.source_outlet_id
        and data.destination_outlet_id
        and data.source_outlet_id == data.destination_outlet_id
    ):
        errors.append(validation_error(
            "Destination outlet must differ from source outlet",
            source_outlet_id=data.source_outlet_id,
            destination_outlet_id=data.destination_outlet_id,
        ))

    if not data.items:
        errors.append(validation_error("Transfer must contain at least one item", field="items"))
        return ValidationResult(tuple(errors))

    quantities_ok = True
    for index, item in enumerate(data.items, start=1):
        if not item.product_id:
            errors.append(validation_error(f"Item {index}: Product ID is required", item=index))
            quantities_ok = False
        if item.quantity <= 0:
            errors.append(validation_error(
                f"Transfer quantity must be greater than 0 for product {item.product_id}",
                item=index, product_id=item.product_id, quantity=item.quantity,
            ))
            quantities_ok = False

    if quantities_ok and data.source_outlet_id:
        errors.extend(check_stock_availability(ledger, data.source_outlet_id, data.items))

    return ValidationResult(tuple(errors))


def create_transfer(
    data: TransferInput,
    ledger: StockLedger,
    *,
    transfer_number: str,
    created_by: str,
    transfer_id: str | None = None,
    now: datetime | None = None,
) -> LifecycleResult[StockTransfer]:
    """Validate and build a new transfer in `pending`. The ledger is only read."""
    validation = validate_transfer(data, ledger)
    errors = list(validation.errors)
    if not is_valid_identifier(transfer_number, PREFIX_TRANSFER):
        errors.append(validation_error(f"Invalid transfer number '{transfer_number}'", field="transfer_number"))
    if errors:
        return LifecycleResult.fail(*errors)

    now = now or utcnow()
    notes = data.notes.strip() if data.notes else None
    transfer = StockTransfer(
        id=transfer_id,
        transfer_number=transfer_number,
        source_outlet_id=data.source_outlet_id,
        destination_outlet_id=data.destination_outlet_id,
        status=TRANSFER_STATUS_PENDING,
        created_by=created_by,
        items=tuple(TransferItem(item.product_id, item.quantity) for item in data.items),
        notes=notes or None,
        created_at=now,
        updated_at=now,
    )
    return LifecycleResult.ok(transfer)


def approve_transfer(
    transfer: StockTransfer,
    approved_by: str,
    *,
    now: datetime | None = None,
) -> LifecycleResult[StockTransfer]:
    """pending -> approved. Status only; stock is untouched."""
    if transfer.status != TRANSFER_STATUS_PENDING:
        message = f"Only pending transfers can be approved (current status: {transfer.status})"
        if transfer.is_terminal:
            return LifecycleResult.fail(terminal_state("transfer", transfer.status, message, TRANSFER_STATUS_APPROVED))
        return LifecycleResult.fail(invalid_transition("transfer", transfer.status, TRANSFER_STATUS_APPROVED, message))
    if not approved_by:
        return LifecycleResult.fail(validation_error("Approver is required", field="approved_by"))

    now = now or utcnow()
    return LifecycleResult.ok(replace(
        transfer,
        status=TRANSFER_STATUS_APPROVED,
        approved_by=approved_by,
        approved_at=now,
        updated_at=now,
    ))


def cancel_transfer(transfer: StockTransfer, *, now: datetime | None = None) -> LifecycleResult[StockTransfer]:
    """pending|approved -> cancelled. No stock effect."""
    if transfer.status == TRANSFER_STATUS_COMPLETED:
        return LifecycleResult.fail(terminal_state(
            "transfer", transfer.status, "Transfer is already completed", TRANSFER_STATUS_CANCELLED,
        ))
    if transfer.status == TRANSFER_STATUS_CANCELLED:
        return LifecycleResult.fail(terminal_state(
            "transfer", transfer.status, "Transfer is already cancelled", TRANSFER_STATUS_CANCELLED,
        ))
    error = TRANSFER_MACHINE.check(transfer.status, TRANSFER_STATUS_CANCELLED)
    if error is not None:
        return LifecycleResult.fail(error)

    return LifecycleResult.ok(replace(transfer, status=TRANSFER_STATUS_CANCELLED, updated_at=now or utcnow()))


def complete_transfer(
    ledger: StockLedger,
    transfer: StockTransfer,
    *,
    now: datetime | None = None,
) -> LifecycleResult[StockTransfer]:
    """
    approved -> completed, moving the stock.

    Source availability is checked again against `ledger` because stock may
    have moved since approval. On success every item produces a
    transfer_out movement (-n at source) and a transfer_in movement (+n at
    destination), both referencing the transfer.

    Returns:
        Result with the completed transfer, the new ledger and the movements
    """
    if transfer.status != TRANSFER_STATUS_APPROVED:
        message = f"Only approved transfers can be completed (current status: {transfer.status})"
        if transfer.is_terminal:
            return LifecycleResult.fail(terminal_state("transfer", transfer.status, message, TRANSFER_STATUS_COMPLETED))
        return LifecycleResult.fail(invalid_transition("transfer", transfer.status, TRANSFER_STATUS_COMPLETED, message))

    shortages = check_stock_availability(ledger, transfer.source_outlet_id, transfer.items)
    if shortages:
        return LifecycleResult.fail(*shortages)

    reference = transfer.id or transfer.transfer_number
    new_ledger = ledger
    movements = []
    for item in transfer.items:
        new_ledger = new_ledger.adjust(transfer.source_outlet_id, item.product_id, -item.quantity)
        new_ledger = new_ledger.adjust(transfer.destination_outlet_id, item.product_id, item.quantity)
        movements.append(StockMovement(
            outlet_id=transfer.source_outlet_id,
            product_id=item.product_id,
            movement_type=MOVEMENT_TRANSFER_OUT,
            quantity=-item.quantity,
            reference_type=REFERENCE_STOCK_TRANSFER,
            reference_id=reference,
            notes=f"Transfer {transfer.transfer_number} to outlet {transfer.destination_outlet_id}",
        ))
        movements.append(StockMovement(
            outlet_id=transfer.destination_outlet_id,
            product_id=item.product_id,
            movement_type=MOVEMENT_TRANSFER_IN,
            quantity=item.quantity,
            reference_type=REFERENCE_STOCK_TRANSFER,
            reference_id=reference,
            notes=f"Transfer {transfer.transfer_number} from outlet {transfer.source_outlet_id}",
        ))

    now = now or utcnow()
    completed = replace(transfer, status=TRANSFER_STATUS_COMPLETED, completed_at=now, updated_at=now)
    return LifecycleResult.ok(completed, ledger=new_ledger, movements=movements)


def transition_transfer(
    transfer: StockTransfer,
    target: str,
    *,
    actor_id: str | None = None,
    ledger: StockLedger | None = None,
    now: datetime | None = None,
) -> LifecycleResult[StockTransfer]:
    """Dispatch to approve/complete/cancel by target status."""
    if target == TRANSFER_STATUS_APPROVED:
        return approve_transfer(transfer, actor_id, now=now)
    if target == TRANSFER_STATUS_COMPLETED:
        return complete_transfer(ledger or StockLedger(), transfer, now=now)
    if target == TRANSFER_STATUS_CANCELLED:
        return cancel_transfer(transfer, now=now)
    error = TRANSFER_MACHINE.check(transfer.status, target)
    return LifecycleResult.fail(error or invalid_transition("transfer", transfer.status, target))


def calculate_stock_change(transfer: StockTransfer, outlet_id: str, product_id: str) -> int:
    """
    Net change completing `transfer` causes for one product at one outlet.

    Negative at the source, positive at the destination, 0 elsewhere.
    """
    quantity = _requested_per_product(transfer.items).get(product_id, 0)
    if outlet_id == transfer.source_outlet_id:
        return -quantity
    if outlet_id == transfer.destination_outlet_id:
        return quantity
    return 0


def filter_transfers(
    transfers: Iterable[StockTransfer],
    *,
    status: str | None = None,
    source_outlet_id: str | None = None,
    destination_outlet_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[StockTransfer]:
    """Filter by status, either end of the transfer and inclusive created_at range."""
    result = list(transfers)
    if status:
        result = [t for t in result if t.status == status]
    if source_outlet_id:
        result = [t for t in result if t.source_outlet_id == source_outlet_id]
    if destination_outlet_id:
        result = [t for t in result if t.destination_outlet_id == destination_outlet_id]
    if start_date is not None:
        result = [t for t in result if t.created_at is not None and t.created_at >= start_date]
    if end_date is not None:
        result = [t for t in result if t.created_at is not None and t.created_at <= end_date]
    return result
