# backend/backoffice/services/transfer_service.py
"""
Inter-outlet stock transfer service.

WHY: Move stock between outlets with an approval step and without ever
creating or losing units. The transfer only touches outlet_stock when it is
completed, and then decreases the source and increases the destination by
the same quantities in one transaction.

LIFECYCLE:
1. pending: created, source stock checked
2. approved: manager approved (no stock effect)
3. completed: stock moved, transfer_out / transfer_in movements written
4. cancelled: withdrawn before completion
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from ..domain import transfers as transfer_domain
from ..domain.identifiers import PREFIX_TRANSFER
from ..extensions import db
from ..models import StockTransfer, StockTransferItem
from ..models.inventory import new_id
from .audit_service import record_event
from .concurrency import lock_for_update, run_with_retry
from .errors import LifecycleServiceError, RecordNotFoundError
from .identifier_service import flush_numbered, next_identifier
from .stock_service import apply_ledger, load_ledger, missing_products


logger = logging.getLogger(__name__)


class TransferError(LifecycleServiceError):
    """Raised when transfer operations fail."""
    pass


class TransferNotFoundError(RecordNotFoundError):
    def __init__(self, transfer_id):
        super().__init__("Transfer", transfer_id)


def _lock_transfer(transfer_id: str) -> StockTransfer:
    transfer = lock_for_update(db.session.query(StockTransfer).filter_by(id=transfer_id)).first()
    if not transfer:
        raise TransferNotFoundError(transfer_id)
    return transfer


def _write_back(transfer: StockTransfer, updated: transfer_domain.StockTransfer) -> None:
    transfer.status = updated.status
    transfer.approved_by = updated.approved_by
    transfer.approved_at = updated.approved_at
    transfer.completed_at = updated.completed_at
    transfer.updated_at = updated.updated_at


def _stock_keys(transfer) -> list[tuple[str, str]]:
    keys = []
    for item in transfer.items:
        keys.append((transfer.source_outlet_id, item.product_id))
        keys.append((transfer.destination_outlet_id, item.product_id))
    return keys


def create_transfer(
    source_outlet_id: str,
    destination_outlet_id: str,
    items: Sequence[transfer_domain.TransferItemInput],
    user_id: str,
    notes: str | None = None,
) -> StockTransfer:
    """
    Create a transfer (status: pending).

    Source stock is checked now and again on completion; nothing is reserved.

    Args:
        source_outlet_id: Outlet the stock leaves
        destination_outlet_id: Outlet the stock arrives at
        items: Product and quantity per line
        user_id: User creating the transfer
        notes: Optional free text (blank becomes None)

    Returns:
        StockTransfer: The created transfer

    Raises:
        TransferError: Same outlet, no items, bad quantity or insufficient stock
        IdentifierError: If no transfer number can be allocated
    """
    data = transfer_domain.TransferInput(
        source_outlet_id=source_outlet_id,
        destination_outlet_id=destination_outlet_id,
        items=tuple(items),
        notes=notes,
    )

    def _op():
        ledger = load_ledger(
            [(source_outlet_id, item.product_id) for item in data.items if item.product_id],
            lock=False,
        )
        transfer_number = next_identifier(StockTransfer.transfer_number, PREFIX_TRANSFER)
        result = transfer_domain.create_transfer(
            data, ledger, transfer_number=transfer_number, created_by=user_id, transfer_id=new_id(),
        )
        errors = list(result.errors) + missing_products(item.product_id for item in data.items)
        if errors:
            logger.warning("Transfer rejected: %s", "; ".join(e.message for e in errors))
            raise TransferError(errors)

        created = result.resource
        transfer = StockTransfer(
            id=created.id,
            transfer_number=created.transfer_number,
            source_outlet_id=created.source_outlet_id,
            destination_outlet_id=created.destination_outlet_id,
            status=created.status,
            notes=created.notes,
            created_by=created.created_by,
            created_at=created.created_at,
            updated_at=created.updated_at,
        )
        for position, item in enumerate(created.items):
            transfer.items.append(StockTransferItem(
                product_id=item.product_id,
                position=position,
                quantity=item.quantity,
            ))
        db.session.add(transfer)
        flush_numbered(StockTransfer.transfer_number, transfer.transfer_number)

        record_event(
            "transfer.created",
            "stock_transfer",
            transfer.id,
            {
                "transfer_number": transfer.transfer_number,
                "source_outlet_id": transfer.source_outlet_id,
                "destination_outlet_id": transfer.destination_outlet_id,
                "items": [{"product_id": i.product_id, "quantity": i.quantity} for i in created.items],
            },
            actor_id=user_id,
        )
        db.session.commit()
        logger.info("Transfer %s created by %s", transfer.transfer_number, user_id)
        return transfer

    return run_with_retry(_op)


def get_transfer(transfer_id: str) -> StockTransfer:
    transfer = db.session.get(StockTransfer, transfer_id)
    if not transfer:
        raise TransferNotFoundError(transfer_id)
    return transfer


def list_transfers(
    status: str | None = None,
    source_outlet_id: str | None = None,
    destination_outlet_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[StockTransfer]:
    """Transfers newest first, filtered by status, either outlet and created-at range."""
    query = db.session.query(StockTransfer)
    if status:
        query = query.filter(StockTransfer.status == status)
    if source_outlet_id:
        query = query.filter(StockTransfer.source_outlet_id == source_outlet_id)
    if destination_outlet_id:
        query = query.filter(StockTransfer.destination_outlet_id == destination_outlet_id)
    if start_date:
        query = query.filter(StockTransfer.created_at >= start_date)
    if end_date:
        query = query.filter(StockTransfer.created_at <= end_date)
    return query.order_by(StockTransfer.created_at.desc(), StockTransfer.transfer_number.desc()).all()


def approve_transfer(transfer_id: str, user_id: str) -> StockTransfer:
    """
    Approve a pending transfer. No stock effect.

    Raises:
        TransferNotFoundError: If the transfer does not exist
        TransferError: If the transfer is not pending
    """
    def _op():
        transfer = _lock_transfer(transfer_id)
        result = transfer_domain.approve_transfer(transfer.to_domain(), user_id)
        if not result.success:
            logger.warning("Transfer %s: %s", transfer.transfer_number, result.error.message)
            raise TransferError(result.errors)

        _write_back(transfer, result.resource)
        record_event(
            "transfer.approved",
            "stock_transfer",
            transfer.id,
            {"transfer_number": transfer.transfer_number},
            actor_id=user_id,
        )
        db.session.commit()
        logger.info("Transfer %s approved by %s", transfer.transfer_number, user_id)
        return transfer

    return run_with_retry(_op)


def complete_transfer(transfer_id: str, user_id: str) -> StockTransfer:
    """
    Complete an approved transfer, moving the stock.

    The source and destination rows of every product are locked, the source
    quantity is checked again, and both rows plus two movements per item are
    written together.

    Raises:
        TransferNotFoundError: If the transfer does not exist
        TransferError: If the transfer is not approved or the source is short
    """
    def _op():
        transfer = _lock_transfer(transfer_id)
        current = transfer.to_domain()
        before = load_ledger(_stock_keys(current))

        result = transfer_domain.complete_transfer(before, current)
        if not result.success:
            logger.warning("Transfer %s completion rejected: %s", transfer.transfer_number, result.error.message)
            raise TransferError(result.errors)

        _write_back(transfer, result.resource)
        apply_ledger(before, result.ledger, result.movements, actor_id=user_id)

        record_event(
            "transfer.completed",
            "stock_transfer",
            transfer.id,
            {
                "transfer_number": transfer.transfer_number,
                "source_outlet_id": transfer.source_outlet_id,
                "destination_outlet_id": transfer.destination_outlet_id,
                "movements": [m.to_dict() for m in result.movements],
            },
            actor_id=user_id,
        )
        db.session.commit()
        logger.info("Transfer %s completed by %s", transfer.transfer_number, user_id)
        return transfer

    return run_with_retry(_op)


def cancel_transfer(transfer_id: str, user_id: str) -> StockTransfer:
    """
    Cancel a pending or approved transfer. No stock effect.

    Raises:
        TransferNotFoundError: If the transfer does not exist
        TransferError: If the transfer is already completed or cancelled
    """
    def _op():
        transfer = _lock_transfer(transfer_id)
        previous = transfer.status
        result = transfer_domain.cancel_transfer(transfer.to_domain())
        if not result.success:
            logger.warning("Transfer %s: %s", transfer.transfer_number, result.error.message)
            raise TransferError(result.errors)

        _write_back(transfer, result.resource)
        record_event(
            "transfer.cancelled",
            "stock_transfer",
            transfer.id,
            {"transfer_number": transfer.transfer_number, "from_status": previous},
            actor_id=user_id,
        )
        db.session.commit()
        logger.info("Transfer %s cancelled by %s", transfer.transfer_number, user_id)
        return transfer

    return run_with_retry(_op)


def transition_transfer(transfer_id: str, target: str, user_id: str) -> StockTransfer:
    """Move a transfer to `target` (approved, completed or cancelled)."""
    if target == transfer_domain.TRANSFER_STATUS_APPROVED:
        return approve_transfer(transfer_id, user_id)
    if target == transfer_domain.TRANSFER_STATUS_COMPLETED:
        return complete_transfer(transfer_id, user_id)
    if target == transfer_domain.TRANSFER_STATUS_CANCELLED:
        return cancel_transfer(transfer_id, user_id)

    transfer = get_transfer(transfer_id)
    result = transfer_domain.transition_transfer(transfer.to_domain(), target, actor_id=user_id)
    raise TransferError(result.errors)
