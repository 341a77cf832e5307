# backend/backoffice/services/purchase_order_service.py
"""
Purchase order service.

WHY: Persist purchase orders around the pure lifecycle. Each operation
loads and locks the order, lets the core decide, then writes the new state,
any stock change and the audit event in one transaction.

LIFECYCLE:
1. pending: order created with its items
2. approved: manager approved
3. received: goods counted in; stock increased by received quantities
4. cancelled: withdrawn before receipt
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from ..domain import purchase_orders as po_domain
from ..domain.identifiers import PREFIX_PURCHASE_ORDER
from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderItem
from ..models.inventory import new_id
from .audit_service import record_event
from .concurrency import lock_for_update, run_with_retry
from .errors import LifecycleServiceError, RecordNotFoundError
from .identifier_service import flush_numbered, next_identifier
from .stock_service import apply_ledger, load_ledger, missing_products


logger = logging.getLogger(__name__)


class PurchaseOrderError(LifecycleServiceError):
    """Raised when purchase order operations fail."""
    pass


class PurchaseOrderNotFoundError(RecordNotFoundError):
    def __init__(self, order_id):
        super().__init__("Purchase order", order_id)


def _lock_order(order_id: str) -> PurchaseOrder:
    order = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=order_id)).first()
    if not order:
        raise PurchaseOrderNotFoundError(order_id)
    return order


def _write_back(order: PurchaseOrder, updated: po_domain.PurchaseOrder) -> None:
    order.status = updated.status
    order.notes = updated.notes
    order.received_date = updated.received_date
    order.updated_at = updated.updated_at
    received = {item.id: item.received_quantity for item in updated.items}
    for item in order.items:
        item.received_quantity = received.get(item.id, item.received_quantity)


def create_purchase_order(
    supplier_id: str,
    outlet_id: str,
    items: Sequence[po_domain.PurchaseOrderItemInput],
    user_id: str,
    expected_date: datetime | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    """
    Create a purchase order (status: pending).

    Args:
        supplier_id: Supplier the goods are ordered from
        outlet_id: Outlet the goods will be delivered to
        items: Product, quantity and unit price (minor units) per line
        user_id: User creating the order
        expected_date: Optional expected delivery date
        notes: Optional free text

    Returns:
        PurchaseOrder: The created order

    Raises:
        PurchaseOrderError: If validation fails (all problems listed)
        IdentifierError: If no order number can be allocated
    """
    data = po_domain.PurchaseOrderInput(
        supplier_id=supplier_id,
        outlet_id=outlet_id,
        items=tuple(items),
        expected_date=expected_date,
        notes=notes,
    )

    def _op():
        order_number = next_identifier(PurchaseOrder.order_number, PREFIX_PURCHASE_ORDER)
        result = po_domain.create_purchase_order(
            data, order_number=order_number, user_id=user_id, order_id=new_id(),
        )
        errors = list(result.errors) + missing_products(item.product_id for item in data.items)
        if errors:
            logger.warning("Purchase order rejected: %s", "; ".join(e.message for e in errors))
            raise PurchaseOrderError(errors)

        created = result.resource
        order = PurchaseOrder(
            id=created.id,
            order_number=created.order_number,
            supplier_id=created.supplier_id,
            outlet_id=created.outlet_id,
            user_id=created.user_id,
            total_amount=created.total_amount,
            status=created.status,
            order_date=created.order_date,
            expected_date=created.expected_date,
            notes=created.notes,
            created_at=created.created_at,
            updated_at=created.updated_at,
        )
        for position, item in enumerate(created.items):
            order.items.append(PurchaseOrderItem(
                product_id=item.product_id,
                position=position,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
                received_quantity=0,
            ))
        db.session.add(order)
        flush_numbered(PurchaseOrder.order_number, order.order_number)

        record_event(
            "purchase_order.created",
            "purchase_order",
            order.id,
            {
                "order_number": order.order_number,
                "supplier_id": order.supplier_id,
                "outlet_id": order.outlet_id,
                "total_amount": order.total_amount,
                "items_count": len(created.items),
            },
            actor_id=user_id,
        )
        db.session.commit()
        logger.info("Purchase order %s created by %s", order.order_number, user_id)
        return order

    return run_with_retry(_op)


def get_purchase_order(order_id: str) -> PurchaseOrder:
    order = db.session.get(PurchaseOrder, order_id)
    if not order:
        raise PurchaseOrderNotFoundError(order_id)
    return order


def list_purchase_orders(
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
    outlet_id: str | None = None,
) -> list[PurchaseOrder]:
    """Orders newest first, filtered by status, order-date range, number search and outlet."""
    query = db.session.query(PurchaseOrder)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    if outlet_id:
        query = query.filter(PurchaseOrder.outlet_id == outlet_id)
    if start_date:
        query = query.filter(PurchaseOrder.order_date >= start_date)
    if end_date:
        query = query.filter(PurchaseOrder.order_date <= end_date)
    if search and search.strip():
        query = query.filter(PurchaseOrder.order_number.ilike(f"%{search.strip()}%"))
    return query.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.order_number.desc()).all()


def _change_status(order_id: str, target: str, user_id: str, event_type: str) -> PurchaseOrder:
    def _op():
        order = _lock_order(order_id)
        previous = order.status
        result = po_domain.transition_purchase_order(order.to_domain(), target)
        if not result.success:
            logger.warning("Purchase order %s: %s", order.order_number, result.error.message)
            raise PurchaseOrderError(result.errors)

        _write_back(order, result.resource)
        record_event(
            event_type,
            "purchase_order",
            order.id,
            {"order_number": order.order_number, "from_status": previous, "to_status": order.status},
            actor_id=user_id,
        )
        db.session.commit()
        logger.info("Purchase order %s %s -> %s by %s", order.order_number, previous, order.status, user_id)
        return order

    return run_with_retry(_op)


def approve_purchase_order(order_id: str, user_id: str) -> PurchaseOrder:
    """pending -> approved."""
    return _change_status(order_id, po_domain.PO_STATUS_APPROVED, user_id, "purchase_order.approved")


def cancel_purchase_order(order_id: str, user_id: str) -> PurchaseOrder:
    """pending|approved -> cancelled."""
    return _change_status(order_id, po_domain.PO_STATUS_CANCELLED, user_id, "purchase_order.cancelled")


def receive_purchase_order(
    order_id: str,
    received_items: Sequence[po_domain.ReceivedItem],
    user_id: str,
    notes: str | None = None,
) -> PurchaseOrder:
    """
    Receive an approved order into stock at its outlet.

    Stock increases by the received quantity of each product (not the ordered
    one); over and short deliveries are accepted and noted on the order.

    Args:
        order_id: Order to receive
        received_items: Received quantity per product
        user_id: User receiving the goods
        notes: Optional operator notes, kept before the discrepancy note

    Returns:
        PurchaseOrder: The received order

    Raises:
        PurchaseOrderNotFoundError: If the order does not exist
        PurchaseOrderError: If the order is not approved or the receipt is invalid
    """
    def _op():
        order = _lock_order(order_id)
        current = order.to_domain()
        keys = [(order.outlet_id, item.product_id) for item in received_items if item.product_id]
        before = load_ledger(keys)

        result = po_domain.receive_purchase_order(current, received_items, before, notes=notes)
        if not result.success:
            logger.warning("Purchase order %s receipt rejected: %s", order.order_number, result.error.message)
            raise PurchaseOrderError(result.errors)

        report = po_domain.check_receipt_discrepancy(current.items, received_items)
        _write_back(order, result.resource)
        apply_ledger(before, result.ledger, result.movements, actor_id=user_id)

        record_event(
            "purchase_order.received",
            "purchase_order",
            order.id,
            {
                "order_number": order.order_number,
                "outlet_id": order.outlet_id,
                "received": {item.product_id: item.received_quantity for item in received_items},
                "discrepancies": [d.to_dict() for d in report.discrepancies],
            },
            actor_id=user_id,
        )
        db.session.commit()
        logger.info(
            "Purchase order %s received by %s (%d movements, %d discrepancies)",
            order.order_number, user_id, len(result.movements), len(report.discrepancies),
        )
        return order

    return run_with_retry(_op)


def discrepancy_report(
    order: PurchaseOrder,
    received_items: Sequence[po_domain.ReceivedItem],
) -> po_domain.DiscrepancyReport:
    """Ordered vs received per product for a receipt."""
    return po_domain.check_receipt_discrepancy(order.to_domain().items, received_items)


def transition_purchase_order(
    order_id: str,
    target: str,
    user_id: str,
    received_items: Sequence[po_domain.ReceivedItem] = (),
    notes: str | None = None,
) -> PurchaseOrder:
    """Move an order to `target` (approved, cancelled or received)."""
    if target == po_domain.PO_STATUS_RECEIVED:
        return receive_purchase_order(order_id, received_items, user_id, notes=notes)
    if target == po_domain.PO_STATUS_APPROVED:
        return approve_purchase_order(order_id, user_id)
    if target == po_domain.PO_STATUS_CANCELLED:
        return cancel_purchase_order(order_id, user_id)
    return _change_status(order_id, target, user_id, f"purchase_order.{target}")
