# Overview: Stock ledger persistence; loads locked snapshots and writes back new ledgers with their movements.

"""
Stock Service

WHY: outlet_stock is the one table all three lifecycles write to. Every
writer goes through here so the same rules hold everywhere:

- rows are read with FOR UPDATE before a lifecycle decides anything
- only keys whose quantity changed are written back
- every change is accompanied by its stock_movements rows, in the same
  transaction
- a manual correction is itself a movement (type `adjustment`, signed delta)
"""

from __future__ import annotations

import logging
from typing import Iterable

from ..domain.ledger import MOVEMENT_ADJUSTMENT, REFERENCE_ADJUSTMENT, StockLedger
from ..domain.ledger import StockMovement as MovementFact
from ..domain.results import validation_error
from ..extensions import db
from ..models import OutletStock, Product, StockMovement
from ..time_utils import utcnow
from .audit_service import record_event
from .concurrency import lock_for_update, run_with_retry
from .errors import LifecycleServiceError, RecordNotFoundError


logger = logging.getLogger(__name__)


class StockError(LifecycleServiceError):
    """Raised when a stock operation is rejected."""
    pass


class ProductNotFoundError(RecordNotFoundError):
    def __init__(self, product_id):
        super().__init__("Product", product_id)


# =============================================================================
# LEDGER SNAPSHOTS
# =============================================================================

def load_ledger(keys: Iterable[tuple[str, str]], *, lock: bool = True) -> StockLedger:
    """
    Ledger snapshot holding exactly the requested (outlet_id, product_id) keys.

    Keys without a row read as 0. With lock=True the existing rows stay
    locked until the surrounding transaction ends.
    """
    keys = set(keys)
    if not keys:
        return StockLedger()

    outlet_ids = {outlet_id for outlet_id, _ in keys}
    product_ids = {product_id for _, product_id in keys}
    query = db.session.query(OutletStock).filter(
        OutletStock.outlet_id.in_(outlet_ids),
        OutletStock.product_id.in_(product_ids),
    )
    if lock:
        query = lock_for_update(query)

    rows = [
        (row.outlet_id, row.product_id, row.quantity)
        for row in query.all()
        if (row.outlet_id, row.product_id) in keys
    ]
    return StockLedger.from_rows(rows)


def apply_ledger(
    before: StockLedger,
    after: StockLedger,
    movements: Iterable[MovementFact],
    *,
    actor_id: str | None = None,
) -> list[StockMovement]:
    """
    Persist the difference between two snapshots plus the movements behind it.

    Does not commit.

    Returns:
        The StockMovement rows added
    """
    now = utcnow()
    for (outlet_id, product_id), quantity in after.changes_from(before).items():
        row = lock_for_update(
            db.session.query(OutletStock).filter_by(outlet_id=outlet_id, product_id=product_id)
        ).first()
        if row is None:
            row = OutletStock(outlet_id=outlet_id, product_id=product_id, quantity=quantity, updated_at=now)
            db.session.add(row)
        else:
            row.quantity = quantity
            row.updated_at = now

    rows = []
    for movement in movements:
        row = StockMovement(
            outlet_id=movement.outlet_id,
            product_id=movement.product_id,
            movement_type=movement.movement_type,
            quantity=movement.quantity,
            reference_type=movement.reference_type,
            reference_id=str(movement.reference_id),
            notes=movement.notes,
            created_by=actor_id,
            created_at=now,
        )
        db.session.add(row)
        rows.append(row)

    db.session.flush()
    return rows


# =============================================================================
# READS
# =============================================================================

def missing_products(product_ids) -> list:
    """One validation error per referenced product id that has no Product row."""
    wanted = {pid for pid in product_ids if pid}
    if not wanted:
        return []
    found = {pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(wanted)).all()}
    return [
        validation_error(f"Product {pid} not found", product_id=pid)
        for pid in sorted(wanted - found)
    ]


def get_quantity(outlet_id: str, product_id: str) -> int:
    row = db.session.query(OutletStock).filter_by(outlet_id=outlet_id, product_id=product_id).first()
    return row.quantity if row else 0


def list_outlet_stock(outlet_id: str | None = None, product_id: str | None = None) -> list[OutletStock]:
    query = db.session.query(OutletStock)
    if outlet_id:
        query = query.filter(OutletStock.outlet_id == outlet_id)
    if product_id:
        query = query.filter(OutletStock.product_id == product_id)
    return query.order_by(OutletStock.outlet_id.asc(), OutletStock.product_id.asc()).all()


def product_breakdown(product_id: str) -> dict:
    """Stock of one product at every outlet that has a row, plus the total."""
    if db.session.get(Product, product_id) is None:
        raise ProductNotFoundError(product_id)
    rows = list_outlet_stock(product_id=product_id)
    ledger = StockLedger.from_rows((r.outlet_id, r.product_id, r.quantity) for r in rows)
    return {
        "product_id": product_id,
        "outlets": [{"outlet_id": r.outlet_id, "quantity": r.quantity} for r in rows],
        "total": ledger.total(product_id),
    }


def list_movements(
    outlet_id: str | None = None,
    product_id: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    limit: int | None = None,
) -> list[StockMovement]:
    query = db.session.query(StockMovement)
    if outlet_id:
        query = query.filter(StockMovement.outlet_id == outlet_id)
    if product_id:
        query = query.filter(StockMovement.product_id == product_id)
    if reference_type:
        query = query.filter(StockMovement.reference_type == reference_type)
    if reference_id:
        query = query.filter(StockMovement.reference_id == str(reference_id))
    query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.asc())
    if limit:
        query = query.limit(limit)
    return query.all()


# =============================================================================
# MANUAL CORRECTION
# =============================================================================

def set_stock(
    outlet_id: str,
    product_id: str,
    quantity: int,
    actor_id: str,
    notes: str | None = None,
) -> OutletStock:
    """
    Overwrite the on-hand quantity (stock count correction).

    Emits an adjustment movement carrying the signed delta. Setting the
    quantity it already has writes nothing but still returns the row.

    Raises:
        StockError: Negative quantity or blank outlet
        ProductNotFoundError: Unknown product
    """
    def _op():
        errors = []
        if not outlet_id or not str(outlet_id).strip():
            errors.append(validation_error("Outlet is required", field="outlet_id"))
        if quantity < 0:
            errors.append(validation_error(
                f"Stock quantity cannot be negative ({quantity})",
                field="quantity", outlet_id=outlet_id, product_id=product_id,
            ))
        if errors:
            raise StockError(errors)
        if db.session.get(Product, product_id) is None:
            raise ProductNotFoundError(product_id)

        before = load_ledger([(outlet_id, product_id)])
        previous = before.quantity(outlet_id, product_id)
        after = before.set(outlet_id, product_id, quantity)
        delta = quantity - previous

        if delta:
            movement = MovementFact(
                outlet_id=outlet_id,
                product_id=product_id,
                movement_type=MOVEMENT_ADJUSTMENT,
                quantity=delta,
                reference_type=REFERENCE_ADJUSTMENT,
                reference_id=f"{outlet_id}:{product_id}",
                notes=notes or f"Stock set from {previous} to {quantity}",
            )
            apply_ledger(before, after, [movement], actor_id=actor_id)
            record_event(
                "stock.adjusted",
                "outlet_stock",
                f"{outlet_id}:{product_id}",
                {
                    "outlet_id": outlet_id,
                    "product_id": product_id,
                    "previous_quantity": previous,
                    "new_quantity": quantity,
                    "delta": delta,
                    "notes": notes,
                },
                actor_id=actor_id,
            )
            logger.info(
                "Stock of product %s at outlet %s set %d -> %d by %s",
                product_id, outlet_id, previous, quantity, actor_id,
            )

        db.session.commit()
        row = db.session.query(OutletStock).filter_by(outlet_id=outlet_id, product_id=product_id).first()
        if row is None:
            # Setting 0 where no row existed
            row = OutletStock(outlet_id=outlet_id, product_id=product_id, quantity=0)
        return row

    return run_with_retry(_op)
