from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class Product(db.Model):
    """
    Catalog entry referenced by orders, transfers and returns.

    Catalog management lives elsewhere; this table carries what the
    back-office needs to read: a name for messages and the category id the
    return policy is checked against.
    """
    __tablename__ = "products"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Matched against ReturnPolicy.non_returnable_categories
    category_id = db.Column(db.String(36), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category_id": self.category_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class OutletStock(db.Model):
    """
    One row of the stock ledger: on-hand quantity of a product at an outlet.

    Rows are only written by the stock service, inside the same unit of work
    as the lifecycle change that caused them. The version column makes a
    concurrent write to the same (outlet, product) fail instead of being lost.
    """
    __tablename__ = "outlet_stock"
    __table_args__ = (
        db.UniqueConstraint("outlet_id", "product_id", name="uq_outlet_stock_outlet_product"),
        db.CheckConstraint("quantity >= 0", name="ck_outlet_stock_quantity_non_negative"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    outlet_id = db.Column(db.String(36), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "outlet_id": self.outlet_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of every ledger change.

    quantity is signed: transfer_out rows are negative, adjustment rows carry
    the delta, everything else is positive.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    outlet_id = db.Column(db.String(36), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)

    # in, out, transfer_in, transfer_out, return, adjustment
    movement_type = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.String(64), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
