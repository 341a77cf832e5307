from __future__ import annotations

from ..domain import purchase_orders as po_domain
from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .inventory import new_id


class PurchaseOrder(db.Model):
    """
    Order placed with a supplier for delivery to one outlet.

    LIFECYCLE:
    1. pending: created, awaiting approval
    2. approved: sent to supplier, can be received
    3. received: goods counted in, stock increased by received quantities
    4. cancelled: withdrawn before receipt

    order_number is PO-YYYYMMDD-#### and unique across all orders.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_purchase_orders_order_number"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_number = db.Column(db.String(32), nullable=False)
    supplier_id = db.Column(db.String(36), nullable=False, index=True)
    outlet_id = db.Column(db.String(36), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False)

    # Integer minor units; always the sum of the item totals
    total_amount = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=po_domain.PO_STATUS_PENDING, index=True)

    order_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    expected_date = db.Column(db.DateTime(timezone=True), nullable=True)
    received_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.position",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_domain(self) -> po_domain.PurchaseOrder:
        return po_domain.PurchaseOrder(
            id=self.id,
            order_number=self.order_number,
            supplier_id=self.supplier_id,
            user_id=self.user_id,
            outlet_id=self.outlet_id,
            total_amount=self.total_amount,
            status=self.status,
            order_date=self.order_date,
            items=tuple(item.to_domain() for item in self.items),
            expected_date=self.expected_date,
            received_date=self.received_date,
            notes=self.notes,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "supplier_id": self.supplier_id,
            "outlet_id": self.outlet_id,
            "user_id": self.user_id,
            "total_amount": self.total_amount,
            "status": self.status,
            "order_date": to_utc_z(self.order_date),
            "expected_date": to_utc_z(self.expected_date),
            "received_date": to_utc_z(self.received_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    purchase_order_id = db.Column(db.String(36), db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    total_price = db.Column(db.Integer, nullable=False)

    # Filled in on receipt; may differ from quantity
    received_quantity = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    def to_domain(self) -> po_domain.PurchaseOrderItem:
        return po_domain.PurchaseOrderItem(
            id=self.id,
            product_id=self.product_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            total_price=self.total_price,
            received_quantity=self.received_quantity,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
            "received_quantity": self.received_quantity,
        }
