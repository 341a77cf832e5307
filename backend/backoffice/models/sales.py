from __future__ import annotations

from ..domain import returns as return_domain
from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .inventory import new_id


class Transaction(db.Model):
    """
    A completed sale, recorded by the point of sale.

    The back-office only reads it, except for each line's returned_quantity
    which completed returns increase.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_number", name="uq_transactions_transaction_number"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    transaction_number = db.Column(db.String(32), nullable=False)
    outlet_id = db.Column(db.String(36), nullable=True, index=True)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def to_domain(self) -> return_domain.Sale:
        return return_domain.Sale(
            id=self.id,
            outlet_id=self.outlet_id,
            sale_date=self.transaction_date,
            lines=tuple(item.to_domain() for item in self.items),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "outlet_id": self.outlet_id,
            "transaction_date": to_utc_z(self.transaction_date),
            "total_amount": self.total_amount,
            "items": [item.to_dict() for item in self.items],
        }


class TransactionItem(db.Model):
    __tablename__ = "transaction_items"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    transaction_id = db.Column(db.String(36), db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    # Price before discount when it differs from unit_price
    original_price = db.Column(db.Integer, nullable=True)
    # Per unit
    discount_amount = db.Column(db.Integer, nullable=False, default=0)

    returned_quantity = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_domain(self) -> return_domain.SaleLine:
        return return_domain.SaleLine(
            id=self.id,
            product_id=self.product_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            discount_amount=self.discount_amount or 0,
            original_price=self.original_price,
            category_id=self.product.category_id if self.product else None,
            returned_quantity=self.returned_quantity or 0,
            product_name=self.product.name if self.product else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "original_price": self.original_price,
            "discount_amount": self.discount_amount,
            "returned_quantity": self.returned_quantity,
        }
