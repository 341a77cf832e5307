from __future__ import annotations

from ..domain import returns as return_domain
from ..domain import transfers as transfer_domain
from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .inventory import new_id


class StockTransfer(db.Model):
    """
    Movement of stock from one outlet to another.

    LIFECYCLE:
    1. pending: requested, source stock checked but not reserved
    2. approved: signed off, still no stock effect
    3. completed: source decreased and destination increased by the same amount
    4. cancelled: withdrawn before completion
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.UniqueConstraint("transfer_number", name="uq_stock_transfers_transfer_number"),
        db.CheckConstraint("source_outlet_id <> destination_outlet_id", name="ck_stock_transfers_distinct_outlets"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    transfer_number = db.Column(db.String(32), nullable=False)
    source_outlet_id = db.Column(db.String(36), nullable=False, index=True)
    destination_outlet_id = db.Column(db.String(36), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=transfer_domain.TRANSFER_STATUS_PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    approved_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "StockTransferItem",
        backref="transfer",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="StockTransferItem.position",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_domain(self) -> transfer_domain.StockTransfer:
        return transfer_domain.StockTransfer(
            id=self.id,
            transfer_number=self.transfer_number,
            source_outlet_id=self.source_outlet_id,
            destination_outlet_id=self.destination_outlet_id,
            status=self.status,
            created_by=self.created_by,
            items=tuple(
                transfer_domain.TransferItem(item.product_id, item.quantity, id=item.id)
                for item in self.items
            ),
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            completed_at=self.completed_at,
            notes=self.notes,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "transfer_number": self.transfer_number,
            "source_outlet_id": self.source_outlet_id,
            "destination_outlet_id": self.destination_outlet_id,
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "approved_at": to_utc_z(self.approved_at),
            "completed_at": to_utc_z(self.completed_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class StockTransferItem(db.Model):
    __tablename__ = "stock_transfer_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_transfer_items_quantity_positive"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    transfer_id = db.Column(db.String(36), db.ForeignKey("stock_transfers.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
        }


class Return(db.Model):
    """
    Customer return against a past sale.

    LIFECYCLE:
    1. pending_approval: past the return window, waiting for a manager
    2. approved: may be completed (created here directly inside the window)
    3. completed: refund paid, resellable items restocked
    4. rejected: manager refused it
    5. cancelled: withdrawn before completion

    DESIGN PRINCIPLES:
    - Every item keeps the original price and per-unit discount of its sale
      line, so the refund never pays back a discount twice
    - total_refund is stored and must always equal the sum of item refunds
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_returns_return_number"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    return_number = db.Column(db.String(32), nullable=False)
    transaction_id = db.Column(db.String(36), db.ForeignKey("transactions.id"), nullable=False, index=True)
    outlet_id = db.Column(db.String(36), nullable=True, index=True)

    status = db.Column(db.String(24), nullable=False, index=True)
    total_refund = db.Column(db.Integer, nullable=False, default=0)
    refund_method = db.Column(db.String(16), nullable=True)
    requires_approval = db.Column(db.Boolean, nullable=False, default=False)

    approved_by = db.Column(db.String(64), nullable=True)
    approval_reason = db.Column(db.Text, nullable=True)
    rejected_reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "ReturnItem",
        backref="return_document",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ReturnItem.position",
    )
    transaction = db.relationship("Transaction")
    __mapper_args__ = {"version_id_col": version_id}

    def to_domain(self) -> return_domain.Return:
        return return_domain.Return(
            id=self.id,
            return_number=self.return_number,
            transaction_id=self.transaction_id,
            outlet_id=self.outlet_id,
            status=self.status,
            total_refund=self.total_refund,
            requires_approval=self.requires_approval,
            created_by=self.created_by,
            items=tuple(item.to_domain() for item in self.items),
            refund_method=self.refund_method,
            approved_by=self.approved_by,
            approval_reason=self.approval_reason,
            rejected_reason=self.rejected_reason,
            notes=self.notes,
            completed_at=self.completed_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "transaction_id": self.transaction_id,
            "outlet_id": self.outlet_id,
            "status": self.status,
            "total_refund": self.total_refund,
            "refund_method": self.refund_method,
            "requires_approval": self.requires_approval,
            "approved_by": self.approved_by,
            "approval_reason": self.approval_reason,
            "rejected_reason": self.rejected_reason,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    __tablename__ = "return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_return_items_quantity_positive"),
        db.CheckConstraint("discount_amount <= original_price", name="ck_return_items_discount_within_price"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    return_id = db.Column(db.String(36), db.ForeignKey("returns.id"), nullable=False, index=True)
    transaction_item_id = db.Column(db.String(36), db.ForeignKey("transaction_items.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False)
    original_price = db.Column(db.Integer, nullable=False)
    # Per unit, copied from the sale line
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    refund_amount = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(32), nullable=False)
    reason_detail = db.Column(db.Text, nullable=True)
    is_damaged = db.Column(db.Boolean, nullable=False, default=False)
    is_resellable = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_domain(self) -> return_domain.ReturnItem:
        return return_domain.ReturnItem(
            id=self.id,
            transaction_item_id=self.transaction_item_id,
            product_id=self.product_id,
            quantity=self.quantity,
            original_price=self.original_price,
            discount_amount=self.discount_amount,
            refund_amount=self.refund_amount,
            reason=self.reason,
            is_damaged=self.is_damaged,
            is_resellable=self.is_resellable,
            reason_detail=self.reason_detail,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_item_id": self.transaction_item_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "original_price": self.original_price,
            "discount_amount": self.discount_amount,
            "refund_amount": self.refund_amount,
            "reason": self.reason,
            "reason_detail": self.reason_detail,
            "is_damaged": self.is_damaged,
            "is_resellable": self.is_resellable,
            "created_at": to_utc_z(self.created_at),
        }
