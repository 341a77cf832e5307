from __future__ import annotations

from ..domain import policies
from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .inventory import new_id


class ReturnPolicy(db.Model):
    """
    Store return rules. At most one row is active; the services read that one.
    """
    __tablename__ = "return_policies"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    max_return_days = db.Column(db.Integer, nullable=False, default=policies.DEFAULT_MAX_RETURN_DAYS)
    non_returnable_categories = db.Column(db.JSON, nullable=False, default=list)
    require_receipt = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_domain(self) -> policies.ReturnPolicy:
        return policies.ReturnPolicy(
            id=self.id,
            max_return_days=self.max_return_days,
            non_returnable_categories=frozenset(self.non_returnable_categories or ()),
            require_receipt=self.require_receipt,
            is_active=self.is_active,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "max_return_days": self.max_return_days,
            "non_returnable_categories": list(self.non_returnable_categories or []),
            "require_receipt": self.require_receipt,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
