from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .inventory import new_id


class AuditEvent(db.Model):
    """
    Append-only audit trail.

    Written in the same transaction as the change it describes, so an event
    exists if and only if the change was committed. Rows are never updated;
    retention cleanup is handled outside this application.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    actor_id = db.Column(db.String(64), nullable=True, index=True)
    details = db.Column(db.JSON, nullable=False, default=dict)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "details": dict(self.details or {}),
            "occurred_at": to_utc_z(self.occurred_at),
        }
