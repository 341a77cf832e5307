# Overview: Audit-event sink; appends one row per business fact inside the caller's transaction.

from __future__ import annotations

from datetime import date, datetime

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import to_utc_z, utcnow


def _jsonable(value):
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value


def record_event(
    event_type: str,
    entity_type: str,
    entity_id,
    details: dict | None = None,
    actor_id: str | None = None,
    occurred_at: datetime | None = None,
) -> AuditEvent:
    """
    Append an audit event to the current session.

    Does not commit: the event becomes visible together with the change it
    describes, or not at all.

    Args:
        event_type: Dotted name, e.g. "transfer.completed"
        entity_type: Kind of record the event is about
        entity_id: Id of that record
        details: Extra context (datetimes and sets are made JSON-safe)
        actor_id: Who did it
    """
    event = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_id=actor_id,
        details=_jsonable(details or {}),
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(event)
    return event


def list_events(entity_type: str | None = None, entity_id: str | None = None, event_type: str | None = None) -> list[AuditEvent]:
    query = db.session.query(AuditEvent)
    if entity_type:
        query = query.filter(AuditEvent.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditEvent.entity_id == str(entity_id))
    if event_type:
        query = query.filter(AuditEvent.event_type == event_type)
    return query.order_by(AuditEvent.occurred_at.asc(), AuditEvent.id.asc()).all()
