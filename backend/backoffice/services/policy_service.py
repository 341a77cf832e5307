# Overview: Active return policy lookup and updates.

from __future__ import annotations

import logging

from flask import current_app

from ..domain import policies
from ..extensions import db
from ..models import ReturnPolicy
from ..time_utils import utcnow
from .audit_service import record_event
from .concurrency import lock_for_update, run_with_retry
from .errors import LifecycleServiceError


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("max_return_days", "non_returnable_categories", "require_receipt", "is_active")


class ReturnPolicyError(LifecycleServiceError):
    """Raised when a policy update is invalid."""
    pass


def get_active_policy() -> ReturnPolicy | None:
    """The active policy row, or None when none is active."""
    return (
        db.session.query(ReturnPolicy)
        .filter(ReturnPolicy.is_active.is_(True))
        .order_by(ReturnPolicy.updated_at.desc())
        .first()
    )


def get_active_policy_rules() -> policies.ReturnPolicy | None:
    policy = get_active_policy()
    return policy.to_domain() if policy else None


def _default_max_return_days() -> int:
    return current_app.config.get("DEFAULT_MAX_RETURN_DAYS", policies.DEFAULT_MAX_RETURN_DAYS)


def update_policy(actor_id: str, **changes) -> ReturnPolicy:
    """
    Update the active policy, creating it from defaults if there is none.

    Defaults: DEFAULT_MAX_RETURN_DAYS days, no blocked categories, receipt
    required, active. Only keys in UPDATABLE_FIELDS are considered; None
    values are ignored.

    Raises:
        ReturnPolicyError: If a given value is invalid
    """
    changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS and v is not None}

    validation = policies.validate_policy(**changes)
    if not validation.valid:
        raise ReturnPolicyError(validation.errors)

    if "non_returnable_categories" in changes:
        # Keep first occurrence order, drop duplicates and whitespace
        seen = []
        for category_id in changes["non_returnable_categories"]:
            category_id = category_id.strip()
            if category_id not in seen:
                seen.append(category_id)
        changes["non_returnable_categories"] = seen

    def _op():
        now = utcnow()
        policy = lock_for_update(
            db.session.query(ReturnPolicy).filter(ReturnPolicy.is_active.is_(True))
        ).order_by(ReturnPolicy.updated_at.desc()).first()

        created = policy is None
        if created:
            policy = ReturnPolicy(
                max_return_days=_default_max_return_days(),
                non_returnable_categories=[],
                require_receipt=True,
                is_active=True,
                created_at=now,
            )
            db.session.add(policy)

        previous = {field: getattr(policy, field) for field in UPDATABLE_FIELDS}
        for field, value in changes.items():
            setattr(policy, field, value)
        policy.updated_at = now
        db.session.flush()

        record_event(
            "return_policy.updated",
            "return_policy",
            policy.id,
            {
                "created": created,
                "previous": None if created else previous,
                "changes": changes,
            },
            actor_id=actor_id,
        )
        db.session.commit()
        logger.info("Return policy %s updated by %s: %s", policy.id, actor_id, sorted(changes))
        return policy

    return run_with_retry(_op)


def ensure_default_policy() -> ReturnPolicy:
    """Return the active policy, creating the default one if none exists."""
    policy = get_active_policy()
    if policy is not None:
        return policy
    policy = ReturnPolicy(
        max_return_days=_default_max_return_days(),
        non_returnable_categories=[],
        require_receipt=True,
        is_active=True,
    )
    db.session.add(policy)
    db.session.commit()
    logger.info("Created default return policy (%d days)", policy.max_return_days)
    return policy
