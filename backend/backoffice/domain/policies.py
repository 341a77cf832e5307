# Overview: Return policy predicates (return window, category deny-list).

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from ..time_utils import days_between, utcnow
from .results import ValidationResult, validation_error


DEFAULT_MAX_RETURN_DAYS = 7

NON_RETURNABLE_MESSAGE = "Product cannot be returned under store policy"


@dataclass(frozen=True)
class ReturnPolicy:
    max_return_days: int = DEFAULT_MAX_RETURN_DAYS
    non_returnable_categories: frozenset = field(default_factory=frozenset)
    require_receipt: bool = True
    is_active: bool = True
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "max_return_days": self.max_return_days,
            "non_returnable_categories": sorted(self.non_returnable_categories),
            "require_receipt": self.require_receipt,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class PolicyCheck:
    allowed: bool
    requires_approval: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "requires_approval": self.requires_approval,
            "reason": self.reason,
        }


ALLOWED = PolicyCheck(allowed=True)


def check_return_window(
    sale_date: datetime | date,
    policy: ReturnPolicy,
    *,
    now: datetime | None = None,
) -> PolicyCheck:
    """
    Date eligibility.

    Past the window the return is still allowed but needs manager approval.
    Exactly max_return_days whole days is still inside the window.
    """
    elapsed = days_between(sale_date, now or utcnow())
    if elapsed > policy.max_return_days:
        return PolicyCheck(
            allowed=True,
            requires_approval=True,
            reason=(
                f"Sale is past the {policy.max_return_days}-day return window "
                f"({elapsed} days). Manager approval required."
            ),
        )
    return ALLOWED


def check_category(category_id: str | None, policy: ReturnPolicy) -> PolicyCheck:
    """Category eligibility. Products without a category are never blocked."""
    if not category_id:
        return ALLOWED
    if category_id in policy.non_returnable_categories:
        return PolicyCheck(allowed=False, reason=NON_RETURNABLE_MESSAGE)
    return ALLOWED


def check_full_eligibility(
    sale_date: datetime | date,
    category_id: str | None,
    policy: ReturnPolicy,
    *,
    now: datetime | None = None,
) -> PolicyCheck:
    """Category first (an outright block), then the return window (an approval gate)."""
    category = check_category(category_id, policy)
    if not category.allowed:
        return category
    return check_return_window(sale_date, policy, now=now)


def check_return_eligibility(
    sale_date: datetime | date,
    category_ids: Iterable[str | None],
    policy: ReturnPolicy | None,
    *,
    now: datetime | None = None,
) -> PolicyCheck:
    """
    Evaluate a whole return: every product's category, then the window once.

    A missing or inactive policy allows everything without approval.
    """
    if policy is None or not policy.is_active:
        return ALLOWED
    for category_id in category_ids:
        category = check_category(category_id, policy)
        if not category.allowed:
            return category
    return check_return_window(sale_date, policy, now=now)


def validate_policy(
    max_return_days=None,
    non_returnable_categories=None,
    require_receipt=None,
    is_active=None,
) -> ValidationResult:
    """Check a partial policy update. Only the fields given are checked."""
    errors = []
    if max_return_days is not None:
        if isinstance(max_return_days, bool) or not isinstance(max_return_days, int):
            errors.append(validation_error("Max return days must be an integer", field="max_return_days"))
        elif max_return_days < 1:
            errors.append(validation_error(
                "Max return days must be at least 1",
                field="max_return_days", value=max_return_days,
            ))
    if non_returnable_categories is not None:
        if not isinstance(non_returnable_categories, (list, tuple, set, frozenset)) or not all(
            isinstance(c, str) and c.strip() for c in non_returnable_categories
        ):
            errors.append(validation_error(
                "Non-returnable categories must be a list of category ids",
                field="non_returnable_categories",
            ))
    for name, value in (("require_receipt", require_receipt), ("is_active", is_active)):
        if value is not None and not isinstance(value, bool):
            errors.append(validation_error(f"{name} must be a boolean", field=name))
    return ValidationResult(tuple(errors))
