# Overview: Result and error values returned by the lifecycle functions.

"""
Lifecycle results.

Lifecycle functions never raise for business problems. They return a
LifecycleResult (or a ValidationResult for pure checks) carrying one or more
LifecycleError values. Each error has a machine-readable kind, a message the
UI can render as-is, and a details map with the context behind the message
(current status, product id, requested/available quantity, ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

from .ledger import StockLedger, StockMovement


T = TypeVar("T")


# Error kinds
KIND_VALIDATION = "validation"
KIND_INVALID_TRANSITION = "invalid_transition"
KIND_TERMINAL_STATE = "terminal_state"
KIND_INSUFFICIENT_STOCK = "insufficient_stock"
KIND_POLICY_BLOCKED = "policy_blocked"
KIND_NOT_FOUND = "not_found"
KIND_IDENTIFIER_EXHAUSTED = "identifier_exhausted"

ERROR_KINDS = frozenset({
    KIND_VALIDATION,
    KIND_INVALID_TRANSITION,
    KIND_TERMINAL_STATE,
    KIND_INSUFFICIENT_STOCK,
    KIND_POLICY_BLOCKED,
    KIND_NOT_FOUND,
    KIND_IDENTIFIER_EXHAUSTED,
})


@dataclass(frozen=True)
class LifecycleError:
    kind: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in ERROR_KINDS:
            raise ValueError(f"Unknown error kind: {self.kind}")

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": dict(self.details),
        }


def validation_error(message: str, **details) -> LifecycleError:
    return LifecycleError(KIND_VALIDATION, message, details)


def invalid_transition(resource: str, current: str, target: str, message: str | None = None) -> LifecycleError:
    """A transition the status table does not allow from a non-terminal status."""
    return LifecycleError(
        KIND_INVALID_TRANSITION,
        message or f"Cannot transition {resource} from {current} to {target}",
        {"resource": resource, "from": current, "to": target},
    )


def terminal_state(resource: str, current: str, message: str | None = None, target: str | None = None) -> LifecycleError:
    """Any transition attempted from a terminal status."""
    details = {"resource": resource, "from": current}
    if target is not None:
        details["to"] = target
    return LifecycleError(
        KIND_TERMINAL_STATE,
        message or f"Cannot change status of {current} {resource}",
        details,
    )


def insufficient_stock(outlet_id: str, product_id: str, available: int, requested: int) -> LifecycleError:
    return LifecycleError(
        KIND_INSUFFICIENT_STOCK,
        (
            f"Insufficient stock at outlet {outlet_id} for product {product_id}. "
            f"Available: {available}, requested: {requested}"
        ),
        {
            "outlet_id": outlet_id,
            "product_id": product_id,
            "available": available,
            "requested": requested,
        },
    )


def policy_blocked(message: str, **details) -> LifecycleError:
    return LifecycleError(KIND_POLICY_BLOCKED, message, details)


@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[LifecycleError, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.errors]

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": self.messages}


@dataclass(frozen=True)
class LifecycleResult(Generic[T]):
    """
    Outcome of a create/transition call.

    On success `resource` is the new resource state. Operations with a stock
    effect also return the new `ledger` and the `movements` they produced.
    On failure `errors` holds every problem found and nothing else is set.
    """
    success: bool
    resource: Optional[T] = None
    ledger: Optional[StockLedger] = None
    movements: tuple[StockMovement, ...] = ()
    errors: tuple[LifecycleError, ...] = ()

    @classmethod
    def ok(
        cls,
        resource: T,
        *,
        ledger: StockLedger | None = None,
        movements=(),
    ) -> "LifecycleResult[T]":
        return cls(True, resource=resource, ledger=ledger, movements=tuple(movements))

    @classmethod
    def fail(cls, *errors: LifecycleError) -> "LifecycleResult[T]":
        if not errors:
            raise ValueError("A failed result needs at least one error")
        return cls(False, errors=tuple(errors))

    @classmethod
    def from_validation(cls, validation: ValidationResult) -> "LifecycleResult[T]":
        return cls.fail(*validation.errors)

    @property
    def error(self) -> LifecycleError | None:
        return self.errors[0] if self.errors else None

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.errors]
