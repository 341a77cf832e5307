# Overview: Exceptions raised by the service layer and mapped to HTTP responses by the routes.

from __future__ import annotations

from typing import Iterable

from ..domain.results import KIND_NOT_FOUND, LifecycleError


class LifecycleServiceError(Exception):
    """
    A business rule rejected the operation.

    Carries every LifecycleError the core returned so the caller can show all
    of them at once; str() is the first message.
    """

    def __init__(self, errors: Iterable[LifecycleError] | LifecycleError):
        if isinstance(errors, LifecycleError):
            errors = (errors,)
        self.errors = tuple(errors)
        if not self.errors:
            raise ValueError("LifecycleServiceError needs at least one error")
        super().__init__(self.errors[0].message)

    @property
    def kind(self) -> str:
        return self.errors[0].kind

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.errors]

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "kind": self.kind,
            "errors": [e.to_dict() for e in self.errors],
        }


class RecordNotFoundError(LookupError):
    """A referenced record does not exist (distinct from 'exists but invalid')."""

    kind = KIND_NOT_FOUND

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "kind": self.kind,
            "errors": [{
                "kind": self.kind,
                "message": str(self),
                "details": {"entity": self.entity, "id": self.entity_id},
            }],
        }
