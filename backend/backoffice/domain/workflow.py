# Overview: Status tables for the document lifecycles.

"""
Each lifecycle resource (purchase order, stock transfer, return) declares its
statuses and a table of allowed next statuses. A transition is checked
against the table before any field is touched:

- a status with no outgoing transitions is terminal; anything attempted from
  it fails with a terminal-state error naming the status
- otherwise the target must be listed for the current status
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from .results import LifecycleError, invalid_transition, terminal_state, validation_error


@dataclass(frozen=True)
class StatusMachine:
    resource: str
    transitions: Mapping[str, frozenset]

    @property
    def statuses(self) -> frozenset:
        return frozenset(self.transitions)

    @property
    def terminal_statuses(self) -> frozenset:
        return frozenset(s for s, targets in self.transitions.items() if not targets)

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal_statuses

    def allowed_targets(self, status: str) -> frozenset:
        return self.transitions.get(status, frozenset())

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.allowed_targets(current)

    def check(self, current: str, target: str) -> LifecycleError | None:
        """None if current -> target is allowed, else the error describing why not."""
        if current not in self.transitions:
            return validation_error(
                f"Unknown {self.resource} status '{current}'",
                resource=self.resource, status=current,
            )
        if target not in self.transitions:
            return validation_error(
                f"Unknown {self.resource} status '{target}'",
                resource=self.resource, status=target,
            )
        if self.is_terminal(current):
            return terminal_state(self.resource, current, target=target)
        if not self.can_transition(current, target):
            return invalid_transition(self.resource, current, target)
        return None
