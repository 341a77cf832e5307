# Overview: Date-scoped sequential document numbers (PO-, RTN-, TRF-YYYYMMDD-####).

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Callable, Iterable, Optional


PREFIX_PURCHASE_ORDER = "PO"
PREFIX_RETURN = "RTN"
PREFIX_TRANSFER = "TRF"

SEQUENCE_PAD = 4
MAX_SEQUENCE = 10 ** SEQUENCE_PAD - 1
DEFAULT_ATTEMPTS = 3

_IDENTIFIER_RE = re.compile(r"^([A-Z]+)-(\d{8})-(\d{4})$")


class IdentifierError(Exception):
    """Raised when no unique identifier can be produced."""
    pass


class IdentifierTakenError(IdentifierError):
    """Raised when an allocated number was stored by another request first."""
    pass


def format_identifier_date(value: date | datetime) -> str:
    """YYYYMMDD for the calendar date of `value`."""
    return f"{value.year:04d}{value.month:02d}{value.day:02d}"


def identifier_prefix(prefix: str, on_date: date | datetime) -> str:
    return f"{prefix}-{format_identifier_date(on_date)}-"


def format_identifier(prefix: str, on_date: date | datetime, sequence: int) -> str:
    if sequence < 1 or sequence > MAX_SEQUENCE:
        raise IdentifierError(
            f"Sequence {sequence} is out of range for {prefix} on {format_identifier_date(on_date)}"
        )
    return f"{identifier_prefix(prefix, on_date)}{sequence:0{SEQUENCE_PAD}d}"


def parse_identifier(value: str) -> Optional[tuple[str, str, int]]:
    """
    Split an identifier into (prefix, YYYYMMDD, sequence).

    Returns None when the value does not match PREFIX-YYYYMMDD-####.
    """
    if not value:
        return None
    match = _IDENTIFIER_RE.match(value)
    if not match:
        return None
    return match.group(1), match.group(2), int(match.group(3))


def is_valid_identifier(value: str, prefix: str | None = None) -> bool:
    parsed = parse_identifier(value)
    if parsed is None:
        return False
    return prefix is None or parsed[0] == prefix


def max_sequence(prefix: str, existing: Iterable[str], on_date: date | datetime) -> int:
    """Highest sequence among `existing` for this prefix and date (0 if none)."""
    date_str = format_identifier_date(on_date)
    highest = 0
    for value in existing:
        parsed = parse_identifier(value)
        if parsed is None:
            continue
        if parsed[0] != prefix or parsed[1] != date_str:
            continue
        highest = max(highest, parsed[2])
    return highest


def generate_identifier(prefix: str, existing: Iterable[str], on_date: date | datetime) -> str:
    """
    Next identifier for `prefix` on `on_date`.

    The sequence continues after the highest one already issued for that
    date, so numbers are never reused even when an earlier document is later
    cancelled. Identifiers of other dates or other prefixes are ignored.

    Raises:
        IdentifierError: If the 4-digit sequence for the date is used up
    """
    return format_identifier(prefix, on_date, max_sequence(prefix, existing, on_date) + 1)


def generate_unique_identifier(
    next_candidate: Callable[[], str],
    exists: Callable[[str], bool],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
) -> str:
    """
    Draw candidates until one is not already taken.

    Args:
        next_candidate: Produces a fresh candidate on each call
        exists: True if a record already uses the candidate
        attempts: How many candidates to try

    Raises:
        IdentifierError: If every attempt collided
    """
    for _ in range(attempts):
        candidate = next_candidate()
        if not exists(candidate):
            return candidate
    raise IdentifierError(f"Could not generate unique identifier after {attempts} attempts")
