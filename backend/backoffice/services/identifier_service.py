# Overview: Persistence-backed document numbering (PO-, TRF-, RTN-YYYYMMDD-####).

"""
Identifier Service

WHY: Document numbers are printed, searched for and quoted over the phone,
so they must be unique and readable. The pure generator picks max+1 for the
day; this service feeds it the numbers already stored and re-checks the
candidate against the table before handing it out.

UNIQUENESS:
- each candidate is drawn from a fresh query, so a number taken by a
  concurrent request between attempts is seen on the next attempt
- the unique constraint on the number column is the final backstop; a
  violation at flush becomes IdentifierTakenError, which run_with_retry
  answers with a fresh number and, once out of attempts, the routes with 409
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..domain.identifiers import (
    DEFAULT_ATTEMPTS,
    IdentifierTakenError,
    generate_identifier,
    generate_unique_identifier,
    identifier_prefix,
)
from ..extensions import db
from ..time_utils import utcnow


logger = logging.getLogger(__name__)


def existing_identifiers(column, prefix: str, on_date: date | datetime) -> list[str]:
    """Numbers already stored in `column` for this prefix and date."""
    pattern = f"{identifier_prefix(prefix, on_date)}%"
    return [value for (value,) in db.session.query(column).filter(column.like(pattern)).all()]


def identifier_exists(column, value: str) -> bool:
    return db.session.query(column).filter(column == value).first() is not None


def next_identifier(column, prefix: str, *, on_date: date | datetime | None = None) -> str:
    """
    Allocate the next number for `prefix` on `on_date` (default: today, UTC).

    Args:
        column: Model column holding the numbers, e.g. PurchaseOrder.order_number
        prefix: PO, TRF or RTN

    Raises:
        IdentifierError: Sequence for the day used up, or every attempt collided
    """
    on_date = on_date or utcnow()
    attempts = current_app.config.get("IDENTIFIER_RETRY_ATTEMPTS", DEFAULT_ATTEMPTS)

    def _candidate() -> str:
        return generate_identifier(prefix, existing_identifiers(column, prefix, on_date), on_date)

    identifier = generate_unique_identifier(
        _candidate,
        lambda value: identifier_exists(column, value),
        attempts=attempts,
    )
    logger.debug("Allocated identifier %s", identifier)
    return identifier


def flush_numbered(column, number: str) -> None:
    """
    Flush a document that was just given `number` from `column`.

    Raises:
        IdentifierTakenError: Another request stored the same number first
    """
    try:
        db.session.flush()
    except IntegrityError as exc:
        if column.key not in str(exc.orig):
            raise
        logger.warning("Identifier %s was taken concurrently", number)
        raise IdentifierTakenError(f"Identifier {number} is already in use") from exc
