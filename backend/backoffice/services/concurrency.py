# Overview: Row locking and retry helpers shared by every write path.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..domain.identifiers import IdentifierTakenError
from ..extensions import db


logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF = 0.1


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the rows `query` returns.

    NOTE: SQLite ignores FOR UPDATE; there the version_id columns are what
    turns a concurrent write into a StaleDataError.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = DEFAULT_ATTEMPTS, backoff_base: float = DEFAULT_BACKOFF):
    """
    Run a unit of work, retrying it from scratch on lock or version conflicts
    and on document numbers taken by a concurrent request.

    `func` must re-read everything it needs and commit at its end, since the
    session is rolled back before each retry and a retried commit alone would
    have nothing left to write. Business errors raised by `func` are not
    retried. After the last attempt the original exception is re-raised.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (OperationalError, StaleDataError, IdentifierTakenError) as exc:
            db.session.rollback()
            if attempt >= attempts:
                logger.error("Giving up after %d attempts: %s", attempts, exc)
                raise
            logger.warning("Concurrent update conflict (attempt %d/%d): %s", attempt, attempts, exc)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
