# Overview: Retry and locking helpers shared by the sale, refund and stock paths.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

# Failures worth retrying: lock contention and optimistic version conflicts
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Row-level lock for read-modify-write on a transaction row.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version_id column on
    Transaction still catches concurrent writers there (StaleDataError).
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of DB work, rolling back and retrying on contention.

    `func` must be safe to re-run from scratch: it is called again after a
    full session rollback. Non-retryable errors propagate immediately.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.warning("Giving up after %d attempts: %s", attempts, exc)
                raise
            delay = backoff_base * (2 ** attempt)
            logger.info("Retrying after %s (attempt %d, sleeping %.2fs)", type(exc).__name__, attempt + 1, delay)
            time.sleep(delay)
