# Overview: Transaction number allocation (TXN + YYYYMMDD + 6-digit day sequence).

from __future__ import annotations

import logging
import re
import time
from datetime import date, datetime
from typing import Callable

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Transaction
from ..time_utils import utcnow
from ..validation import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

TXN_PREFIX = "TXN"
SEQUENCE_WIDTH = 6
MAX_SEQUENCE = 10 ** SEQUENCE_WIDTH - 1
# Suffixes from here up are timestamp fallbacks; day sequences stay below
FALLBACK_FLOOR = 900_000
# Timestamp suffixes tried after the sequential attempts are exhausted
FALLBACK_ATTEMPTS = 10

_NUMBER_RE = re.compile(r"^TXN(\d{8})(\d{6})$")


def date_prefix(day: date) -> str:
    return f"{TXN_PREFIX}{day:%Y%m%d}"


def format_transaction_number(day: date, sequence: int) -> str:
    if sequence < 0 or sequence > MAX_SEQUENCE:
        raise ValidationError("Transaction sequence out of range", details={"sequence": sequence})
    return f"{date_prefix(day)}{sequence:0{SEQUENCE_WIDTH}d}"


def parse_transaction_number(number: str) -> tuple[date, int]:
    """Split "TXN20261019000042" into (date(2026, 10, 19), 42)."""
    match = _NUMBER_RE.match(number or "")
    if not match:
        raise ValidationError("Malformed transaction number", details={"transaction_number": number})
    try:
        day = datetime.strptime(match.group(1), "%Y%m%d").date()
    except ValueError:
        raise ValidationError("Malformed transaction number", details={"transaction_number": number})
    return day, int(match.group(2))


def _highest_sequence(day: date) -> int:
    prefix = date_prefix(day)
    # Fixed-width numbers, so lexical order equals numeric order
    latest = (
        db.session.query(Transaction.transaction_number)
        .filter(Transaction.transaction_number.like(f"{prefix}%"))
        .filter(Transaction.transaction_number < format_transaction_number(day, FALLBACK_FLOOR))
        .order_by(Transaction.transaction_number.desc())
        .limit(1)
        .scalar()
    )
    if latest is None:
        return 0
    return parse_transaction_number(latest)[1]


def next_transaction_number(today: date | None = None) -> str:
    """
    Highest existing sequence for the day + 1 (fallback numbers excluded).

    Read-then-write: this alone does NOT guarantee uniqueness under
    concurrency. allocate_transaction_number() handles the collisions.
    """
    day = today or utcnow().date()
    return format_transaction_number(day, min(_highest_sequence(day) + 1, FALLBACK_FLOOR - 1))


def _is_number_conflict(exc: IntegrityError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "transaction_number" in message or "uq_transactions_number" in message


def _try_persist(persist: Callable[[str], object], number: str) -> bool:
    """Run persist(number) in a SAVEPOINT; False on a number collision."""
    nested = db.session.begin_nested()
    try:
        persist(number)
        db.session.flush()
        nested.commit()
        return True
    except IntegrityError as exc:
        nested.rollback()
        if not _is_number_conflict(exc):
            raise
        return False
    except Exception:
        nested.rollback()
        raise


def allocate_transaction_number(
    persist: Callable[[str], object],
    *,
    max_attempts: int = 5,
    today: date | None = None,
    clock: Callable[[], int] = time.time_ns,
) -> str:
    """
    Allocate a unique number by persisting with it.

    `persist(number)` must add the row carrying the number to the session.
    On a uniqueness conflict the sequence is bumped and retried up to
    `max_attempts` times; after that a timestamp-derived suffix in the
    FALLBACK_FLOOR..MAX_SEQUENCE range is used so the sale still goes
    through, trading strict sequential numbering for forward progress.
    Fallback numbers never feed the next day sequence, so later sales keep
    counting on from the last sequential number.

    Does NOT commit; the caller owns the outer transaction.
    """
    day = today or utcnow().date()
    sequence = _highest_sequence(day) + 1

    for attempt in range(1, max_attempts + 1):
        if sequence >= FALLBACK_FLOOR:
            break
        number = format_transaction_number(day, sequence)
        if _try_persist(persist, number):
            return number
        logger.warning("Transaction number %s already taken (attempt %d/%d)", number, attempt, max_attempts)
        sequence = max(sequence + 1, _highest_sequence(day) + 1)

    for offset in range(FALLBACK_ATTEMPTS):
        suffix = FALLBACK_FLOOR + (clock() // 1000 + offset) % (MAX_SEQUENCE + 1 - FALLBACK_FLOOR)
        number = format_transaction_number(day, suffix)
        logger.warning("Falling back to timestamp transaction number %s", number)
        if _try_persist(persist, number):
            return number

    raise PersistenceError("Could not allocate a unique transaction number")
