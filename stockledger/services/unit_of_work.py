"""
Atomic unit helper for every write the engine makes.

`run_atomic` runs one operation against the session, commits it, and rolls it
back on any exception. Transient database failures (lock/serialization errors,
unique-key races from lazily created rows, optimistic version mismatches) are
retried with exponential backoff; after the last attempt they surface as
`ConcurrencyConflictError`. Domain errors and other integrity violations
(CHECK, NOT NULL, foreign keys) are never retried.
"""
import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockledger.core.config import settings
from stockledger.core.errors import ConcurrencyConflictError
from stockledger.core.observability import log_event

T = TypeVar("T")

logger = logging.getLogger("stockledger.ledger")

TRANSIENT_ERRORS = (OperationalError, IntegrityError, StaleDataError)

PG_UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    # psycopg exposes `sqlstate`, psycopg2 `pgcode`; sqlite only has the message.
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == PG_UNIQUE_VIOLATION
    return "UNIQUE constraint failed" in str(orig)


def run_atomic(
    db: Session,
    action: str,
    operation: Callable[[Session], T],
    *,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    max_attempts = attempts if attempts is not None else settings.ledger_retry_attempts
    backoff = backoff_seconds if backoff_seconds is not None else settings.ledger_retry_backoff_seconds

    for attempt in range(1, max_attempts + 1):
        try:
            result = operation(db)
            db.commit()
            return result
        except TRANSIENT_ERRORS as exc:
            db.rollback()
            if isinstance(exc, IntegrityError) and not is_unique_violation(exc):
                raise
            if attempt >= max_attempts:
                log_event(
                    "ledger.conflict",
                    level=logging.ERROR,
                    log=logger,
                    action=action,
                    attempts=attempt,
                    error=str(exc),
                )
                raise ConcurrencyConflictError(action, attempt) from exc
            delay = backoff * (2 ** (attempt - 1))
            log_event(
                "ledger.retry",
                level=logging.WARNING,
                log=logger,
                action=action,
                attempt=attempt,
                delay_seconds=delay,
                error=type(exc).__name__,
            )
            if delay > 0:
                sleep(delay)
        except Exception:
            db.rollback()
            raise

    raise ConcurrencyConflictError(action, max_attempts)
