"""
db/transactions.py -- Transaction helpers with retry on transient failures.

run_in_transaction() runs a unit of work inside engine.begin(): commit on
return, rollback on exception. run_with_retry() repeats that unit when the
failure is transient (lock contention, serialization conflicts, dropped
connections, pool exhaustion) with exponential backoff. Every other error,
IntegrityError included, propagates on the first attempt.

Usage:
    def work(conn):
        return conn.execute(users.insert().values(...)).rowcount

    rowcount = run_with_retry(engine, work)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

logger = logging.getLogger("starterapi.db")

T = TypeVar("T")

# Serialization failure, deadlock, too many connections.
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "53300"})

RETRYABLE_MESSAGES = (
    "database is locked",
    "database table is locked",
    "deadlock",
    "could not serialize",
    "too many connections",
    "connection reset",
    "timed out",
)


def is_retryable(exc: BaseException) -> bool:
    """True when a fresh attempt at the same transaction could succeed."""
    if isinstance(exc, PoolTimeoutError):
        return True
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    if not isinstance(exc, OperationalError):
        return False
    text = str(orig if orig is not None else exc).lower()
    return any(needle in text for needle in RETRYABLE_MESSAGES)


def run_in_transaction(engine: Engine, work: Callable[[Connection], T]) -> T:
    start = time.perf_counter()
    try:
        with engine.begin() as conn:
            result = work(conn)
    except Exception:
        logger.debug("Transaction rolled back after %.1fms", (time.perf_counter() - start) * 1000)
        raise
    logger.debug("Transaction committed in %.1fms", (time.perf_counter() - start) * 1000)
    return result


def run_with_retry(
    engine: Engine,
    work: Callable[[Connection], T],
    max_attempts: int = 3,
    retry_delay: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run work in a transaction, retrying transient failures.

    The delay doubles after each failed attempt. The last error is re-raised
    once max_attempts is reached.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    delay = retry_delay
    for attempt in range(1, max_attempts + 1):
        try:
            result = run_in_transaction(engine, work)
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt == max_attempts:
                logger.error("Transaction failed after %d attempts: %s", attempt, exc)
                raise
            logger.warning("Transaction failed on attempt %d, retrying in %.2fs: %s", attempt, delay, exc)
            sleep(delay)
            delay *= 2
            continue
        if attempt > 1:
            logger.info("Transaction succeeded on attempt %d", attempt)
        return result
