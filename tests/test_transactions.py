"""Unit tests for db/transactions.py.

Covers:
- commit on return, rollback on exception
- lock contention and invalidated connections are retryable; constraint
  violations are not
- retries back off exponentially and stop at max_attempts
"""

from __future__ import annotations

import sqlite3

import pytest
from sqlalchemy import Column, Integer, MetaData, Table, create_engine, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from db.transactions import is_retryable, run_in_transaction, run_with_retry

_metadata = MetaData()
_items = Table("items", _metadata, Column("id", Integer, primary_key=True))


@pytest.fixture
def engine():
    e = create_engine("sqlite:///:memory:")
    _metadata.create_all(e)
    yield e
    e.dispose()


def _locked() -> OperationalError:
    return OperationalError("INSERT ...", {}, sqlite3.OperationalError("database is locked"))


def _ids(engine) -> list[int]:
    with engine.connect() as conn:
        return [row.id for row in conn.execute(select(_items.c.id))]


class TestRunInTransaction:
    def test_commits(self, engine) -> None:
        assert run_in_transaction(engine, lambda conn: conn.execute(_items.insert().values(id=1)).rowcount) == 1
        assert _ids(engine) == [1]

    def test_rolls_back_on_error(self, engine) -> None:
        def work(conn):
            conn.execute(_items.insert().values(id=1))
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            run_in_transaction(engine, work)
        assert _ids(engine) == []


class TestIsRetryable:
    def test_lock_contention(self) -> None:
        assert is_retryable(_locked())

    def test_invalidated_connection(self) -> None:
        exc = OperationalError("SELECT 1", {}, sqlite3.OperationalError("gone"), connection_invalidated=True)
        assert is_retryable(exc)

    def test_pool_timeout(self) -> None:
        assert is_retryable(PoolTimeoutError("QueuePool limit reached"))

    def test_integrity_error_is_final(self) -> None:
        exc = IntegrityError("INSERT ...", {}, sqlite3.IntegrityError("UNIQUE constraint failed: users.email"))
        assert not is_retryable(exc)

    def test_plain_exception_is_final(self) -> None:
        assert not is_retryable(ValueError("nope"))


class TestRunWithRetry:
    def test_succeeds_after_transient_failures(self, engine) -> None:
        calls = []
        delays = []

        def work(conn):
            calls.append(1)
            if len(calls) < 3:
                raise _locked()
            conn.execute(_items.insert().values(id=7))
            return "done"

        assert run_with_retry(engine, work, max_attempts=3, retry_delay=0.5, sleep=delays.append) == "done"
        assert len(calls) == 3
        assert delays == [0.5, 1.0]
        assert _ids(engine) == [7]

    def test_gives_up_after_max_attempts(self, engine) -> None:
        delays = []

        def work(conn):
            raise _locked()

        with pytest.raises(OperationalError):
            run_with_retry(engine, work, max_attempts=4, retry_delay=0.1, sleep=delays.append)
        assert len(delays) == 3

    def test_non_retryable_raises_immediately(self, engine) -> None:
        delays = []
        run_in_transaction(engine, lambda conn: conn.execute(_items.insert().values(id=1)))

        with pytest.raises(IntegrityError):
            run_with_retry(engine, lambda conn: conn.execute(_items.insert().values(id=1)), sleep=delays.append)
        assert delays == []

    def test_rejects_zero_attempts(self, engine) -> None:
        with pytest.raises(ValueError):
            run_with_retry(engine, lambda conn: None, max_attempts=0)
