"""
users/store.py -- SQLAlchemy Core persistence layer for the user resource.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Service and route code never touches SQL directly.

SQLAlchemy provides a database-agnostic abstraction: swapping SQLite for
PostgreSQL is a connection string change, not a rewrite. Writes go through
db.transactions.run_with_retry, so lock contention and dropped connections
are retried. Other driver errors (IntegrityError, ...) propagate unchanged;
the error classifier in api/errors.py maps them to HTTP responses.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = UserStore()                                 # DATABASE_URL default
    store = UserStore("sqlite:///:memory:")
    user_id = store.create_user(User(name="A", email="a@x.com", password=hashed))
    users = store.list_users(offset=0, limit=10)
    store.close()
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine

from db.transactions import run_with_retry
from users.models import User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID4, generated in create_user()
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns a caller may change through update_user().
_MUTABLE_FIELDS = frozenset({"name", "email", "password"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities."""

    def __init__(self, db_url: Optional[str] = None) -> None:
        if db_url is None:
            from core.config import get_settings

            db_url = get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated id.

        user.password must already be hashed. Raises
        sqlalchemy.exc.IntegrityError if the email already exists.
        """
        user_id = str(uuid.uuid4())
        now = _now_iso()
        insert = _users.insert().values(
            id=user_id,
            name=user.name,
            email=user.email,
            password=user.password,
            created_at=now,
            updated_at=now,
        )
        run_with_retry(self.engine, lambda conn: conn.execute(insert))
        return user_id

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields (name, email, password) and stamp updated_at.

        Unknown field names raise ValueError rather than being ignored.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        values = {**fields, "updated_at": _now_iso()}
        update = _users.update().where(_users.c.id == user_id).values(**values)
        return run_with_retry(self.engine, lambda conn: conn.execute(update).rowcount) > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found."""
        delete = _users.delete().where(_users.c.id == user_id)
        return run_with_retry(self.engine, lambda conn: conn.execute(delete).rowcount) > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str, exclude_id: Optional[str] = None) -> User | None:
        """Look up a user by exact email, optionally ignoring one id.

        exclude_id lets an update check "is this email taken by someone else".
        """
        query = _users.select().where(_users.c.email == email)
        if exclude_id is not None:
            query = query.where(_users.c.id != exclude_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, offset: int = 0, limit: int = 10) -> list[User]:
        """Return one page of users, oldest first (stable across pages)."""
        query = _users.select().order_by(_users.c.created_at, _users.c.id).offset(offset).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def ping(self) -> None:
        """Round-trip a trivial query. Raises on connectivity failure."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password=row.password,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
