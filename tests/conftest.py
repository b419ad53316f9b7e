"""
tests/conftest.py -- Shared test fixtures for starter API tests.

This module provides:
  - make_user_store(): isolated named shared-memory SQLite UserStore
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient (cookie transport) plus a seeded user and token
  - header_client: TestClient using the Authorization: Bearer transport

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment defaults must be set before any app import: get_settings() reads
them once and auth.tokens caches the settings at import time.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set these before any app import so get_settings() picks them up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="starterapi-uploads-"))

import pytest
from fastapi.testclient import TestClient

from api.health import default_registry
from api.main import app
from auth.tokens import create_access_token
from auth.transport import CookieTransport, CredentialTransport, HeaderTransport
from cache.store import CacheStore
from core.config import get_settings
from tests.helpers import SEED_EMAIL, SEED_NAME, SEED_PASSWORD
from uploads.store import FileStore
from users.service import UserService
from users.store import UserStore


@dataclass
class ApiContext:
    client: TestClient
    token: str
    user_id: str
    store: UserStore
    cache: CacheStore


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_user_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'header').
    """
    return UserStore(db_url=f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: UserStore, cache: CacheStore, transport: CredentialTransport):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """
    settings = get_settings()

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.transport = transport
        app.state.user_store = store
        app.state.cache = cache
        app.state.jobs = None
        app.state.user_service = UserService(store, cache, list_ttl=settings.users_cache_ttl)
        app.state.file_store = FileStore(
            upload_dir=settings.upload_dir,
            max_size=settings.upload_max_size,
            allowed_extensions=settings.upload_allowed_extensions,
            allowed_types=settings.upload_allowed_types,
        )
        app.state.health = default_registry(store, cache, disk_path=settings.upload_dir, version="test")
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def _start(db_suffix: str, transport: CredentialTransport) -> Generator[ApiContext, None, None]:
    store = make_user_store(f"{db_suffix}_{uuid.uuid4().hex[:8]}")
    cache = CacheStore()
    service = UserService(store, cache)
    seeded = service.create_user(SEED_NAME, SEED_EMAIL, SEED_PASSWORD)
    token = create_access_token(seeded["id"], SEED_EMAIL, SEED_NAME, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(store, cache, transport)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, token=token, user_id=seeded["id"], store=store, cache=cache)
    store.close()


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for integration tests using the cookie transport.

    The seeded user is admin@example.com / testpass123; ctx.token is a valid
    one-hour credential for it.
    """
    settings = get_settings()
    yield from _start("api", CookieTransport(max_age=settings.token_expire_seconds))


@pytest.fixture(scope="module")
def header_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext whose app inspects only the Authorization header."""
    yield from _start("header", HeaderTransport())
