"""
api/main.py -- FastAPI application for the starter API.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- CORS headers for allowed origins, credentials on
  3. GZipMiddleware        -- compresses larger response bodies
  4. log_requests          -- method, path, status, latency, client host
  5. limit_upload_body     -- 413 for uploads whose Content-Length is too large
  6. versioning.dispatch   -- API-Version negotiation for /api/ paths
  7. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Every error, wherever it is raised, is rendered by api.errors.handle_error
into the response envelope.

Lifespan builds the stores, services and credential transport on app.state
and tears them down symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi.middleware import SlowAPIMiddleware

from api.errors import register_exception_handlers
from api.health import default_registry
from api.limiter import limiter
from api.routes.health import router as health_router
from api.routes.v1.jobs import JOBS_PREFIX
from api.routes.v1.jobs import router as jobs_router
from api.routes.v1.uploads import UPLOADS_PREFIX, limit_upload_body
from api.routes.v1.uploads import router as uploads_router
from api.routes.v1.users import router as users_router
from api.versioning import ApiVersioning
from auth.transport import transport_from_settings
from cache.store import CacheStore
from core.config import get_settings
from jobs.service import JobService
from uploads.store import FileStore
from users.service import UserService
from users.store import UserStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("starterapi.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Drop expired cache entries every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.cache.purge_expired()
        if removed:
            logger.debug("Purged %d expired cache entries", removed)


def _job_service() -> JobService:
    from jobs.celery_app import celery_app

    return JobService(celery_app)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build application resources on startup, release them on shutdown.

    Startup order matters:
      1. transport -- read by the auth gate and the error handler
      2. job service (None unless JOBS_ENABLED), store + cache, then the
         user service that combines them
      3. file store and health registry
      4. purge task last -- references app.state.cache
    """
    logger.info("Starter API starting up (environment=%s)", settings.environment)
    app.state.transport = transport_from_settings(settings)
    logger.info("Credential transport: %s", app.state.transport.name)

    app.state.jobs = _job_service() if settings.jobs_enabled else None
    logger.info("Background jobs: %s", "enabled" if app.state.jobs else "disabled")

    app.state.user_store = UserStore(settings.database_url)
    app.state.cache = CacheStore(default_ttl=settings.cache_ttl)
    app.state.user_service = UserService(
        app.state.user_store,
        app.state.cache,
        list_ttl=settings.users_cache_ttl,
        jobs=app.state.jobs,
    )
    app.state.file_store = FileStore(
        upload_dir=settings.upload_dir,
        max_size=settings.upload_max_size,
        allowed_extensions=settings.upload_allowed_extensions,
        allowed_types=settings.upload_allowed_types,
    )
    app.state.health = default_registry(
        app.state.user_store,
        app.state.cache,
        disk_path=settings.upload_dir,
        version=settings.app_version,
        environment=settings.environment,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.cache_check_period))

    yield

    app.state.purge_task.cancel()
    app.state.cache.clear()
    app.state.user_store.close()
    logger.info("Starter API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Starter API",
    description="User accounts, authentication and file uploads behind a uniform response envelope.",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter
versioning = ApiVersioning.from_settings(settings)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() / @app.middleware call wraps everything registered
# before it, so registration runs innermost first.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)
app.middleware("http")(versioning.dispatch)
app.middleware("http")(limit_upload_body)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


app.add_middleware(GZipMiddleware, minimum_size=1024)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", settings.api_version_header],
    expose_headers=["Authorization", "API-Version", "Supported-Versions", "Deprecation", "Sunset", "Retry-After"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(health_router, tags=["Health"])
app.include_router(users_router, prefix="/api/v1/users", tags=["Users"])
app.include_router(uploads_router, prefix=UPLOADS_PREFIX, tags=["Uploads"])
app.include_router(jobs_router, prefix=JOBS_PREFIX, tags=["Jobs"])

# Stored uploads are served back from the URL FileStore reports.
app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")
