"""
api/errors.py -- Single boundary translating exceptions into error envelopes.

Services, stores and the auth gate raise typed exceptions; nothing below this
layer formats HTTP responses. classify_error() maps any exception onto a
closed ErrorKind and an ErrorOutcome (status, message, optional errors[]).
It never raises. The handlers registered by register_exception_handlers()
log the failure and render the outcome with api.responses.

Classification order (first match wins):
  1. request/schema validation         -> 400 "Invalid input data" + errors[]
     (an unparsable JSON body            -> 400 "Invalid JSON in request body")
  2. credential errors                 -> 401, distinct text per reason
  3. upload constraint violations      -> 400
  4. storage driver errors             -> STORAGE_ERRORS table, unknown -> 500
     (job queue unreachable              -> 503 "Service unavailable")
  5. rate limit exceeded               -> 429 + Retry-After
  6. DomainError / HTTPException       -> passthrough
  7. anything else                     -> 500, details only in the log

Security note: raw driver messages and stack traces are written to the log
only. The client receives the mapped message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import (
    DataError,
    DBAPIError,
    IntegrityError,
    InterfaceError,
    NoResultFound,
    OperationalError,
    SQLAlchemyError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.responses import Response

from api import responses
from core.errors import AuthError, DomainError, JobError, UploadError
from core.messages import MessageCode, message_for

logger = logging.getLogger("starterapi.errors")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTH_MISSING = "auth_missing"
    AUTH_INVALID = "auth_invalid"
    AUTH_EXPIRED = "auth_expired"
    UPLOAD = "upload"
    STORAGE = "storage"
    JOB_QUEUE = "job_queue"
    DOMAIN = "domain"
    MALFORMED_REQUEST = "malformed_request"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorOutcome:
    kind: ErrorKind
    status_code: int
    message: str
    errors: Optional[list[dict]] = None
    message_code: Optional[MessageCode] = None
    retry_after: Optional[int] = None


# ---------------------------------------------------------------------------
# Storage error table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StorageErrorInfo:
    http_status: int
    message: str
    common_cause: str
    suggestion: str


STORAGE_ERRORS: dict[str, StorageErrorInfo] = {
    "unique_violation": StorageErrorInfo(
        409,
        "Unique constraint failed",
        "A record with the same unique value (for example an email) already exists.",
        "Check unique fields before saving and report which one is duplicated.",
    ),
    "record_not_found": StorageErrorInfo(
        404,
        "Record to update or delete does not exist",
        "The id or filter given for an update/delete matched no row.",
        "Make sure the resource exists before updating or deleting it.",
    ),
    "foreign_key_violation": StorageErrorInfo(
        400,
        "Foreign key constraint failed",
        "A referenced record does not exist in the related table.",
        "Validate referenced relations before saving.",
    ),
    "not_null_violation": StorageErrorInfo(
        400,
        "Null constraint violation",
        "A required column was given no value.",
        "Validate that required fields are present.",
    ),
    "value_too_long": StorageErrorInfo(
        400,
        "The provided value for the column is too long",
        "A string is longer than the column allows.",
        "Validate input length before saving.",
    ),
    "unreachable": StorageErrorInfo(
        503,
        "Can't reach database server",
        "The database server is down, unreachable, or refusing connections.",
        "Check the database connection and DATABASE_URL.",
    ),
    "auth_failed": StorageErrorInfo(
        401,
        "Authentication failed against database server",
        "The credentials in the database URL were rejected.",
        "Check DATABASE_URL credentials.",
    ),
    "connection_closed": StorageErrorInfo(
        503,
        "Server has closed the connection",
        "The database closed the connection unexpectedly.",
        "Check database stability and connection timeouts.",
    ),
}

# PostgreSQL SQLSTATE codes, when the driver exposes one.
_SQLSTATE_CODES: dict[str, str] = {
    "23505": "unique_violation",
    "23503": "foreign_key_violation",
    "23502": "not_null_violation",
    "22001": "value_too_long",
    "28P01": "auth_failed",
    "28000": "auth_failed",
    "08001": "unreachable",
    "08006": "connection_closed",
}

# (substring, code) pairs matched against the lowercased driver message.
_MESSAGE_PATTERNS: tuple[tuple[str, str], ...] = (
    ("unique constraint", "unique_violation"),
    ("duplicate key", "unique_violation"),
    ("duplicate entry", "unique_violation"),
    ("foreign key constraint", "foreign_key_violation"),
    ("not null constraint", "not_null_violation"),
    ("violates not-null", "not_null_violation"),
    ("too long", "value_too_long"),
    ("password authentication failed", "auth_failed"),
    ("access denied", "auth_failed"),
    ("server closed the connection", "connection_closed"),
    ("lost connection", "connection_closed"),
    ("could not connect", "unreachable"),
    ("connection refused", "unreachable"),
    ("unable to open database", "unreachable"),
    ("can't connect", "unreachable"),
)


def storage_error_code(exc: SQLAlchemyError) -> Optional[str]:
    """Derive a STORAGE_ERRORS key from a SQLAlchemy exception, or None if unrecognised."""
    if isinstance(exc, NoResultFound):
        return "record_not_found"
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _SQLSTATE_CODES:
        return _SQLSTATE_CODES[sqlstate]
    if not isinstance(exc, (IntegrityError, DataError, OperationalError, InterfaceError, DBAPIError)):
        return None
    text = str(orig if orig is not None else exc).lower()
    for needle, code in _MESSAGE_PATTERNS:
        if needle in text:
            return code
    return None


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


def _field_errors(raw: list[dict]) -> list[dict]:
    """Flatten pydantic error dicts to [{path, message}], dropping the location prefix."""
    result = []
    for err in raw:
        loc = list(err.get("loc", ()))
        if loc and loc[0] in ("body", "query", "path", "header", "cookie"):
            loc = loc[1:]
        result.append({"path": ".".join(str(p) for p in loc), "message": err.get("msg", "Invalid value")})
    return result


def _is_unparsable_body(raw: list[dict]) -> bool:
    return bool(raw) and all(err.get("type") == "json_invalid" for err in raw)


def _http_exception_message(exc: StarletteHTTPException) -> str:
    detail = exc.detail
    if isinstance(detail, dict):
        return str(detail.get("message", detail))
    return str(detail)


def classify_error(exc: BaseException) -> ErrorOutcome:
    """Map any exception to an ErrorOutcome. Never raises."""
    try:
        return _classify(exc)
    except Exception:  # noqa: BLE001 -- the classifier must always produce an outcome
        logger.exception("Error classifier failed on %r", exc)
        return ErrorOutcome(ErrorKind.UNKNOWN, 500, message_for(MessageCode.INTERNAL_ERROR), None, MessageCode.INTERNAL_ERROR)


def _classify(exc: BaseException) -> ErrorOutcome:
    # 1. Validation (and unparsable bodies, which FastAPI reports the same way)
    if isinstance(exc, (RequestValidationError, ValidationError)):
        raw = list(exc.errors())
        if _is_unparsable_body(raw):
            return ErrorOutcome(ErrorKind.MALFORMED_REQUEST, 400, "Invalid JSON in request body")
        return ErrorOutcome(ErrorKind.VALIDATION, 400, "Invalid input data", _field_errors(raw))

    # 2. Credentials
    if isinstance(exc, AuthError):
        if exc.reason == "expired":
            return ErrorOutcome(ErrorKind.AUTH_EXPIRED, 401, "Token expired")
        if exc.reason == "invalid":
            return ErrorOutcome(ErrorKind.AUTH_INVALID, 401, "Invalid token")
        return ErrorOutcome(ErrorKind.AUTH_MISSING, 401, "Unauthorized")

    # 3. Uploads
    if isinstance(exc, UploadError):
        return ErrorOutcome(ErrorKind.UPLOAD, 400, exc.message)

    # 4. Storage
    if isinstance(exc, SQLAlchemyError):
        code = storage_error_code(exc)
        info = STORAGE_ERRORS.get(code) if code else None
        if info is None:
            return ErrorOutcome(ErrorKind.STORAGE, 500, "A database error occurred")
        return ErrorOutcome(ErrorKind.STORAGE, info.http_status, info.message, [{"cause": info.common_cause}])
    if isinstance(exc, JobError):
        return ErrorOutcome(
            ErrorKind.JOB_QUEUE, 503, message_for(MessageCode.SERVICE_UNAVAILABLE), None, MessageCode.SERVICE_UNAVAILABLE
        )

    # 5. Rate limiting (RateLimitExceeded is an HTTPException, so it goes first)
    if isinstance(exc, RateLimitExceeded):
        retry_after = int(getattr(exc, "retry_after", 60))
        return ErrorOutcome(
            ErrorKind.RATE_LIMITED,
            429,
            message_for(MessageCode.TOO_MANY_REQUESTS),
            message_code=MessageCode.TOO_MANY_REQUESTS,
            retry_after=retry_after,
        )

    # 6. Explicit business errors
    if isinstance(exc, DomainError):
        return ErrorOutcome(ErrorKind.DOMAIN, exc.status_code, exc.message, exc.errors, exc.message_code)
    if isinstance(exc, StarletteHTTPException):
        return ErrorOutcome(ErrorKind.DOMAIN, exc.status_code, _http_exception_message(exc))

    # 7. Everything else
    return ErrorOutcome(ErrorKind.UNKNOWN, 500, message_for(MessageCode.INTERNAL_ERROR), None, MessageCode.INTERNAL_ERROR)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _log(request: Request, exc: BaseException, outcome: ErrorOutcome) -> None:
    context = {
        "method": request.method,
        "url": responses.original_url(request),
        "ip": request.client.host if request.client else "unknown",
        "user_agent": request.headers.get("user-agent", ""),
        "status": outcome.status_code,
    }
    if outcome.status_code >= 500:
        logger.error("Unhandled error: %s %s", exc, context, exc_info=exc)
    else:
        logger.warning("%s: %s %s", outcome.kind.value, exc, context)


def handle_error(request: Request, exc: Exception) -> Response:
    """Classify exc, log it, and render the error envelope.

    Must stay synchronous: SlowAPIMiddleware calls the RateLimitExceeded
    handler without awaiting it.
    """
    outcome = classify_error(exc)
    _log(request, exc, outcome)
    # A response built before the exception was never sent.
    request.state.response_sent = False

    if outcome.kind is ErrorKind.RATE_LIMITED:
        return responses.too_many_requests(request, outcome.message_code, retry_after=outcome.retry_after)

    if isinstance(exc, StarletteHTTPException) and exc.status_code == 404 and exc.detail == "Not Found":
        return responses.not_found(request, f"Route {responses.original_url(request)} not found")

    response = responses.error(
        request,
        outcome.message,
        outcome.errors,
        status_code=outcome.status_code,
        message_code=outcome.message_code,
    )

    if outcome.kind is ErrorKind.AUTH_EXPIRED:
        # Courtesy cleanup: drop the stale cookie on the same 401.
        request.app.state.transport.clear(response)
    if isinstance(exc, StarletteHTTPException) and exc.headers:
        response.headers.update(exc.headers)
    return response


def register_exception_handlers(app: FastAPI) -> None:
    """Route every exception family through handle_error()."""
    for exc_class in (
        RequestValidationError,
        ValidationError,
        AuthError,
        UploadError,
        SQLAlchemyError,
        JobError,
        DomainError,
        StarletteHTTPException,
        RateLimitExceeded,
        Exception,
    ):
        app.add_exception_handler(exc_class, handle_error)
