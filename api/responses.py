"""
api/responses.py -- Uniform success/error envelope for every HTTP reply.

Wire shape:
    {
      "success": true,
      "message": "Created successfully",
      "data": {...},                 # omitted when there is no payload
      "errors": [{path, message}],   # validation-class failures only
      "pagination": {...},           # paginated() only
      "timestamp": "2024-06-01T12:00:00.000Z",
      "path": "/api/v1/users?page=1",
      "messageCode": "CREATED"       # only when a known code was used
    }

Message resolution, per helper call:
  - a MessageCode (or its string value) -> canonical text + messageCode
  - any other string                     -> used verbatim, no messageCode
  - nothing                              -> the helper's default code

Each helper writes exactly one response per request. The first call marks
request.state; a second call raises ResponseAlreadySent instead of producing
a second body.

paginated() rejects page < 1, limit <= 0 and total < 0 with ValueError. Those
are caller bugs, not client errors, so they are never serialized.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional, Union

from fastapi.responses import JSONResponse
from starlette.requests import Request
from starlette.responses import Response

from core.messages import MessageCode, as_code, message_for

MessageArg = Union[MessageCode, str, None]


class ResponseAlreadySent(RuntimeError):
    """A second response was built for a request that already has one."""


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def original_url(request: Request) -> str:
    """Path plus query string, as the client sent it."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def _mark_sent(request: Request) -> None:
    if getattr(request.state, "response_sent", False):
        raise ResponseAlreadySent(f"Response already sent for {request.method} {request.url.path}")
    request.state.response_sent = True


def _resolve(message: MessageArg, default: MessageCode) -> tuple[str, Optional[MessageCode]]:
    code = as_code(message)
    if code is not None:
        return message_for(code), code
    if message:
        return str(message), None
    return message_for(default), default


def build_envelope(
    request: Request,
    success: bool,
    message: str,
    data: Any = None,
    errors: Optional[list] = None,
    extra: Optional[dict[str, Any]] = None,
    message_code: Optional[MessageCode] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    if errors:
        body["errors"] = errors
    if extra:
        body.update(extra)
    body["timestamp"] = utc_timestamp()
    body["path"] = original_url(request)
    if message_code is not None:
        body["messageCode"] = message_code.value
    return body


def _send(
    request: Request,
    status_code: int,
    success: bool,
    message: MessageArg,
    default: MessageCode,
    data: Any = None,
    errors: Optional[list] = None,
    extra: Optional[dict[str, Any]] = None,
    message_code: Optional[MessageCode] = None,
) -> JSONResponse:
    _mark_sent(request)
    text, code = _resolve(message, default)
    if message_code is not None:
        code = message_code
    return JSONResponse(
        status_code=status_code,
        content=build_envelope(request, success, text, data, errors, extra, code),
    )


# ---------------------------------------------------------------------------
# Success helpers
# ---------------------------------------------------------------------------


def success(request: Request, data: Any = None, status_code: int = 200, message: MessageArg = None) -> JSONResponse:
    return _send(request, status_code, True, message, MessageCode.SUCCESS, data=data)


def created(request: Request, data: Any = None, message: MessageArg = None) -> JSONResponse:
    return _send(request, 201, True, message, MessageCode.CREATED, data=data)


def no_content(request: Request) -> Response:
    """204 with an empty body; HTTP does not allow one here."""
    _mark_sent(request)
    return Response(status_code=204)


def paginated(
    request: Request,
    data: list,
    page: int,
    limit: int,
    total: int,
    message: MessageArg = "Success",
) -> JSONResponse:
    if limit <= 0:
        raise ValueError("Limit must be greater than 0")
    if page < 1:
        raise ValueError("Page must be greater than 0")
    if total < 0:
        raise ValueError("Total must be non-negative")

    total_pages = math.ceil(total / limit)
    has_next = page < total_pages
    has_prev = page > 1
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": has_next,
        "hasPrev": has_prev,
        "nextPage": page + 1 if has_next else None,
        "prevPage": page - 1 if has_prev else None,
    }
    return _send(request, 200, True, message, MessageCode.SUCCESS, data=data, extra={"pagination": pagination})


# ---------------------------------------------------------------------------
# Error helpers
# ---------------------------------------------------------------------------


def error(
    request: Request,
    message: MessageArg = None,
    errors: Optional[list] = None,
    status_code: int = 500,
    extra: Optional[dict[str, Any]] = None,
    message_code: Optional[MessageCode] = None,
) -> JSONResponse:
    """Error envelope. message_code, when given, is reported alongside free-text message."""
    return _send(
        request,
        status_code,
        False,
        message,
        MessageCode.INTERNAL_ERROR,
        errors=errors,
        extra=extra,
        message_code=message_code,
    )


def validation_error(request: Request, errors: list, message: MessageArg = "Validation failed") -> JSONResponse:
    return error(request, message, errors, status_code=400)


def unauthorized(request: Request, message: MessageArg = "Unauthorized") -> JSONResponse:
    return error(request, message, status_code=401)


def forbidden(request: Request, message: MessageArg = "Forbidden") -> JSONResponse:
    return error(request, message, status_code=403)


def not_found(request: Request, message: MessageArg = None) -> JSONResponse:
    return _send(request, 404, False, message, MessageCode.NOT_FOUND)


def unprocessable_entity(
    request: Request, message: MessageArg = "Unprocessable Entity", errors: Optional[list] = None
) -> JSONResponse:
    return error(request, message, errors, status_code=422)


def too_many_requests(
    request: Request, message: MessageArg = "Too Many Requests", retry_after: Optional[int] = None
) -> JSONResponse:
    extra = {"retryAfter": retry_after} if retry_after else None
    response = error(request, message, status_code=429, extra=extra)
    if retry_after:
        response.headers["Retry-After"] = str(retry_after)
    return response


def service_unavailable(request: Request, message: MessageArg = "Service Unavailable") -> JSONResponse:
    return error(request, message, status_code=503)
