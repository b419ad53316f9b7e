"""
core/errors.py -- Typed exceptions raised by services, stores and the auth gate.

Service code never formats HTTP responses. It raises one of these and lets the
error classifier in api/errors.py translate it at a single boundary.

Layer rule: no imports from api/, auth/, users/, uploads/, cache/, jobs/,
notifications/, or db/.
"""

from __future__ import annotations

from typing import Literal, Optional, Union

from core.messages import MessageCode, as_code, message_for

AuthReason = Literal["missing", "invalid", "expired"]


class DomainError(Exception):
    """Business-rule failure carrying its own HTTP status and message.

    message may be a MessageCode (or its string value); it is then resolved to
    canonical text and the code is kept for the response envelope. Free text
    can still carry a code through message_code, e.g. a specific duplicate
    message classed as CONFLICT.
    """

    def __init__(
        self,
        message: Union[MessageCode, str],
        status_code: int = 400,
        errors: Optional[list[dict]] = None,
        message_code: Optional[MessageCode] = None,
    ) -> None:
        code = as_code(message)
        self.message_code: Optional[MessageCode] = code if code is not None else message_code
        self.message: str = message_for(code) if code is not None else str(message)
        self.status_code = status_code
        self.errors = errors
        super().__init__(self.message)


class AuthError(Exception):
    """Credential problem detected by the auth gate.

    reason is "missing" (nothing on the configured transport), "invalid"
    (malformed, bad signature, wrong issuer) or "expired".
    """

    def __init__(self, reason: AuthReason, detail: str = "") -> None:
        self.reason: AuthReason = reason
        self.detail = detail
        super().__init__(detail or reason)


class UploadError(Exception):
    """An uploaded file violated a size, type or naming constraint."""

    def __init__(self, message: str, detail: str = "") -> None:
        self.message = message
        self.detail = detail
        super().__init__(message)


class JobError(Exception):
    """The job queue (Celery broker) could not accept or report on a job."""

    def __init__(self, message: str, detail: str = "") -> None:
        self.message = message
        self.detail = detail
        super().__init__(message)
