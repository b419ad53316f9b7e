"""Tests for api/errors.py -- exception classification and rendering.

Covers:
- each ErrorKind branch of classify_error()
- the storage error table (known codes, unknown fallback, no raw driver text)
- handle_error(): expired credentials clear the cookie on the same 401
- end-to-end: unknown route, malformed JSON and schema validation via the app
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException
from starlette.requests import Request

from api.errors import STORAGE_ERRORS, ErrorKind, classify_error, handle_error
from auth.transport import CookieTransport
from core.errors import AuthError, DomainError, JobError, UploadError
from core.messages import MessageCode


def _request(transport=None) -> Request:
    app = SimpleNamespace(state=SimpleNamespace(transport=transport or CookieTransport(max_age=3600)))
    return Request(
        {
            "type": "http",
            "method": "GET",
            "scheme": "http",
            "server": ("testserver", 80),
            "root_path": "",
            "path": "/api/v1/users",
            "query_string": b"",
            "headers": [(b"user-agent", b"pytest")],
            "client": ("127.0.0.1", 5000),
            "app": app,
        }
    )


class TestClassifyValidation:
    def test_request_validation_lists_fields(self) -> None:
        exc = RequestValidationError(
            [
                {"type": "missing", "loc": ("body", "email"), "msg": "Field required", "input": None},
                {"type": "greater_than_equal", "loc": ("query", "page"), "msg": "Too small", "input": 0},
            ]
        )
        outcome = classify_error(exc)
        assert outcome.kind is ErrorKind.VALIDATION
        assert outcome.status_code == 400
        assert outcome.message == "Invalid input data"
        assert outcome.errors == [
            {"path": "email", "message": "Field required"},
            {"path": "page", "message": "Too small"},
        ]

    def test_unparsable_body_is_malformed_request(self) -> None:
        exc = RequestValidationError([{"type": "json_invalid", "loc": ("body", 1), "msg": "JSON decode error"}])
        outcome = classify_error(exc)
        assert outcome.kind is ErrorKind.MALFORMED_REQUEST
        assert outcome.status_code == 400
        assert outcome.message == "Invalid JSON in request body"


class TestClassifyAuth:
    @pytest.mark.parametrize(
        "reason, kind, message",
        [
            ("missing", ErrorKind.AUTH_MISSING, "Unauthorized"),
            ("invalid", ErrorKind.AUTH_INVALID, "Invalid token"),
            ("expired", ErrorKind.AUTH_EXPIRED, "Token expired"),
        ],
    )
    def test_reasons_have_distinct_messages(self, reason: str, kind: ErrorKind, message: str) -> None:
        outcome = classify_error(AuthError(reason))
        assert outcome.kind is kind
        assert outcome.status_code == 401
        assert outcome.message == message


class TestClassifyStorage:
    def test_unique_violation_maps_to_409(self) -> None:
        exc = IntegrityError("INSERT INTO users", {}, Exception("UNIQUE constraint failed: users.email"))
        outcome = classify_error(exc)
        assert outcome.kind is ErrorKind.STORAGE
        assert outcome.status_code == 409
        assert outcome.message == STORAGE_ERRORS["unique_violation"].message
        assert outcome.errors == [{"cause": STORAGE_ERRORS["unique_violation"].common_cause}]

    def test_unreachable_database_maps_to_503(self) -> None:
        exc = OperationalError("SELECT 1", {}, Exception("unable to open database file"))
        assert classify_error(exc).status_code == 503

    def test_postgres_sqlstate_is_used(self) -> None:
        orig = Exception("whatever")
        orig.pgcode = "23503"
        outcome = classify_error(IntegrityError("INSERT", {}, orig))
        assert outcome.status_code == 400
        assert outcome.message == STORAGE_ERRORS["foreign_key_violation"].message

    def test_no_result_maps_to_404(self) -> None:
        assert classify_error(NoResultFound()).status_code == 404

    def test_unknown_storage_error_hides_raw_message(self) -> None:
        outcome = classify_error(SQLAlchemyError("secret driver detail"))
        assert outcome.status_code == 500
        assert outcome.message == "A database error occurred"
        assert "secret" not in outcome.message
        assert outcome.errors is None


class TestClassifyOther:
    def test_upload_error(self) -> None:
        outcome = classify_error(UploadError("File too large"))
        assert (outcome.kind, outcome.status_code, outcome.message) == (ErrorKind.UPLOAD, 400, "File too large")

    def test_job_queue_outage_is_503(self) -> None:
        outcome = classify_error(JobError("Job queue unavailable", detail="redis://secret@host refused"))
        assert (outcome.kind, outcome.status_code) == (ErrorKind.JOB_QUEUE, 503)
        assert outcome.message_code is MessageCode.SERVICE_UNAVAILABLE
        assert "secret" not in outcome.message

    def test_domain_error_passes_through(self) -> None:
        outcome = classify_error(DomainError("Email is already registered", status_code=400))
        assert outcome.kind is ErrorKind.DOMAIN
        assert outcome.status_code == 400
        assert outcome.message == "Email is already registered"
        assert outcome.message_code is None

    def test_domain_error_keeps_message_code(self) -> None:
        outcome = classify_error(DomainError(MessageCode.NOT_FOUND, status_code=404))
        assert outcome.message == "Not found"
        assert outcome.message_code is MessageCode.NOT_FOUND

    def test_domain_error_free_text_with_code(self) -> None:
        exc = DomainError("Email is already registered", status_code=400, message_code=MessageCode.CONFLICT)
        outcome = classify_error(exc)
        assert outcome.message == "Email is already registered"
        assert outcome.message_code is MessageCode.CONFLICT

    def test_http_exception_passes_through(self) -> None:
        outcome = classify_error(HTTPException(status_code=405, detail="Method Not Allowed"))
        assert (outcome.status_code, outcome.message) == (405, "Method Not Allowed")

    def test_rate_limit(self) -> None:
        exc = RateLimitExceeded(MagicMock(error_message=None, limit="10 per 1 minute"))
        outcome = classify_error(exc)
        assert outcome.kind is ErrorKind.RATE_LIMITED
        assert outcome.status_code == 429
        assert outcome.retry_after == 60

    def test_unknown_error_is_generic_500(self) -> None:
        outcome = classify_error(RuntimeError("database password is hunter2"))
        assert outcome.kind is ErrorKind.UNKNOWN
        assert outcome.status_code == 500
        assert outcome.message == "Internal server error"
        assert "hunter2" not in outcome.message


class TestHandleError:
    def test_expired_credential_clears_cookie(self) -> None:
        resp = handle_error(_request(), AuthError("expired"))
        assert resp.status_code == 401
        assert json.loads(resp.body)["message"] == "Token expired"
        set_cookie = resp.headers.get("set-cookie", "")
        assert set_cookie.startswith("token="), f"Expected cookie deletion, got {set_cookie!r}"
        assert "Max-Age=0" in set_cookie

    def test_invalid_credential_leaves_cookie_alone(self) -> None:
        resp = handle_error(_request(), AuthError("invalid"))
        assert resp.status_code == 401
        assert "set-cookie" not in resp.headers

    def test_unknown_error_body_is_generic(self) -> None:
        resp = handle_error(_request(), RuntimeError("stack detail"))
        body = json.loads(resp.body)
        assert resp.status_code == 500
        assert body["messageCode"] == "INTERNAL_ERROR"
        assert "stack detail" not in resp.body.decode()

    def test_domain_error_renders_text_and_code(self) -> None:
        exc = DomainError("Email is already registered", status_code=400, message_code=MessageCode.CONFLICT)
        body = json.loads(handle_error(_request(), exc).body)
        assert body["message"] == "Email is already registered"
        assert body["messageCode"] == "CONFLICT"

    def test_plain_domain_error_has_no_code(self) -> None:
        body = json.loads(handle_error(_request(), DomainError("No fields to update")).body)
        assert body["message"] == "No fields to update"
        assert "messageCode" not in body

    def test_rate_limit_sets_retry_after(self) -> None:
        resp = handle_error(_request(), RateLimitExceeded(MagicMock(error_message=None, limit="1 per 1 minute")))
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "60"


class TestErrorsThroughApp:
    def test_unknown_route_names_the_url(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/nope?x=1")
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert body["message"] == "Route /api/v1/nope?x=1 not found"

    def test_malformed_json_body(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/v1/users/register",
            content=b'{"name": "A", "email": ',
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400, f"Expected 400, got {resp.status_code}: {resp.text}"
        assert resp.json()["message"] == "Invalid JSON in request body"

    def test_schema_validation_lists_fields(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/v1/users/register",
            json={"name": "A", "email": "not-an-email", "password": "123"},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["message"] == "Invalid input data"
        paths = {e["path"] for e in body["errors"]}
        assert paths == {"email", "password"}, f"Got {paths}"
