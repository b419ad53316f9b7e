"""
tests/test_jobs_api.py -- /api/v1/jobs routes.

The app's JobService is swapped for a MagicMock so no broker is needed.

Covers:
  - every route requires auth
  - 503 envelope while background jobs are disabled or the broker is down
  - status, cancel, retry and stats responses
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from core.errors import JobError
from jobs.service import JobStatus
from tests.helpers import cookie_header


@pytest.fixture
def jobs(api_client):
    fake = MagicMock()
    state = api_client.client.app.state
    state.jobs = fake
    yield fake
    state.jobs = None


class TestJobsDisabled:
    def test_requires_auth(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/jobs/abc")
        assert resp.status_code == 401

    def test_disabled_is_503(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/jobs/abc", headers=cookie_header(api_client.token))
        assert resp.status_code == 503
        body = resp.json()
        assert body["success"] is False
        assert body["messageCode"] == "SERVICE_UNAVAILABLE"


class TestJobRoutes:
    def test_status(self, api_client, jobs: MagicMock) -> None:
        jobs.status.return_value = JobStatus("abc", "SUCCESS", True, {"recipients": ["a@x.com"]})
        resp = api_client.client.get("/api/v1/jobs/abc", headers=cookie_header(api_client.token))
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert data["state"] == "SUCCESS"
        assert data["result"] == {"recipients": ["a@x.com"]}
        jobs.status.assert_called_once_with("abc")

    def test_broker_down_is_503(self, api_client, jobs: MagicMock) -> None:
        jobs.status.side_effect = JobError("Job status unavailable", detail="connection refused")
        resp = api_client.client.get("/api/v1/jobs/abc", headers=cookie_header(api_client.token))
        assert resp.status_code == 503
        assert "connection refused" not in resp.text

    def test_cancel(self, api_client, jobs: MagicMock) -> None:
        resp = api_client.client.delete("/api/v1/jobs/abc", headers=cookie_header(api_client.token))
        assert resp.status_code == 200
        jobs.cancel.assert_called_once_with("abc")

    def test_retry_failed_job(self, api_client, jobs: MagicMock) -> None:
        jobs.retry.return_value = "def"
        resp = api_client.client.post("/api/v1/jobs/abc/retry", headers=cookie_header(api_client.token))
        assert resp.status_code == 201
        assert resp.json()["data"] == {"id": "def", "retriedFrom": "abc"}

    def test_retry_unfailed_job_is_409(self, api_client, jobs: MagicMock) -> None:
        jobs.retry.return_value = None
        resp = api_client.client.post("/api/v1/jobs/abc/retry", headers=cookie_header(api_client.token))
        assert resp.status_code == 409
        assert resp.json()["messageCode"] == "CONFLICT"

    def test_stats(self, api_client, jobs: MagicMock) -> None:
        jobs.queue_stats.return_value = {"workers": 1, "active": 0, "reserved": 0, "scheduled": 0, "total": 0}
        resp = api_client.client.get("/api/v1/jobs/stats", headers=cookie_header(api_client.token))
        assert resp.status_code == 200
        assert resp.json()["data"]["workers"] == 1
