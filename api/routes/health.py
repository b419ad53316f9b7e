"""
api/routes/health.py -- Health, readiness and liveness probes.

Routes:
  GET /health        -- full report; 200 when healthy/degraded, 503 when unhealthy
  GET /health/ready  -- database + cache only; 200 ready / 503 not ready
  GET /health/live   -- process is up; always 200

Probes return plain JSON (not the response envelope) so load balancers and
orchestrators can read them directly. No authentication, no rate limit:
monitoring systems must never be throttled or locked out.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.health import HealthRegistry
from api.responses import utc_timestamp

router = APIRouter()


@router.get("/health")
def health(request: Request) -> JSONResponse:
    """Run every registered check and report the aggregate status."""
    registry: HealthRegistry = request.app.state.health
    report = registry.run_all()
    status_code = 503 if report["status"] == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content=report)


@router.get("/health/ready")
def ready(request: Request) -> JSONResponse:
    registry: HealthRegistry = request.app.state.health
    if registry.is_ready():
        return JSONResponse(status_code=200, content={"status": "ready"})
    return JSONResponse(status_code=503, content={"status": "not ready"})


@router.get("/health/live")
def live(request: Request) -> JSONResponse:
    registry: HealthRegistry = request.app.state.health
    return JSONResponse(
        content={
            "status": "alive",
            "timestamp": utc_timestamp(),
            "uptime": registry.uptime(),
        }
    )
