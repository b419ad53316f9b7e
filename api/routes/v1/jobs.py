"""
api/routes/v1/jobs.py -- Background job inspection and control.

Routes (prefix /api/v1/jobs), all authenticated:
  GET    /stats             -- active / reserved / scheduled counts across workers
  GET    /{job_id}          -- state, and the result or error once finished
  DELETE /{job_id}          -- revoke the job; 200
  POST   /{job_id}/retry    -- re-run a failed job; 201 + the new job id

Every route answers 503 when JOBS_ENABLED is off (no JobService on app.state)
and when the broker cannot be reached.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api import responses
from auth.dependencies import get_current_identity
from core.errors import DomainError, JobError
from core.messages import MessageCode
from jobs.service import JobService

JOBS_PREFIX = "/api/v1/jobs"

router = APIRouter(dependencies=[Depends(get_current_identity)])


def _jobs(request: Request) -> JobService:
    jobs = getattr(request.app.state, "jobs", None)
    if jobs is None:
        raise JobError("Background jobs are disabled")
    return jobs


@router.get("/stats")
def queue_stats(request: Request) -> JSONResponse:
    return responses.success(request, _jobs(request).queue_stats())


@router.get("/{job_id}")
def job_status(request: Request, job_id: str) -> JSONResponse:
    return responses.success(request, _jobs(request).status(job_id).to_dict())


@router.delete("/{job_id}")
def cancel_job(request: Request, job_id: str) -> JSONResponse:
    _jobs(request).cancel(job_id)
    return responses.success(request, {"id": job_id}, message="Job cancelled")


@router.post("/{job_id}/retry", status_code=201)
def retry_job(request: Request, job_id: str) -> JSONResponse:
    new_id = _jobs(request).retry(job_id)
    if new_id is None:
        raise DomainError("Only failed jobs can be retried", status_code=409, message_code=MessageCode.CONFLICT)
    return responses.created(request, {"id": new_id, "retriedFrom": job_id})
