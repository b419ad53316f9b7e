"""
jobs/service.py -- Enqueue and inspect background jobs.

JobService is the only thing the rest of the app touches; it wraps a Celery
app so routes and services never import Celery themselves. Broker and result
backend failures surface as core.errors.JobError, which the error boundary
renders as 503.

Usage:
    jobs = JobService(celery_app)
    job_id = jobs.enqueue_email("a@x.com", welcome_template("Ada"))
    jobs.status(job_id).state   # "PENDING" | "STARTED" | "RETRY" | "SUCCESS" | "FAILURE"
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from celery import Celery
from celery.schedules import crontab, crontab_parser
from kombu.exceptions import OperationalError
from redis.exceptions import RedisError

from core.errors import DomainError, JobError
from notifications.mailer import EmailTemplate, Recipients

logger = logging.getLogger("starterapi.jobs")

QUEUE_ERRORS = (OperationalError, RedisError, OSError)


class JobType(str, Enum):
    """Registered task names."""

    SEND_EMAIL = "jobs.tasks.send_email"
    HEALTHCHECK = "jobs.healthcheck"


@dataclass(frozen=True)
class JobStatus:
    id: str
    state: str
    ready: bool
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "state": self.state, "ready": self.ready, "result": self.result, "error": self.error}


def parse_cron(expression: str) -> crontab:
    """Turn a five-field cron expression (m h dom mon dow) into a crontab."""
    fields = expression.split()
    if len(fields) != 5:
        raise DomainError("Cron expression must have five fields", status_code=400)
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    try:
        return crontab(
            minute=minute,
            hour=hour,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            day_of_week=day_of_week,
        )
    except (ValueError, crontab_parser.ParseException) as exc:
        raise DomainError(f"Invalid cron expression: {expression}", status_code=400) from exc


class JobService:
    def __init__(self, app: Celery) -> None:
        self.app = app

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue(
        self,
        job_type: Union[JobType, str],
        kwargs: Optional[dict] = None,
        queue: Optional[str] = None,
        countdown: Optional[float] = None,
    ) -> str:
        """Queue a job and return its id. queue overrides the task's route."""
        name = JobType(job_type).value
        options: dict[str, Any] = {}
        if queue:
            options["queue"] = queue
        if countdown:
            options["countdown"] = countdown
        try:
            result = self.app.tasks[name].apply_async(kwargs=kwargs or {}, **options)
        except QUEUE_ERRORS as exc:
            raise JobError("Job queue unavailable", detail=str(exc)) from exc
        logger.info("Job %s of type %s queued", result.id, name)
        return result.id

    def enqueue_delayed(self, job_type: Union[JobType, str], kwargs: Optional[dict], delay: float) -> str:
        """Queue a job that becomes runnable after `delay` seconds."""
        return self.enqueue(job_type, kwargs, countdown=delay)

    def enqueue_email(
        self,
        to: Recipients,
        template: EmailTemplate,
        cc: Optional[Recipients] = None,
        bcc: Optional[Recipients] = None,
    ) -> str:
        return self.enqueue(
            JobType.SEND_EMAIL,
            {"to": to, "subject": template.subject, "text": template.text, "html": template.html, "cc": cc, "bcc": bcc},
        )

    def schedule_recurring(
        self, name: str, job_type: Union[JobType, str], kwargs: Optional[dict], cron: str
    ) -> crontab:
        """Add an entry to the beat schedule. Takes effect in the beat process
        that loads this configuration, so call it where the app is built."""
        schedule = parse_cron(cron)
        self.app.conf.beat_schedule = {
            **(self.app.conf.beat_schedule or {}),
            name: {"task": JobType(job_type).value, "schedule": schedule, "kwargs": kwargs or {}},
        }
        logger.info("Recurring job %s scheduled: %s", name, cron)
        return schedule

    # ------------------------------------------------------------------
    # Inspect and control
    # ------------------------------------------------------------------

    def status(self, job_id: str) -> JobStatus:
        result = self.app.AsyncResult(job_id)
        try:
            state = result.state
            ready = result.ready()
            value = result.result if ready else None
        except QUEUE_ERRORS as exc:
            raise JobError("Job status unavailable", detail=str(exc)) from exc
        if state == "FAILURE":
            return JobStatus(job_id, state, True, None, f"{type(value).__name__}: {value}")
        return JobStatus(job_id, state, ready, value if state == "SUCCESS" else None)

    def cancel(self, job_id: str, terminate: bool = False) -> None:
        """Revoke a job. A running job is only stopped when terminate is set."""
        try:
            self.app.control.revoke(job_id, terminate=terminate)
        except QUEUE_ERRORS as exc:
            raise JobError("Job queue unavailable", detail=str(exc)) from exc
        logger.info("Job %s cancelled", job_id)

    def retry(self, job_id: str) -> Optional[str]:
        """Re-run a failed job with its original arguments. Returns the new id,
        or None when the job is not in FAILURE or its arguments were not kept."""
        result = self.app.AsyncResult(job_id)
        try:
            state, name, kwargs = result.state, result.name, result.kwargs
        except QUEUE_ERRORS as exc:
            raise JobError("Job status unavailable", detail=str(exc)) from exc
        if state != "FAILURE" or not name:
            return None
        new_id = self.enqueue(name, kwargs)
        logger.info("Job %s retried as %s", job_id, new_id)
        return new_id

    def queue_stats(self, timeout: float = 1.0) -> dict[str, int]:
        """Counts of active, reserved and scheduled jobs across live workers."""
        inspect = self.app.control.inspect(timeout=timeout)
        try:
            active = inspect.active() or {}
            reserved = inspect.reserved() or {}
            scheduled = inspect.scheduled() or {}
        except QUEUE_ERRORS as exc:
            raise JobError("Job queue unavailable", detail=str(exc)) from exc
        counts = {
            "workers": len(set(active) | set(reserved) | set(scheduled)),
            "active": sum(len(jobs) for jobs in active.values()),
            "reserved": sum(len(jobs) for jobs in reserved.values()),
            "scheduled": sum(len(jobs) for jobs in scheduled.values()),
        }
        counts["total"] = counts["active"] + counts["reserved"] + counts["scheduled"]
        return counts
