"""
jobs/celery_app.py -- The Celery application.

Start a worker (and beat, for recurring jobs) with:
    celery -A jobs.celery_app worker --loglevel=info -Q default,email,high_priority,low_priority
    celery -A jobs.celery_app beat --loglevel=info
"""

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun

from core.config import get_settings

logger = logging.getLogger("starterapi.jobs")


def _redact(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


def create_celery_app() -> Celery:
    """Create the Celery app with broker and backend on REDIS_URL."""
    redis_url = get_settings().redis_url
    app = Celery(
        "starterapi",
        broker=redis_url,
        backend=redis_url,
        include=["jobs.tasks"],
    )
    app.config_from_object("jobs.config:CeleryConfig")
    logger.info("Celery app created with broker: %s", _redact(redis_url))
    return app


celery_app = create_celery_app()


@celery_app.task(bind=True, name="jobs.healthcheck")
def healthcheck(self):
    """Return "OK"; used to confirm a worker is consuming."""
    return "OK"


# ---------------------------------------------------------------------------
# Lifecycle logging
# ---------------------------------------------------------------------------


@task_prerun.connect
def on_task_prerun(task_id=None, task=None, **kwargs):
    logger.info("Job %s started: %s", task_id, task.name if task else "?")


@task_postrun.connect
def on_task_postrun(task_id=None, task=None, state=None, **kwargs):
    logger.info("Job %s finished: %s (%s)", task_id, task.name if task else "?", state)


@task_failure.connect
def on_task_failure(task_id=None, exception=None, sender=None, **kwargs):
    logger.error("Job %s failed: %s: %s", task_id, sender.name if sender else "?", exception)
