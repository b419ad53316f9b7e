"""
jobs/config.py -- Celery settings, applied with app.config_from_object().

Broker and result backend both point at REDIS_URL. Setting JOBS_EAGER=true
makes apply_async() run the task inline, which is how tests and a Redis-less
development box exercise the job code.
"""

from core.config import get_settings

settings = get_settings()

DEFAULT_QUEUE = "default"
EMAIL_QUEUE = "email"
HIGH_PRIORITY_QUEUE = "high_priority"
LOW_PRIORITY_QUEUE = "low_priority"
QUEUES = (DEFAULT_QUEUE, EMAIL_QUEUE, HIGH_PRIORITY_QUEUE, LOW_PRIORITY_QUEUE)


class CeleryConfig:
    # ------------------------------------------------------------------
    # Broker (Redis)
    # ------------------------------------------------------------------

    broker_url = settings.redis_url
    result_backend = settings.redis_url
    broker_connection_retry_on_startup = True
    # One reconnect attempt per publish; a down broker surfaces as JobError.
    broker_transport_options = {"max_retries": 1}

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    task_always_eager = settings.jobs_eager
    task_eager_propagates = False
    # Acknowledge after completion: a crashed worker's task is redelivered.
    task_acks_late = True
    worker_prefetch_multiplier = 1
    result_expires = 3600
    task_time_limit = 300
    task_soft_time_limit = 240
    task_track_started = True
    # Keep name, args and kwargs with the result so a failed job can be re-run.
    result_extended = True

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    task_serializer = "json"
    result_serializer = "json"
    accept_content = ["json"]

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    task_queues = {name: {"exchange": name, "routing_key": name} for name in QUEUES}
    task_routes = {
        "jobs.tasks.send_email": {"queue": EMAIL_QUEUE},
    }
    task_default_queue = DEFAULT_QUEUE

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    worker_send_task_events = True
    task_send_sent_event = True

    timezone = "UTC"
    enable_utc = True
