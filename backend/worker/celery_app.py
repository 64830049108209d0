"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Separate queues for dispatch (trigger -> execution record) and execution
- Late acknowledgement, so a job lost with its worker is redelivered
- Beat schedule for the schedule-trigger poller
"""

from celery import Celery

from app.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "stepflow",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

# Configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task routing
    task_routes={
        "worker.tasks.dispatch.*": {"queue": "dispatch"},
        "worker.tasks.workflow.*": {"queue": "executions"},
        "worker.tasks.schedule_poller.*": {"queue": "dispatch"},
    },
    task_default_queue="executions",

    # Result expiration (24 hours)
    result_expires=86400,

    # Delivery: at-least-once, the engine guards against re-runs
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.WORKER_CONCURRENCY,

    beat_schedule={
        "poll-schedules": {
            "task": "worker.tasks.schedule_poller.poll_schedules",
            "schedule": float(settings.SCHEDULE_POLL_SECONDS),
            "options": {"queue": "dispatch"},
        },
    },

    include=[
        "worker.tasks.dispatch",
        "worker.tasks.workflow",
        "worker.tasks.schedule_poller",
    ],
)
