"""
Celery application for FixIt background work.
Redis is the broker and result backend; beat runs the overdue sweep.
"""

import os
from celery import Celery
from kombu import Exchange, Queue

# Get configuration from environment variables
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
OVERDUE_SWEEP_MINUTES = int(os.getenv("OVERDUE_SWEEP_MINUTES", 60))

# Initialize Celery app
app = Celery(
    "fixit",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# Configure task settings
app.conf.update(
    # Task serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
    # A sweep result is only interesting until the next sweep
    result_expires=OVERDUE_SWEEP_MINUTES * 60,
    broker_connection_retry_on_startup=True,

    # Retry behavior
    task_acks_late=True,  # Task acknowledged after execution
    worker_prefetch_multiplier=1,  # Prefetch one task at a time

    # Task routes and queues
    task_routes={
        "fixit.tasks.celery_tasks.sweep_overdue_issues": {"queue": "sweeps"},
    },
    task_queues=[
        Queue("default", Exchange("default"), routing_key="default"),
        Queue("sweeps", Exchange("sweeps"), routing_key="sweeps"),
    ],
    task_default_queue="default",

    # Periodic overdue sweep (run `celery -A fixit.celery_app beat`)
    beat_schedule={
        "sweep-overdue-issues": {
            "task": "fixit.tasks.celery_tasks.sweep_overdue_issues",
            "schedule": OVERDUE_SWEEP_MINUTES * 60.0,
        },
    },
)

# Explicitly import task modules to ensure they're registered
# This is necessary for Celery to discover tasks with @app.task decorators
from fixit.tasks import celery_tasks  # noqa: E402, F401
