"""
Celery application configuration.

This module configures Celery to use Redis as both the message broker and result backend.
The worker process handles reset-code emails; beat runs the daily cleanup.
"""

from celery import Celery
from celery.schedules import crontab
from app.core.config import settings

# Create Celery instance
celery_app = Celery(
    "marketplace_auth_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL
)

# Configure Celery
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task behavior
    task_track_started=True,
    task_time_limit=60,
    task_soft_time_limit=45,

    # Task arguments carry reset codes, keep results short-lived
    result_expires=600,

    # Worker behavior
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=200,

    beat_schedule={
        "cleanup-expired-password-resets": {
            "task": "cleanup_expired_password_resets",
            "schedule": crontab(hour=2, minute=0),  # Run at 2 AM UTC daily
        },
    },
)

# Auto-discover tasks from app.tasks module
celery_app.autodiscover_tasks(['app'])
