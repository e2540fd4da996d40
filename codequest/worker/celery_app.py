"""
Celery application entrypoint for the CodeQuest grading worker.

This module initializes Celery with all necessary configurations.
"""

import logging

from celery import Celery

from common.config import get_settings
from common.logging_conf import setup_celery_logging

logger = logging.getLogger(__name__)

# Get settings
settings = get_settings()

# Initialize logging
setup_celery_logging(settings)

# Create Celery app
celery_app = Celery(
    "codequest_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["worker.tasks.grading_tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # one grading call is bounded by evaluation_timeout_seconds
    task_time_limit=settings.grading_time_limit_seconds,
    task_soft_time_limit=settings.grading_time_limit_seconds - 60,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,
    beat_schedule={
        "expire-stale-evaluations": {
            "task": "worker.tasks.expire_stale_evaluations",
            "schedule": 300.0,
        },
    },
)

logger.info("Celery app initialized successfully")


if __name__ == "__main__":
    celery_app.start()
