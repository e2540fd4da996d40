"""
Producer side of the grading queue.

The API never imports the worker's task modules; it dispatches by
task name through a lightweight Celery client.
"""

import logging

from celery import Celery

from common.config import Settings

logger = logging.getLogger(__name__)

GRADE_SUBMISSION_TASK = "worker.tasks.grade_submission"


class CeleryGradingQueue:
    """Enqueues grading jobs keyed by submission id."""

    def __init__(self, settings: Settings):
        self._client = Celery(
            broker=settings.redis_url,
            backend=settings.redis_url
        )

    def enqueue(self, submission_id: str) -> None:
        self._client.send_task(
            GRADE_SUBMISSION_TASK,
            args=[submission_id],
            task_id=f"grade-{submission_id}"
        )
        logger.info(f"Dispatched grading task for submission {submission_id}")
