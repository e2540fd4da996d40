"""
Celery tasks for submission grading.

One job per submission id. The lifecycle claims the submission before
grading, so a duplicate delivery is logged and dropped.
"""

import logging
from functools import lru_cache
from typing import Any

from sqlalchemy.exc import OperationalError

from common.config import get_settings
from common.db import create_engine_from_url, create_session_factory, init_db
from modules.errors import AlreadyEvaluatedError, SubmissionNotFoundError
from modules.evaluation_client import EvaluationClient
from modules.submission_lifecycle import SubmissionLifecycle
from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_lifecycle() -> SubmissionLifecycle:
    """Per-process lifecycle sharing one engine and HTTP client config."""
    settings = get_settings()
    engine = create_engine_from_url(settings.database_url)
    init_db(engine)
    session_factory = create_session_factory(engine)
    return SubmissionLifecycle(
        settings,
        session_factory,
        EvaluationClient(settings)
    )


def run_grading(
    lifecycle: SubmissionLifecycle,
    submission_id: str
) -> dict[str, Any]:
    """
    Grade one submission and summarize the outcome.

    Args:
        lifecycle: Submission lifecycle to run the grading through
        submission_id: Submission identifier

    Returns:
        dict: Outcome summary stored as the task result
    """
    try:
        submission = lifecycle.evaluate(submission_id)
    except AlreadyEvaluatedError as e:
        logger.info(f"Skipping grading job: {e}")
        return {"submission_id": submission_id, "skipped": True}
    except SubmissionNotFoundError as e:
        logger.warning(f"Dropping grading job: {e}")
        return {"submission_id": submission_id, "skipped": True}

    return {
        "submission_id": submission_id,
        "skipped": False,
        "status": submission.status.value,
        "score": submission.ai_score,
        "xp_earned": submission.xp_earned,
        "coins_earned": submission.coins_earned,
    }


@celery_app.task(
    name="worker.tasks.grade_submission",
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    max_retries=3
)
def grade_submission(submission_id: str) -> dict[str, Any]:
    """
    Grade a submission through the full evaluation pipeline.

    Args:
        submission_id: Submission identifier

    Returns:
        dict: Grading outcome
    """
    logger.info(f"Received grading job for submission {submission_id}")
    result = run_grading(get_lifecycle(), submission_id)
    logger.info(f"Grading job for {submission_id} finished: {result}")
    return result


@celery_app.task(name="worker.tasks.expire_stale_evaluations")
def expire_stale_evaluations() -> int:
    """
    Move submissions whose grading job died to ERRORED.

    Returns:
        int: Number of submissions expired
    """
    return get_lifecycle().expire_stale_evaluations()
