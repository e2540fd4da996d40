"""
Submission endpoints: intake, status, grading trigger and review.

Handlers are plain functions; FastAPI runs them in its threadpool
since grading and database work are blocking.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import (
    get_lifecycle,
    require_submission_window,
    verify_admin_token,
    verify_token,
)
from api.errors import to_http_exception
from common.schemas import (
    APIResponse,
    ReviewRequest,
    SubmissionCreateData,
    SubmissionCreateRequest,
    SubmissionData,
    SubmissionHistoryData,
    SubmissionStatsData,
    SubmissionSummaryData,
)
from modules.errors import CodeQuestError
from modules.submission_lifecycle import SubmissionLifecycle

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/submissions",
    response_model=APIResponse,
    tags=["Submissions"]
)
def create_submission(
    request: SubmissionCreateRequest,
    _token: str = Depends(verify_token),
    _window: None = Depends(require_submission_window),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    """
    Submit code for a challenge.

    The submission is stored as PENDING and graded in the background.

    Args:
        request: Submission creation request

    Returns:
        APIResponse: Created submission data
    """
    try:
        submission = lifecycle.submit(
            request.user_id,
            request.challenge_id,
            request.code,
            explanation=request.explanation,
            explanation_language=request.explanation_language
        )

        return APIResponse(
            success=True,
            data=SubmissionCreateData.model_validate(submission).model_dump()
        )
    except CodeQuestError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to create submission: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )


@router.get(
    "/submissions/stats/{user_id}",
    response_model=APIResponse,
    tags=["Submissions"]
)
def get_submission_stats(
    user_id: str,
    _token: str = Depends(verify_token),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    """
    Get submission counts and reward totals for a user.

    Args:
        user_id: User identifier

    Returns:
        APIResponse: Submission statistics
    """
    try:
        stats = lifecycle.submission_stats(user_id)
        return APIResponse(
            success=True,
            data=SubmissionStatsData(**stats).model_dump()
        )
    except CodeQuestError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(
            f"Failed to compute stats for {user_id}: {e}",
            exc_info=True
        )
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )


@router.get(
    "/submissions/history/{user_id}",
    response_model=APIResponse,
    tags=["Submissions"]
)
def get_submission_history(
    user_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    _token: str = Depends(verify_token),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    """
    Get a page of a user's submissions, newest first.

    Args:
        user_id: User identifier
        page: 1-based page number
        limit: Page size

    Returns:
        APIResponse: Total count and the requested page
    """
    try:
        items, total = lifecycle.submission_history(
            user_id,
            page=page,
            limit=limit
        )
        return APIResponse(
            success=True,
            data=SubmissionHistoryData(
                total=total,
                page=page,
                limit=limit,
                submissions=[SubmissionSummaryData(**i) for i in items]
            ).model_dump()
        )
    except CodeQuestError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(
            f"Failed to list submissions for {user_id}: {e}",
            exc_info=True
        )
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )


@router.get(
    "/submissions/{submission_id}",
    response_model=APIResponse,
    tags=["Submissions"]
)
def get_submission(
    submission_id: str,
    user_id: Optional[str] = None,
    _token: str = Depends(verify_token),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    """
    Get a submission with its grading and review results.

    Args:
        submission_id: Submission identifier
        user_id: When given, the submission must belong to this user

    Returns:
        APIResponse: Submission data
    """
    try:
        submission = lifecycle.get_submission(submission_id, user_id=user_id)
        return APIResponse(
            success=True,
            data=SubmissionData.model_validate(submission).model_dump()
        )
    except CodeQuestError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(
            f"Failed to get submission {submission_id}: {e}",
            exc_info=True
        )
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )


@router.post(
    "/submissions/{submission_id}/evaluate",
    response_model=APIResponse,
    tags=["Submissions"]
)
def evaluate_submission(
    submission_id: str,
    _token: str = Depends(verify_admin_token),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    """
    Grade a PENDING submission synchronously (admin).

    Args:
        submission_id: Submission identifier

    Returns:
        APIResponse: Graded submission data
    """
    try:
        submission = lifecycle.evaluate(submission_id)
        return APIResponse(
            success=True,
            data=SubmissionData.model_validate(submission).model_dump()
        )
    except CodeQuestError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(
            f"Failed to evaluate submission {submission_id}: {e}",
            exc_info=True
        )
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )


@router.post(
    "/submissions/{submission_id}/review",
    response_model=APIResponse,
    tags=["Submissions"]
)
def review_submission(
    submission_id: str,
    request: ReviewRequest,
    _token: str = Depends(verify_admin_token),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    """
    Review a graded submission and award bonuses (admin).

    Args:
        submission_id: Submission identifier
        request: Review scores, bonuses and feedback

    Returns:
        APIResponse: Reviewed submission data
    """
    try:
        submission = lifecycle.review(
            submission_id,
            explanation_score=request.explanation_score,
            bonus_xp=request.bonus_xp,
            bonus_coins=request.bonus_coins,
            feedback=request.feedback,
            reviewer_id=request.reviewer_id
        )
        return APIResponse(
            success=True,
            data=SubmissionData.model_validate(submission).model_dump()
        )
    except CodeQuestError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(
            f"Failed to review submission {submission_id}: {e}",
            exc_info=True
        )
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )
