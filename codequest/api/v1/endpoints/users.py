"""
User progression endpoints: leaderboards, profile, coin grants and ledger.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.dependencies import (
    get_db,
    get_settings,
    verify_admin_token,
    verify_token,
)
from api.errors import to_http_exception
from common.config import Settings
from common.models import TransactionType
from common.schemas import (
    APIResponse,
    GrantCoinsData,
    GrantCoinsRequest,
    LeaderboardEntryData,
    TransactionData,
    TransactionSummaryData,
    UserProfileData,
    WeeklyLeaderboardData,
    WeeklyLeaderboardEntryData,
)
from modules import challenges_service, ledger, users_service
from modules.errors import CodeQuestError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/users/leaderboard",
    response_model=APIResponse,
    tags=["Users"]
)
def get_leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    _token: str = Depends(verify_token),
    db: Session = Depends(get_db)
):
    """
    Get the all-time leaderboard, ranked by level and then XP.

    Args:
        limit: Maximum number of entries

    Returns:
        APIResponse: Ranked entries
    """
    try:
        entries = users_service.leaderboard(db, limit=limit)
        return APIResponse(
            success=True,
            data=[
                LeaderboardEntryData(**entry).model_dump()
                for entry in entries
            ]
        )
    except Exception as e:
        logger.error(f"Failed to build leaderboard: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )


@router.get(
    "/users/leaderboard/weekly",
    response_model=APIResponse,
    tags=["Users"]
)
def get_weekly_leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    _token: str = Depends(verify_token),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """
    Get the leaderboard of XP earned during the current week.

    Args:
        limit: Maximum number of entries

    Returns:
        APIResponse: Week number, year and ranked entries
    """
    try:
        now = datetime.now(timezone.utc)
        week = challenges_service.current_week_info(settings.timezone, now)
        entries = users_service.weekly_leaderboard(
            db,
            settings.timezone,
            limit=limit,
            now=now
        )
        return APIResponse(
            success=True,
            data=WeeklyLeaderboardData(
                week_number=week.week_number,
                year=week.year,
                entries=[
                    WeeklyLeaderboardEntryData(**entry)
                    for entry in entries
                ]
            ).model_dump()
        )
    except Exception as e:
        logger.error(
            f"Failed to build weekly leaderboard: {e}",
            exc_info=True
        )
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )


@router.get(
    "/users/{user_id}/profile",
    response_model=APIResponse,
    tags=["Users"]
)
def get_user_profile(
    user_id: str,
    _token: str = Depends(verify_token),
    db: Session = Depends(get_db)
):
    """
    Get a user's level, XP, coins and tier.

    Args:
        user_id: User identifier

    Returns:
        APIResponse: Profile data
    """
    try:
        profile = users_service.profile_with_stats(db, user_id)
        return APIResponse(
            success=True,
            data=UserProfileData(**profile).model_dump()
        )
    except CodeQuestError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to load profile {user_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )


@router.post(
    "/users/{user_id}/grant-coins",
    response_model=APIResponse,
    tags=["Users"]
)
def grant_coins(
    user_id: str,
    request: GrantCoinsRequest,
    _token: str = Depends(verify_admin_token),
    db: Session = Depends(get_db)
):
    """
    Grant coins to a user (admin).

    Args:
        user_id: User identifier
        request: Amount and optional reason

    Returns:
        APIResponse: New balance
    """
    try:
        balance = users_service.add_coins(
            db,
            user_id,
            request.amount,
            TransactionType.ADMIN_GRANT,
            request.reason or "Granted by administrator"
        )
        db.commit()

        logger.info(f"Granted {request.amount} coins to {user_id}")
        return APIResponse(
            success=True,
            data=GrantCoinsData(
                user_id=user_id,
                amount=request.amount,
                balance=balance
            ).model_dump()
        )
    except CodeQuestError as e:
        db.rollback()
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to grant coins to {user_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )


@router.get(
    "/users/{user_id}/transactions",
    response_model=APIResponse,
    tags=["Users"]
)
def get_user_transactions(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    _token: str = Depends(verify_token),
    db: Session = Depends(get_db)
):
    """
    Get a user's most recent ledger entries.

    Args:
        user_id: User identifier
        limit: Maximum number of entries

    Returns:
        APIResponse: Ledger entries, newest first
    """
    try:
        users_service.get_user(db, user_id)
        entries = ledger.list_transactions(db, user_id, limit=limit)
        return APIResponse(
            success=True,
            data=[
                TransactionData.model_validate(entry).model_dump()
                for entry in entries
            ]
        )
    except CodeQuestError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(
            f"Failed to list transactions for {user_id}: {e}",
            exc_info=True
        )
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )


@router.get(
    "/users/{user_id}/transactions/summary",
    response_model=APIResponse,
    tags=["Users"]
)
def get_user_transaction_summary(
    user_id: str,
    _token: str = Depends(verify_token),
    db: Session = Depends(get_db)
):
    """
    Get a user's lifetime coin totals, overall and per type.

    Args:
        user_id: User identifier

    Returns:
        APIResponse: Earned, spent and per-type totals
    """
    try:
        users_service.get_user(db, user_id)
        summary = ledger.transaction_summary(db, user_id)
        return APIResponse(
            success=True,
            data=TransactionSummaryData(**summary).model_dump()
        )
    except CodeQuestError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(
            f"Failed to summarize transactions for {user_id}: {e}",
            exc_info=True
        )
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )
