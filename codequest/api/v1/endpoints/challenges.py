"""
Challenge endpoints.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.dependencies import get_db, get_settings, verify_token
from common.config import Settings
from common.schemas import APIResponse, ChallengeData, CurrentChallengesData
from modules import challenges_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/challenges/current",
    response_model=APIResponse,
    tags=["Challenges"]
)
def get_current_challenges(
    _token: str = Depends(verify_token),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """
    Get the active challenges of the current week.

    Returns:
        APIResponse: Week number, year and challenge list
    """
    try:
        week = challenges_service.current_week_info(settings.timezone)
        challenges = challenges_service.find_current_week_challenges(
            db,
            settings.timezone
        )

        return APIResponse(
            success=True,
            data=CurrentChallengesData(
                week_number=week.week_number,
                year=week.year,
                challenges=[
                    ChallengeData.model_validate(challenge)
                    for challenge in challenges
                ]
            ).model_dump()
        )
    except Exception as e:
        logger.error(f"Failed to fetch current challenges: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="Internal server error"
        )
