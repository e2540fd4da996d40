"""
Read-only access to weekly challenges.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from common.models import Challenge
from modules.errors import ChallengeNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeekInfo:
    week_number: int
    year: int


def current_week_info(
    timezone: str,
    now: Optional[datetime] = None
) -> WeekInfo:
    """
    ISO week and ISO year of ``now`` in the given timezone.

    Args:
        timezone: IANA timezone name, e.g. "Asia/Manila"
        now: Aware datetime to use instead of the current time

    Returns:
        WeekInfo: ISO week number and ISO year
    """
    tz = ZoneInfo(timezone)
    local = now.astimezone(tz) if now is not None else datetime.now(tz)
    iso = local.isocalendar()
    return WeekInfo(week_number=iso.week, year=iso.year)


def current_week_range(
    timezone: str,
    now: Optional[datetime] = None
) -> tuple[datetime, datetime]:
    """
    Bounds of the current ISO week in the given timezone.

    Returns:
        tuple: Aware start (Monday 00:00 local, inclusive) and end
            (next Monday 00:00 local, exclusive)
    """
    tz = ZoneInfo(timezone)
    local = now.astimezone(tz) if now is not None else datetime.now(tz)
    monday = local.date() - timedelta(days=local.weekday())
    start = datetime(monday.year, monday.month, monday.day, tzinfo=tz)
    next_monday = monday + timedelta(days=7)
    end = datetime(
        next_monday.year,
        next_monday.month,
        next_monday.day,
        tzinfo=tz
    )
    return start, end


def is_weekend(timezone: str, now: Optional[datetime] = None) -> bool:
    """True on Saturday or Sunday in the given timezone."""
    tz = ZoneInfo(timezone)
    local = now.astimezone(tz) if now is not None else datetime.now(tz)
    return local.weekday() >= 5


def get_challenge(db: Session, challenge_id: str) -> Challenge:
    """
    Retrieve a challenge by ID.

    Raises:
        ChallengeNotFoundError: If no such challenge exists
    """
    challenge = db.get(Challenge, challenge_id)
    if challenge is None:
        raise ChallengeNotFoundError(f"Challenge {challenge_id} not found")
    return challenge


def find_current_week_challenges(
    db: Session,
    timezone: str,
    now: Optional[datetime] = None
) -> list[Challenge]:
    """Active challenges scheduled for the current ISO week."""
    week = current_week_info(timezone, now)
    stmt = (
        select(Challenge)
        .where(
            Challenge.week_number == week.week_number,
            Challenge.year == week.year,
            Challenge.is_active.is_(True)
        )
        .order_by(Challenge.difficulty, Challenge.id)
    )
    challenges = list(db.scalars(stmt))

    logger.debug(
        f"Found {len(challenges)} active challenge(s) for "
        f"{week.year}-W{week.week_number}"
    )
    return challenges
