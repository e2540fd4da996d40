"""
User progression counters: XP, level and coins.

Every mutation is a single conditional UPDATE so concurrent grading
jobs never lose an increment. Functions here do not commit; the
caller owns the unit of work.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from common.models import Submission, TransactionType, User
from modules import challenges_service, ledger, progression
from modules.errors import (
    InsufficientBalanceError,
    ProgressionConflictError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)

XP_UPDATE_ATTEMPTS = 5


def _load_user(db: Session, user_id: str) -> Optional[User]:
    # conditional UPDATEs bypass the identity map, so always re-read
    stmt = (
        select(User)
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


def get_user(db: Session, user_id: str) -> User:
    """
    Retrieve a user by ID.

    Raises:
        UserNotFoundError: If no such user exists
    """
    user = _load_user(db, user_id)
    if user is None:
        raise UserNotFoundError(f"User {user_id} not found")
    return user


def add_xp(db: Session, user_id: str, amount: int) -> progression.XpGrant:
    """
    Add XP to a user, levelling up along the curve.

    The new (xp, level) pair is written with a compare-and-swap on the
    values it was computed from; a lost race re-reads and retries.

    Args:
        db: Database session
        user_id: User identifier
        amount: Non-negative XP to add

    Returns:
        XpGrant: New counters and the levels reached

    Raises:
        UserNotFoundError: If the user does not exist
        ProgressionConflictError: If every attempt lost a race
    """
    for attempt in range(1, XP_UPDATE_ATTEMPTS + 1):
        user = get_user(db, user_id)
        grant = progression.add_xp(user.xp, user.level, amount)

        result = db.execute(
            update(User)
            .where(
                User.id == user_id,
                User.xp == user.xp,
                User.level == user.level
            )
            .values(xp=grant.xp, level=grant.level)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            user.xp = grant.xp
            user.level = grant.level
            if grant.levels_gained:
                logger.info(
                    f"User {user_id} reached level {grant.level} "
                    f"(+{len(grant.levels_gained)})"
                )
            return grant

        logger.warning(
            f"XP update for {user_id} lost a race "
            f"(attempt {attempt}/{XP_UPDATE_ATTEMPTS})"
        )

    raise ProgressionConflictError(
        f"Could not apply {amount} XP to user {user_id}"
    )


def add_coins(
    db: Session,
    user_id: str,
    amount: int,
    transaction_type: TransactionType,
    description: str,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None
) -> int:
    """
    Atomically credit coins and record the ledger entry.

    Args:
        db: Database session
        user_id: User identifier
        amount: Non-negative coins to add
        transaction_type: Ledger entry type
        description: Ledger entry description
        reference_id: Related record, e.g. a submission id
        reference_type: Kind of related record

    Returns:
        int: Balance after the credit

    Raises:
        UserNotFoundError: If the user does not exist
    """
    if amount < 0:
        raise ValueError("Coin credit must be non-negative")

    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(coins=User.coins + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise UserNotFoundError(f"User {user_id} not found")

    balance = get_user(db, user_id).coins
    ledger.record_transaction(
        db,
        user_id=user_id,
        transaction_type=transaction_type,
        amount=amount,
        balance=balance,
        description=description,
        reference_id=reference_id,
        reference_type=reference_type
    )
    return balance


def deduct_coins(
    db: Session,
    user_id: str,
    amount: int,
    transaction_type: TransactionType,
    description: str,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None
) -> int:
    """
    Atomically debit coins if the balance covers the amount.

    Returns:
        int: Balance after the debit

    Raises:
        UserNotFoundError: If the user does not exist
        InsufficientBalanceError: If the balance is below ``amount``
    """
    if amount < 0:
        raise ValueError("Coin debit must be non-negative")

    result = db.execute(
        update(User)
        .where(User.id == user_id, User.coins >= amount)
        .values(coins=User.coins - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # distinguish a missing user from a short balance
        get_user(db, user_id)
        raise InsufficientBalanceError(
            f"User {user_id} has insufficient coins for {amount}"
        )

    balance = get_user(db, user_id).coins
    ledger.record_transaction(
        db,
        user_id=user_id,
        transaction_type=transaction_type,
        amount=-amount,
        balance=balance,
        description=description,
        reference_id=reference_id,
        reference_type=reference_type
    )
    return balance


def award_xp(
    db: Session,
    user_id: str,
    amount: int,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None
) -> progression.XpGrant:
    """
    Add XP and pay the level-up coin bonus for every level crossed.

    Returns:
        XpGrant: Result of the XP update
    """
    grant = add_xp(db, user_id, amount)
    for level in grant.levels_gained:
        add_coins(
            db,
            user_id,
            progression.coins_for_level_up(level),
            TransactionType.LEVEL_UP_BONUS,
            f"Reached level {level}",
            reference_id=reference_id,
            reference_type=reference_type
        )
    return grant


def profile_with_stats(db: Session, user_id: str) -> dict[str, Any]:
    """User counters plus tier and progress toward the next level."""
    user = get_user(db, user_id)
    tier = progression.tier_for(user.level)

    return {
        "id": user.id,
        "display_name": user.display_name,
        "role": user.role.value,
        "xp": user.xp,
        "level": user.level,
        "coins": user.coins,
        "tier": tier.key,
        "tier_name": tier.name,
        "tier_color": tier.color,
        "xp_required": progression.xp_required(user.level),
        "progress_percent": progression.progress_percent(
            user.xp,
            user.level
        ),
    }


def _ranked(rows: list[User]) -> list[dict[str, Any]]:
    entries = []
    for rank, user in enumerate(rows, start=1):
        tier = progression.tier_for(user.level)
        entries.append({
            "rank": rank,
            "id": user.id,
            "display_name": user.display_name,
            "level": user.level,
            "xp": user.xp,
            "tier": tier.key,
            "tier_name": tier.name,
        })
    return entries


def leaderboard(db: Session, limit: int = 10) -> list[dict[str, Any]]:
    """
    All-time ranking by level, then XP.

    Ties on both fall back to user id so the order is stable.
    """
    stmt = (
        select(User)
        .order_by(User.level.desc(), User.xp.desc(), User.id)
        .limit(limit)
    )
    return _ranked(list(db.scalars(stmt)))


def weekly_leaderboard(
    db: Session,
    tz_name: str,
    limit: int = 10,
    now: Optional[datetime] = None
) -> list[dict[str, Any]]:
    """
    Ranking by XP earned from submissions made in the current ISO week.

    Weekly XP is the grading reward plus any review bonus. Users who
    earned nothing this week are left out.

    Args:
        db: Database session
        tz_name: IANA timezone that defines the week boundaries
        limit: Maximum number of entries
        now: Aware datetime to use instead of the current time

    Returns:
        list: Entries with rank, counters, tier, weekly_xp and
            submission_count
    """
    start, end = challenges_service.current_week_range(tz_name, now)

    weekly_xp = func.sum(
        func.coalesce(Submission.xp_earned, 0)
        + func.coalesce(Submission.bonus_xp_from_review, 0)
    )
    submission_count = func.count(Submission.id)
    stmt = (
        select(User, weekly_xp, submission_count)
        .join(Submission, Submission.user_id == User.id)
        .where(
            Submission.submitted_at >= start.astimezone(timezone.utc),
            Submission.submitted_at < end.astimezone(timezone.utc)
        )
        .group_by(User.id)
        .having(weekly_xp > 0)
        .order_by(weekly_xp.desc(), User.id)
        .limit(limit)
    )
    rows = db.execute(stmt).all()

    entries = _ranked([user for user, _, _ in rows])
    for entry, (_, xp, count) in zip(entries, rows):
        entry["weekly_xp"] = int(xp)
        entry["submission_count"] = count
    return entries
