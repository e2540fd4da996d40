"""
Tests for the challenge calendar and lookups.
"""

from datetime import datetime, timedelta, timezone

import pytest

from modules import challenges_service
from modules.errors import ChallengeNotFoundError

# Saturday 2026-10-17 10:00 UTC is 18:00 in Manila, ISO week 42
SATURDAY = datetime(2026, 10, 17, 10, 0, tzinfo=timezone.utc)
# Sunday 2026-10-18 17:00 UTC is already Monday 01:00 in Manila
LATE_SUNDAY = datetime(2026, 10, 18, 17, 0, tzinfo=timezone.utc)


def test_current_week_info():
    week = challenges_service.current_week_info("Asia/Manila", SATURDAY)

    assert (week.week_number, week.year) == (42, 2026)


def test_current_week_info_uses_local_date():
    utc = challenges_service.current_week_info("UTC", LATE_SUNDAY)
    manila = challenges_service.current_week_info("Asia/Manila", LATE_SUNDAY)

    assert utc.week_number == 42
    assert manila.week_number == 43


def test_current_week_info_uses_iso_year():
    # 2027-01-01 is a Friday belonging to ISO week 53 of 2026
    week = challenges_service.current_week_info(
        "UTC",
        datetime(2027, 1, 1, 12, 0, tzinfo=timezone.utc)
    )

    assert (week.week_number, week.year) == (53, 2026)


def test_is_weekend():
    assert challenges_service.is_weekend("Asia/Manila", SATURDAY)
    assert challenges_service.is_weekend("UTC", LATE_SUNDAY)
    assert not challenges_service.is_weekend("Asia/Manila", LATE_SUNDAY)


def test_get_challenge(db, challenge):
    assert challenges_service.get_challenge(db, "ch-1").title == (
        "Add Two Numbers"
    )


def test_get_challenge_unknown(db):
    with pytest.raises(ChallengeNotFoundError):
        challenges_service.get_challenge(db, "missing")


def test_find_current_week_challenges(db, make_challenge):
    make_challenge(id="hard", difficulty=5)
    make_challenge(id="easy", difficulty=1)
    make_challenge(id="inactive", difficulty=1, is_active=False)
    make_challenge(id="next-week", week_number=43)
    make_challenge(id="last-year", year=2025)

    challenges = challenges_service.find_current_week_challenges(
        db,
        "Asia/Manila",
        SATURDAY
    )

    assert [c.id for c in challenges] == ["easy", "hard"]


def test_current_week_range_starts_on_local_monday():
    start, end = challenges_service.current_week_range("Asia/Manila", SATURDAY)

    assert start.astimezone(timezone.utc) == datetime(
        2026, 10, 11, 16, 0, tzinfo=timezone.utc
    )
    assert end - start == timedelta(days=7)


def test_current_week_range_follows_local_date():
    start, _ = challenges_service.current_week_range(
        "Asia/Manila",
        LATE_SUNDAY
    )
    utc_start, _ = challenges_service.current_week_range("UTC", LATE_SUNDAY)

    assert start.date().isoformat() == "2026-10-19"
    assert utc_start.date().isoformat() == "2026-10-12"
