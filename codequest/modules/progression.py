"""
Leveling curve, tier bands and challenge reward policies.

Pure functions with no I/O; the users service and the submission
lifecycle apply their results to the database.
"""

import math
from dataclasses import dataclass, field
from typing import Callable, Protocol

MAX_LEVEL = 60
MIN_LEVEL = 1


@dataclass(frozen=True)
class XpGrant:
    """Result of add_xp: new counters plus every level reached, in order."""

    xp: int
    level: int
    levels_gained: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class Tier:
    key: str
    name: str
    min_level: int
    max_level: int
    color: str

    def contains(self, level: int) -> bool:
        return self.min_level <= level <= self.max_level


TIERS: tuple[Tier, ...] = (
    Tier("NEWBIE", "Newbie", 0, 10, "#808080"),
    Tier("BEGINNER", "Beginner", 11, 20, "#32CD32"),
    Tier("INTERMEDIATE", "Intermediate", 21, 30, "#1E90FF"),
    Tier("ADVANCED", "Advanced", 31, 40, "#9932CC"),
    Tier("EXPERT", "Expert", 41, 50, "#FFD700"),
    Tier("MASTER", "Master", 51, 60, "#FF4500"),
)


def xp_required(level: int) -> int:
    """XP needed to go from ``level`` to ``level + 1``."""
    if level < MIN_LEVEL:
        return 0
    return math.floor(100 * level ** 1.5)


def add_xp(current_xp: int, current_level: int, gained: int) -> XpGrant:
    """
    Apply an XP grant, levelling up while the balance covers the curve.

    XP beyond the level cap keeps accumulating but can no longer be
    spent on levels.

    Args:
        current_xp: XP already accumulated inside the current level
        current_level: Current level (1..60)
        gained: Non-negative XP to add

    Returns:
        XpGrant: New XP, new level and the list of levels reached
    """
    if gained < 0:
        raise ValueError("XP grant must be non-negative")

    xp = current_xp + gained
    level = current_level
    levels_gained: list[int] = []

    while level < MAX_LEVEL:
        required = xp_required(level)
        if xp < required:
            break
        xp -= required
        level += 1
        levels_gained.append(level)

    return XpGrant(xp=xp, level=level, levels_gained=levels_gained)


def coins_for_level_up(level: int) -> int:
    """Coins awarded on reaching ``level``; decades pay a milestone bonus."""
    base_coins = 50
    tier_bonus = (level // 10) * 25
    milestone_bonus = 100 if level % 10 == 0 else 0
    return base_coins + tier_bonus + milestone_bonus


def tier_for(level: int) -> Tier:
    for tier in TIERS:
        if tier.contains(level):
            return tier
    return TIERS[-1]


def progress_percent(xp: int, level: int) -> int:
    """Share of the current level's requirement already earned."""
    required = xp_required(level)
    if required <= 0:
        return 0
    return min(100, round(xp / required * 100))


# Reward policies

class RewardSource(Protocol):
    """Challenge fields a reward policy may read."""

    base_xp_reward: int
    bonus_coins: int
    difficulty: int


@dataclass(frozen=True)
class Rewards:
    xp: int
    coins: int


RewardPolicy = Callable[[RewardSource, int], Rewards]


def difficulty_multiplier(difficulty: int) -> float:
    """1.0 for difficulty 1 up to 1.8 for difficulty 5."""
    return 1 + (difficulty - 1) * 0.2


def score_weighted_rewards(challenge: RewardSource, ai_score: int) -> Rewards:
    """
    Base XP plus up to 50% extra for code quality, scaled by difficulty.

    Coins are the challenge bonus scaled by the same multiplier.
    """
    base_xp = challenge.base_xp_reward
    ai_bonus = math.floor(base_xp * 0.5 * (ai_score / 100))
    multiplier = difficulty_multiplier(challenge.difficulty)

    return Rewards(
        xp=math.floor((base_xp + ai_bonus) * multiplier),
        coins=math.floor(challenge.bonus_coins * multiplier),
    )


def flat_rewards(challenge: RewardSource, ai_score: int) -> Rewards:
    """The challenge's base XP and bonus coins regardless of the score."""
    return Rewards(xp=challenge.base_xp_reward, coins=challenge.bonus_coins)


REWARD_POLICIES: dict[str, RewardPolicy] = {
    "score_weighted": score_weighted_rewards,
    "flat": flat_rewards,
}


def get_reward_policy(name: str) -> RewardPolicy:
    try:
        return REWARD_POLICIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown reward policy '{name}'. "
            f"Available: {sorted(REWARD_POLICIES)}"
        ) from None
