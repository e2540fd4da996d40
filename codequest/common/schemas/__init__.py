"""
Pydantic schemas for API request and response models.
"""

from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _enum_value(value: Any) -> Any:
    # ORM rows hold enum members; responses carry their plain values
    return getattr(value, "value", value)


EnumValue = Annotated[str, BeforeValidator(_enum_value)]


# Base response wrapper
class APIResponse(BaseModel):
    """Standard API response wrapper."""

    success: bool = Field(..., description="Operation success status")
    data: Optional[Any] = Field(
        default=None,
        description="Response data"
    )
    error: Optional[str] = Field(
        default=None,
        description="Error message if success=False"
    )


# Health check schemas
class HealthData(BaseModel):
    """Health check response data."""

    status: str = Field(..., description="Service health status")
    database: str = Field(..., description="Database connectivity")
    redis: str = Field(..., description="Broker connectivity")


# Submission schemas
class SubmissionCreateRequest(BaseModel):
    """Request body for creating a submission."""

    user_id: str = Field(..., description="Submitting user ID")
    challenge_id: str = Field(..., description="Challenge ID to submit for")
    code: str = Field(..., min_length=1, description="Python source code")
    explanation: Optional[str] = Field(
        default=None,
        description="Written explanation of the approach"
    )
    explanation_language: Optional[str] = Field(
        default=None,
        max_length=50,
        description="Natural language of the explanation"
    )


class SubmissionCreateData(BaseModel):
    """Response data for submission creation."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique submission identifier")
    challenge_id: str = Field(..., description="Associated challenge ID")
    status: EnumValue = Field(..., description="Submission status")
    submitted_at: datetime = Field(..., description="Submission timestamp")


class TestResultData(BaseModel):
    """Model verdict on one test case."""

    __test__ = False  # not a pytest test class

    input: str
    expected: str
    passed: bool
    explanation: str = ""


class SubmissionData(BaseModel):
    """Full submission view including grading and review results."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    challenge_id: str
    code: str
    explanation: Optional[str] = None
    explanation_language: Optional[str] = None
    status: EnumValue

    correctness: Optional[int] = None
    code_quality: Optional[int] = None
    efficiency: Optional[int] = None
    style: Optional[int] = None
    ai_score: Optional[int] = None
    ai_feedback: Optional[str] = None
    ai_suggestions: Optional[list[str]] = None
    test_results: Optional[list[TestResultData]] = None

    xp_earned: Optional[int] = None
    coins_earned: Optional[int] = None

    is_reviewed: bool = False
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewer_feedback: Optional[str] = None
    explanation_score: Optional[int] = None
    bonus_xp_from_review: Optional[int] = None
    bonus_coins_from_review: Optional[int] = None

    submitted_at: datetime
    updated_at: datetime
    evaluated_at: Optional[datetime] = None


class SubmissionStatsData(BaseModel):
    """Aggregate submission counts and rewards for one user."""

    total: int
    passed: int
    failed: int
    errored: int
    pending: int
    reviewed: int
    total_xp_earned: int
    total_coins_earned: int
    average_score: int


class ReviewRequest(BaseModel):
    """Request body for reviewing a graded submission."""

    explanation_score: int = Field(
        ...,
        ge=0,
        le=100,
        description="Score for the written explanation"
    )
    bonus_xp: int = Field(default=0, ge=0, le=500)
    bonus_coins: int = Field(default=0, ge=0, le=100)
    feedback: Optional[str] = Field(default=None, max_length=1000)
    reviewer_id: Optional[str] = Field(
        default=None,
        description="Reviewing administrator's user ID"
    )


# Challenge schemas
class ChallengeData(BaseModel):
    """Challenge data for API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    problem_statement: str
    starter_code: Optional[str] = None
    difficulty: int
    base_xp_reward: int
    bonus_coins: int
    week_number: int
    year: int


class CurrentChallengesData(BaseModel):
    """Active challenges of the current week."""

    week_number: int
    year: int
    challenges: list[ChallengeData]


# User schemas
class UserProfileData(BaseModel):
    """User progression counters with tier information."""

    id: str
    display_name: str
    role: str
    xp: int
    level: int
    coins: int
    tier: str
    tier_name: str
    tier_color: str
    xp_required: int
    progress_percent: int


class GrantCoinsRequest(BaseModel):
    """Request body for an administrative coin grant."""

    amount: int = Field(..., ge=1, le=10000, description="Coins to grant")
    reason: Optional[str] = Field(default=None, max_length=500)


class GrantCoinsData(BaseModel):
    """Response data for a coin grant."""

    user_id: str
    amount: int
    balance: int


class TransactionData(BaseModel):
    """One ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: EnumValue
    amount: int
    balance: int
    description: str
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None
    created_at: datetime



class TransactionSummaryData(BaseModel):
    """Lifetime coin totals for a user."""

    total_earned: int
    total_spent: int
    by_type: dict[str, int] = Field(
        ...,
        description="Net coins per transaction type"
    )


# Leaderboard schemas
class LeaderboardEntryData(BaseModel):
    """One row of the all-time leaderboard."""

    rank: int
    id: str
    display_name: str
    level: int
    xp: int
    tier: str
    tier_name: str


class WeeklyLeaderboardEntryData(LeaderboardEntryData):
    """One row of the weekly leaderboard."""

    weekly_xp: int
    submission_count: int


class WeeklyLeaderboardData(BaseModel):
    """Weekly leaderboard for one ISO week."""

    week_number: int
    year: int
    entries: list[WeeklyLeaderboardEntryData]


# Submission history schemas
class SubmissionSummaryData(BaseModel):
    """Compact submission view used in a user's history."""

    id: str
    challenge_id: str
    challenge_title: str
    challenge_difficulty: int
    status: str
    ai_score: Optional[int] = None
    xp_earned: Optional[int] = None
    coins_earned: Optional[int] = None
    is_reviewed: bool = False
    submitted_at: datetime
    evaluated_at: Optional[datetime] = None


class SubmissionHistoryData(BaseModel):
    """One page of a user's submissions."""

    total: int
    page: int
    limit: int
    submissions: list[SubmissionSummaryData]
