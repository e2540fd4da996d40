"""
Submission model for storing user challenge submissions.

Grading outputs and the review overlay live on the same row.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .enums import SubmissionStatus

if TYPE_CHECKING:
    from .challenge import Challenge
    from .user import User


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Submission(Base):
    """
    Submission entity for one user's attempt at one challenge.

    Stores the submitted code, grading status and scores, rewards
    credited on a pass, and the optional one-shot review overlay.
    """

    __tablename__ = "submissions"
    __table_args__ = (
        Index("idx_submissions_user_challenge", "user_id", "challenge_id"),
        Index("idx_submissions_submitted_at", "submitted_at"),
        Index("idx_submissions_status_updated_at", "status", "updated_at"),
    )

    id: Mapped[str] = mapped_column(
        String(50),
        primary_key=True,
        index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    challenge_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("challenges.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    code: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    explanation_language: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True
    )

    status: Mapped[SubmissionStatus] = mapped_column(
        Enum(SubmissionStatus, native_enum=False, length=20),
        nullable=False,
        default=SubmissionStatus.PENDING,
        index=True
    )

    # Grading outputs
    correctness: Mapped[Optional[int]] = mapped_column(Integer)
    code_quality: Mapped[Optional[int]] = mapped_column(Integer)
    efficiency: Mapped[Optional[int]] = mapped_column(Integer)
    style: Mapped[Optional[int]] = mapped_column(Integer)
    ai_score: Mapped[Optional[int]] = mapped_column(Integer)
    ai_feedback: Mapped[Optional[str]] = mapped_column(Text)
    ai_suggestions: Mapped[Optional[list[str]]] = mapped_column(JSON)
    test_results: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON)

    # Rewards, set only on a pass
    xp_earned: Mapped[Optional[int]] = mapped_column(Integer)
    coins_earned: Mapped[Optional[int]] = mapped_column(Integer)

    # Review overlay
    is_reviewed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(
        String(50),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )
    reviewer_feedback: Mapped[Optional[str]] = mapped_column(Text)
    explanation_score: Mapped[Optional[int]] = mapped_column(Integer)
    bonus_xp_from_review: Mapped[Optional[int]] = mapped_column(Integer)
    bonus_coins_from_review: Mapped[Optional[int]] = mapped_column(Integer)

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )
    evaluated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Relationships
    user: Mapped["User"] = relationship(
        "User",
        back_populates="submissions",
        foreign_keys=[user_id]
    )
    challenge: Mapped["Challenge"] = relationship(
        "Challenge",
        back_populates="submissions"
    )

    def __repr__(self) -> str:
        return (
            f"<Submission(id={self.id}, "
            f"status={self.status.value})>"
        )
