"""
Challenge model for storing weekly coding problems.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .submission import Submission


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Challenge(Base):
    """
    Weekly challenge entity.

    Stores the problem statement, the grading instructions handed to
    the model, test cases and the reward parameters. Read-only to the
    grading engine.
    """

    __tablename__ = "challenges"
    __table_args__ = (
        CheckConstraint(
            "difficulty >= 1 AND difficulty <= 5",
            name="chk_challenges_difficulty"
        ),
    )

    id: Mapped[str] = mapped_column(
        String(50),
        primary_key=True,
        index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    problem_statement: Mapped[str] = mapped_column(Text, nullable=False)
    starter_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    evaluation_prompt: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=""
    )
    # [{"input": "...", "expected_output": "..."}]
    test_cases: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list
    )

    difficulty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    base_xp_reward: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=100
    )
    bonus_coins: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=10
    )

    week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )

    # Relationships
    submissions: Mapped[list["Submission"]] = relationship(
        "Submission",
        back_populates="challenge"
    )

    def __repr__(self) -> str:
        return (
            f"<Challenge(id={self.id}, week={self.year}-W{self.week_number}, "
            f"active={self.is_active})>"
        )
