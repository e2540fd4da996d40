"""
User model holding the progression counters.

The grading engine only touches xp, level and coins; everything
else belongs to the account system.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .enums import UserRole

if TYPE_CHECKING:
    from .submission import Submission


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    Student or administrator account.

    ``xp`` is the progress inside the current level; level-ups consume
    it. ``coins`` is the spendable balance.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("coins >= 0", name="chk_users_coins"),
        CheckConstraint("level >= 1 AND level <= 60", name="chk_users_level"),
    )

    id: Mapped[str] = mapped_column(
        String(50),
        primary_key=True,
        index=True
    )
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(
        String(320),
        unique=True,
        nullable=True
    )
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False, length=20),
        nullable=False,
        default=UserRole.STUDENT
    )

    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )

    # Relationships
    submissions: Mapped[list["Submission"]] = relationship(
        "Submission",
        back_populates="user",
        foreign_keys="Submission.user_id"
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, level={self.level}, "
            f"xp={self.xp}, coins={self.coins})>"
        )
