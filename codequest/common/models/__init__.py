"""
Database models package.

Exports all SQLAlchemy models for use across the application.
"""

from .base import Base
from .challenge import Challenge
from .enums import SubmissionStatus, TransactionType, UserRole
from .submission import Submission
from .transaction import Transaction
from .user import User

__all__ = [
    "Base",
    "Challenge",
    "Submission",
    "SubmissionStatus",
    "Transaction",
    "TransactionType",
    "User",
    "UserRole",
]
