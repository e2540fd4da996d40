"""
Enumerations stored on submission and ledger rows.
"""

import enum


class SubmissionStatus(str, enum.Enum):
    """Grading axis of a submission."""

    PENDING = "PENDING"
    EVALUATING = "EVALUATING"
    PASSED = "PASSED"
    FAILED = "FAILED"
    ERRORED = "ERRORED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    SubmissionStatus.PASSED,
    SubmissionStatus.FAILED,
    SubmissionStatus.ERRORED,
})


class TransactionType(str, enum.Enum):
    """Kinds of coin-affecting events recorded in the ledger."""

    CHALLENGE_REWARD = "CHALLENGE_REWARD"
    LEVEL_UP_BONUS = "LEVEL_UP_BONUS"
    REVIEW_BONUS = "REVIEW_BONUS"
    ADMIN_GRANT = "ADMIN_GRANT"
    SHOP_PURCHASE = "SHOP_PURCHASE"


class UserRole(str, enum.Enum):
    STUDENT = "STUDENT"
    ADMIN = "ADMIN"
