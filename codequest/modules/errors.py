"""
Domain exceptions raised by the grading engine.

The API layer maps these onto HTTP status codes; the worker logs
them. Evaluation backend failures never leave the evaluation client.
"""

from typing import Sequence


class CodeQuestError(Exception):
    """Base class for all domain errors."""

    pass


class NotFoundError(CodeQuestError):
    """Raised when a referenced record does not exist."""

    pass


class SubmissionNotFoundError(NotFoundError):
    """Raised when a submission is not found."""

    pass


class ChallengeNotFoundError(NotFoundError):
    """Raised when a challenge is not found."""

    pass


class UserNotFoundError(NotFoundError):
    """Raised when a user is not found."""

    pass


class CodeValidationError(CodeQuestError):
    """Raised when submitted code or text fails intake validation."""

    def __init__(self, violations: Sequence[str]):
        self.violations = list(violations)
        super().__init__(". ".join(self.violations))


class ChallengeInactiveError(CodeQuestError):
    """Raised when a challenge is closed for submissions."""

    pass


class RateLimitExceededError(CodeQuestError):
    """Raised when a user exceeds the admission window quota."""

    pass


class AlreadyEvaluatedError(CodeQuestError):
    """Raised when grading is requested for a non-pending submission."""

    pass


class NotYetEvaluatedError(CodeQuestError):
    """Raised when a review targets a submission still being graded."""

    pass


class AlreadyReviewedError(CodeQuestError):
    """Raised when a submission has already been reviewed."""

    pass


class InvalidReviewError(CodeQuestError):
    """Raised when review values are outside their allowed ranges."""

    pass


class SubmissionAccessDeniedError(CodeQuestError):
    """Raised when a user reads another user's submission."""

    pass


class InsufficientBalanceError(CodeQuestError):
    """Raised when a deduction exceeds the coin balance."""

    pass


class EvaluationUnavailableError(CodeQuestError):
    """Raised inside the evaluation client when the backend fails."""

    pass


class EvaluationParseError(CodeQuestError):
    """Raised inside the evaluation client on uninterpretable output."""

    pass


class ProgressionConflictError(CodeQuestError):
    """Raised when XP could not be applied after repeated write conflicts."""

    pass
