"""
Mapping of domain errors onto HTTP responses.
"""

from fastapi import HTTPException

from modules.errors import (
    AlreadyEvaluatedError,
    AlreadyReviewedError,
    ChallengeInactiveError,
    CodeQuestError,
    CodeValidationError,
    InsufficientBalanceError,
    InvalidReviewError,
    NotFoundError,
    NotYetEvaluatedError,
    RateLimitExceededError,
    SubmissionAccessDeniedError,
)

# first match wins; subclasses before their bases
STATUS_CODES: tuple[tuple[type[CodeQuestError], int], ...] = (
    (NotFoundError, 404),
    (CodeValidationError, 400),
    (ChallengeInactiveError, 400),
    (InvalidReviewError, 400),
    (SubmissionAccessDeniedError, 403),
    (AlreadyEvaluatedError, 409),
    (AlreadyReviewedError, 409),
    (NotYetEvaluatedError, 409),
    (InsufficientBalanceError, 409),
    (RateLimitExceededError, 429),
)


def to_http_exception(error: CodeQuestError) -> HTTPException:
    """
    Convert a domain error into an HTTPException.

    Unmapped domain errors become 500 without leaking their message.
    """
    for error_type, status_code in STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail="Internal server error")
