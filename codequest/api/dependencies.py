"""
FastAPI dependency injection functions.
"""

from typing import Generator, Optional

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis import Redis
from sqlalchemy.orm import Session, sessionmaker

from common.config import Settings
from modules.challenges_service import is_weekend
from modules.evaluation_client import EvaluationClient
from modules.submission_lifecycle import GradingQueue, SubmissionLifecycle

security = HTTPBearer()

WEEKEND_ONLY_MESSAGE = (
    "Challenges are only available on Saturday and Sunday. "
    "Please come back during the weekend!"
)


def get_settings(request: Request) -> Settings:
    """
    Get application settings from request state.

    Args:
        request: FastAPI request object

    Returns:
        Settings: Application settings instance
    """
    return request.app.state.settings


def get_session_factory(request: Request) -> sessionmaker[Session]:
    """
    Get database session factory from request state.

    Args:
        request: FastAPI request object

    Returns:
        sessionmaker: Session factory
    """
    return request.app.state.session_factory


def get_db(
    session_factory: sessionmaker[Session] = Depends(
        get_session_factory
    )
) -> Generator[Session, None, None]:
    """
    Provide database session for request handlers.

    Args:
        session_factory: SQLAlchemy session factory

    Yields:
        Session: Database session
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def get_redis(request: Request) -> Redis:
    """
    Get Redis client from request state.

    Args:
        request: FastAPI request object

    Returns:
        Redis: Redis client instance
    """
    return request.app.state.redis_client


def get_grading_queue(request: Request) -> Optional[GradingQueue]:
    return request.app.state.grading_queue


def get_evaluation_client(request: Request) -> EvaluationClient:
    return request.app.state.evaluation_client


def get_lifecycle(
    settings: Settings = Depends(get_settings),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    evaluator: EvaluationClient = Depends(get_evaluation_client),
    queue: Optional[GradingQueue] = Depends(get_grading_queue)
) -> SubmissionLifecycle:
    """
    Build the submission lifecycle for one request.

    Returns:
        SubmissionLifecycle: Lifecycle bound to the app's resources
    """
    return SubmissionLifecycle(
        settings,
        session_factory,
        evaluator,
        queue=queue
    )


def verify_token(
    credentials: HTTPAuthorizationCredentials = Security(security),
    settings: Settings = Depends(get_settings)
) -> str:
    """
    Verify static bearer token authentication.

    Admin tokens are accepted wherever the static token is.

    Args:
        credentials: HTTP authorization credentials
        settings: Application settings

    Returns:
        str: Verified token

    Raises:
        HTTPException: If token is invalid
    """
    token = credentials.credentials

    if token != settings.static_token and (
        not settings.admin_token or token != settings.admin_token
    ):
        raise HTTPException(
            status_code=401,
            detail="Invalid authentication token"
        )

    return token


def verify_admin_token(
    credentials: HTTPAuthorizationCredentials = Security(security),
    settings: Settings = Depends(get_settings)
) -> str:
    """
    Verify the admin bearer token.

    Raises:
        HTTPException: 401 for an unknown token, 403 for a valid
            non-admin token or when no admin token is configured
    """
    token = credentials.credentials

    if settings.admin_token and token == settings.admin_token:
        return token

    if token == settings.static_token:
        raise HTTPException(
            status_code=403,
            detail="Administrator access required"
        )

    raise HTTPException(
        status_code=401,
        detail="Invalid authentication token"
    )


def require_submission_window(
    settings: Settings = Depends(get_settings)
) -> None:
    """
    Reject intake outside the weekend window.

    Raises:
        HTTPException: 403 on weekdays when weekend-only mode is on
    """
    if not settings.weekend_only_submissions or settings.bypass_weekend_check:
        return

    if not is_weekend(settings.timezone):
        raise HTTPException(status_code=403, detail=WEEKEND_ONLY_MESSAGE)
