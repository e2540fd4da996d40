"""
Health check endpoint.
"""

import logging

from fastapi import APIRouter, Depends
from redis import Redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.dependencies import get_db, get_redis
from common.schemas import APIResponse, HealthData

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/health",
    response_model=APIResponse,
    tags=["Health"]
)
def health_check(
    db: Session = Depends(get_db),
    redis_client: Redis = Depends(get_redis)
):
    """
    Health check endpoint.

    Returns:
        APIResponse: Health status of the service and its backends
    """
    try:
        db.execute(text("SELECT 1"))
        database = "up"
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        database = "down"

    try:
        # Check Redis connection
        redis_client.ping()
        broker = "up"
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        broker = "down"

    status = "healthy" if database == "up" and broker == "up" else "unhealthy"

    return APIResponse(
        success=True,
        data=HealthData(
            status=status,
            database=database,
            redis=broker
        ).model_dump()
    )
