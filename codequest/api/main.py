"""
FastAPI application entrypoint for the CodeQuest API.

This module initializes the FastAPI app with all necessary
configurations, middleware, and route handlers.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable

import redis
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from common.config import get_settings
from common.db import create_engine_from_url, create_session_factory, init_db
from common.logging_conf import setup_fastapi_logging
from modules.evaluation_client import EvaluationClient
from worker.dispatch import CeleryGradingQueue

from .v1.router import api_router

logger = logging.getLogger(__name__)
http_logger = logging.getLogger("codequest.http")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events for the application.
    """
    # Startup
    logger.info("Starting CodeQuest API...")
    settings = get_settings()

    # Initialize logging with Sentry
    setup_fastapi_logging(settings)

    # Initialize database
    engine = create_engine_from_url(
        settings.database_url,
        echo=settings.debug
    )
    init_db(engine)
    session_factory = create_session_factory(engine)

    # Initialize Redis
    redis_client = redis.from_url(
        settings.redis_url,
        decode_responses=True
    )

    # Store in app state
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.redis_client = redis_client
    app.state.grading_queue = CeleryGradingQueue(settings)
    app.state.evaluation_client = EvaluationClient(settings)

    logger.info("CodeQuest API started successfully")

    yield

    # Shutdown
    logger.info("Shutting down CodeQuest API...")
    engine.dispose()
    redis_client.close()
    logger.info("CodeQuest API shutdown complete")


async def log_requests(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log method, path, client, status and duration of every request."""
    started = time.perf_counter()
    client = request.client.host if request.client else "unknown"

    try:
        response = await call_next(request)
    except Exception as e:
        duration_ms = (time.perf_counter() - started) * 1000
        http_logger.error(
            f"[{request.method}] {request.url.path} - {client} - 500 - "
            f"{duration_ms:.0f}ms - {e}"
        )
        raise

    duration_ms = (time.perf_counter() - started) * 1000
    http_logger.info(
        f"[{request.method}] {request.url.path} - {client} - "
        f"{response.status_code} - {duration_ms:.0f}ms"
    )
    return response


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="CodeQuest API",
        description="Submission evaluation and progression engine",
        version="0.1.0",
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(log_requests)

    # Include API routes
    app.include_router(api_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
