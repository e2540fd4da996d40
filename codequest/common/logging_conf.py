"""
Centralized logging configuration with Sentry.io integration.

This module provides logging setup for both API and Worker services.
Each entrypoint passes its Settings instance; nothing here reads the
environment.
"""

import logging
from typing import Any, Optional, Sequence

import sentry_sdk

from common.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    log_level: str = "INFO",
    service_name: str = "codequest"
) -> None:
    """
    Configure Python logging for a service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        service_name: Name of the service for logging context
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT
    )
    # httpx logs every request at INFO, which drowns the grading logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.info(f"Logging configured for {service_name} at {log_level}")


def init_sentry(
    settings: Settings,
    service_name: str,
    integrations: Optional[Sequence[Any]] = None
) -> bool:
    """
    Initialize Sentry when a DSN is configured.

    Args:
        settings: Application settings
        service_name: Name reported as the server name tag
        integrations: Framework integrations to enable

    Returns:
        bool: True if Sentry was initialized
    """
    if not settings.sentry_dsn:
        logging.info(
            f"Sentry disabled for {service_name} (no DSN provided)"
        )
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        profiles_sample_rate=settings.sentry_profiles_sample_rate,
        integrations=list(integrations or []),
        attach_stacktrace=True,
        send_default_pii=False,
    )
    sentry_sdk.set_tag("service", service_name)
    logging.info(
        f"Sentry initialized for {service_name} in "
        f"{settings.sentry_environment} environment"
    )
    return True


def setup_fastapi_logging(settings: Settings) -> None:
    """
    Configure logging for the FastAPI service with Sentry.

    Args:
        settings: Application settings
    """
    setup_logging(log_level=settings.log_level, service_name="codequest-api")

    integrations: list[Any] = []
    if settings.sentry_dsn:
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.starlette import StarletteIntegration

        integrations = [
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ]

    init_sentry(settings, "codequest-api", integrations)


def setup_celery_logging(settings: Settings) -> None:
    """
    Configure logging for the Celery worker with Sentry.

    Args:
        settings: Application settings
    """
    setup_logging(
        log_level=settings.log_level,
        service_name="codequest-worker"
    )

    integrations: list[Any] = []
    if settings.sentry_dsn:
        from sentry_sdk.integrations.celery import CeleryIntegration

        integrations = [
            CeleryIntegration(
                monitor_beat_tasks=False,
                propagate_traces=True,
            ),
        ]

    init_sentry(settings, "codequest-worker", integrations)
