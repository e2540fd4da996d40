"""
Configuration module using Pydantic Settings.

CRITICAL: This module uses lazy loading pattern.
No environment variables are loaded at import time.
Each service must call get_settings() explicitly and pass the
resulting object to the components it builds.
"""

from typing import Literal, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Do NOT set env_file in Config.
    Environment variables must be loaded externally by the service.
    """

    model_config = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./codequest.db",
        description="SQLAlchemy database URL"
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (Celery broker and backend)"
    )

    # Authentication
    static_token: str = Field(
        ...,
        description="Static bearer token for API authentication"
    )
    admin_token: Optional[str] = Field(
        default=None,
        description="Bearer token for admin-only routes"
    )

    # Evaluation backend (Ollama-compatible text generation service)
    evaluation_base_url: str = Field(
        default="http://localhost:11434",
        description="Base URL of the text-generation service"
    )
    evaluation_model: str = Field(
        default="llama3.2",
        description="Model name sent with every grading request"
    )
    evaluation_temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for grading requests"
    )
    evaluation_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Upper bound for a single grading round trip"
    )

    # Langfuse (optional generation tracing)
    langfuse_secret_key: Optional[str] = Field(
        default=None,
        description="Langfuse secret key"
    )
    langfuse_public_key: Optional[str] = Field(
        default=None,
        description="Langfuse public key"
    )
    langfuse_base_url: str = Field(
        default="https://cloud.langfuse.com",
        description="Langfuse base URL"
    )

    # Sentry
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking"
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment name"
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        description="Sentry traces sample rate"
    )
    sentry_profiles_sample_rate: float = Field(
        default=1.0,
        description="Sentry profiles sample rate"
    )

    # Challenge calendar
    timezone: str = Field(
        default="Asia/Manila",
        description="Timezone used for challenge weeks and the weekend window"
    )
    weekend_only_submissions: bool = Field(
        default=True,
        description="Accept submissions only on Saturday and Sunday"
    )
    bypass_weekend_check: bool = Field(
        default=False,
        description="Ignore the weekend window (development)"
    )

    # Submission admission
    max_submissions_per_window: int = Field(
        default=5,
        ge=1,
        description="Submissions allowed per user per challenge per window"
    )
    submission_window_minutes: int = Field(
        default=60,
        ge=1,
        description="Length of the rolling admission window"
    )
    require_explanation: bool = Field(
        default=True,
        description="Require a written explanation with every submission"
    )
    explanation_min_length: int = Field(default=50, ge=0)
    explanation_max_length: int = Field(default=5000, ge=1)
    auto_grade_on_submit: bool = Field(
        default=True,
        description="Enqueue grading right after intake"
    )

    # Rewards
    reward_policy: Literal["score_weighted", "flat"] = Field(
        default="score_weighted",
        description="Challenge completion reward rule"
    )
    credit_max_attempts: int = Field(
        default=2,
        ge=1,
        description="Attempts at crediting rewards before a submission errors"
    )

    # Application
    app_name: str = Field(
        default="CodeQuest API",
        description="Application name"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode flag"
    )

    @computed_field  # type: ignore[misc]
    @property
    def langfuse_enabled(self) -> bool:
        """Tracing is on only when both Langfuse keys are present."""
        return bool(self.langfuse_secret_key and self.langfuse_public_key)

    @computed_field  # type: ignore[misc]
    @property
    def grading_time_limit_seconds(self) -> int:
        """Hard limit for one grading job; older EVALUATING rows are stale."""
        return int(self.evaluation_timeout_seconds) + 120

    @computed_field  # type: ignore[misc]
    @property
    def log_level(self) -> str:
        return "DEBUG" if self.debug else "INFO"


def get_settings() -> Settings:
    """
    Factory function to create Settings instance.

    This function should be called by each service explicitly.
    DO NOT call this at module level.

    Returns:
        Settings: Configured settings instance

    Note:
        Settings() will automatically load values from environment
        variables. Required fields must be set in the environment
        before calling this function.
    """
    return Settings()  # type: ignore[call-arg]
