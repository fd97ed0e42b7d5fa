"""Application Configuration using Pydantic Settings."""

import os
from pathlib import Path
from typing import List
from urllib.parse import urlparse

from pydantic import RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_env_file() -> str:
    """
    Determine which .env file to load based on APP_ENV.

    Returns:
        Path to the .env file to load
    """
    app_env = os.getenv("APP_ENV", "development")
    base_dir = Path(__file__).parent.parent.parent  # backend/

    if app_env == "test":
        env_file = base_dir / ".env.test"
        if env_file.exists():
            return str(env_file)

    if app_env == "production":
        env_file = base_dir / ".env.production"
        if env_file.exists():
            return str(env_file)

    return str(base_dir / ".env")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Lifecycle Scheduler"
    APP_ENV: str = "development"
    DEBUG: bool = True
    API_V1_PREFIX: str = "/api/v1"

    # Security
    ENCRYPTION_KEY: str  # Fernet key for stored cloud credentials
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"

    # Database
    # Note: Using str instead of PostgresDsn to support SQLite for testing
    DATABASE_URL: str

    # Redis
    REDIS_URL: RedisDsn

    # Celery
    CELERY_BROKER_URL: RedisDsn
    CELERY_RESULT_BACKEND: RedisDsn

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_MAX_AGE: int = 600  # Preflight cache duration in seconds

    # AWS
    AWS_DEFAULT_REGION: str = "us-east-1"
    AWS_CONNECT_TIMEOUT: int = 60
    AWS_READ_TIMEOUT: int = 60
    AWS_MAX_ATTEMPTS: int = 3  # botocore retries, below our own retry policy

    # Lifecycle scheduler
    LIFECYCLE_SCHEDULER_ENABLED: bool = True  # Start in-process timers with the web app
    ORPHAN_DETECTION_CRON: str = "0 2 * * *"  # Daily at 2:00 UTC
    RIGHTSIZING_ANALYSIS_CRON: str = "0 */6 * * *"  # Every 6 hours
    SCHEDULE_RECONCILE_INTERVAL_SECONDS: int = 60
    SCHEDULER_MISFIRE_GRACE_SECONDS: int = 300

    # Action execution
    ACTION_MAX_ATTEMPTS: int = 3  # Only ProviderError outcomes are retried
    ACTION_RETRY_BASE_DELAY_SECONDS: float = 2.0
    RESIZE_WAIT_TIMEOUT_SECONDS: int = 600
    RESIZE_POLL_INTERVAL_SECONDS: int = 15

    # Orphan detection
    STOPPED_INSTANCE_THRESHOLD_DAYS: int = 7

    # Rightsizing
    RIGHTSIZING_CPU_THRESHOLD: float = 30.0  # Average CPU % below which we downsize
    RIGHTSIZING_LOOKBACK_DAYS: int = 14

    # Error Tracking (Sentry)
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1
    SENTRY_PROFILES_SAMPLE_RATE: float = 0.1

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_ORPHAN_DETECTION: str = "10/minute"  # Live provider scans (resource-intensive)
    RATE_LIMIT_AUTOMATION: str = "5/minute"  # Manual sweep triggers
    RATE_LIMIT_API_DEFAULT: str = "100/minute"

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v: str | List[str]) -> List[str]:
        """Parse allowed origins from string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("ALLOWED_ORIGINS", mode="after")
    @classmethod
    def validate_cors_origins(cls, origins: List[str], info) -> List[str]:
        """
        Validate CORS origins.

        Rejects wildcards, origins without scheme or host, and plain HTTP
        origins in production (localhost excepted).
        """
        if not origins:
            raise ValueError("ALLOWED_ORIGINS cannot be empty. At least one origin must be specified.")

        is_production = info.data.get("APP_ENV", "development") == "production"
        validated_origins = []

        for origin in origins:
            origin = origin.strip()
            if not origin:
                raise ValueError("CORS origin cannot be empty or whitespace-only")
            if "*" in origin:
                raise ValueError(f"CORS origin '{origin}' contains wildcard '*'.")

            parsed = urlparse(origin)
            if not parsed.scheme or not parsed.netloc:
                raise ValueError(
                    f"CORS origin '{origin}' must look like scheme://host[:port]"
                )

            if is_production and parsed.scheme != "https":
                if not parsed.netloc.startswith(("localhost", "127.0.0.1")):
                    raise ValueError(f"CORS origin '{origin}' must use HTTPS in production.")

            validated_origins.append(origin)

        return validated_origins

    @field_validator("ORPHAN_DETECTION_CRON", "RIGHTSIZING_ANALYSIS_CRON")
    @classmethod
    def validate_sweep_cron(cls, v: str) -> str:
        """Sweep cadences must be five-field crontab expressions."""
        if len(v.split()) != 5:
            raise ValueError(f"'{v}' is not a five-field cron expression")
        return v


# Create global settings instance
settings = Settings()  # type: ignore
