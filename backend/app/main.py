"""FastAPI Application Entry Point."""

import hashlib
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.core.config import settings
from app.core.rate_limit import limiter
from app.services.lifecycle_coordinator import build_lifecycle_coordinator

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking
# IMPORTANT: Must be done BEFORE creating FastAPI app
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.redis import RedisIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        profiles_sample_rate=settings.SENTRY_PROFILES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            CeleryIntegration(),
        ],
        send_default_pii=False,
        release=f"lifecycle-scheduler@{os.getenv('GIT_COMMIT', 'dev')}",
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )
    logger.info(f"Sentry initialized (environment: {settings.SENTRY_ENVIRONMENT})")
else:
    logger.info("Sentry DSN not set - Error tracking disabled")

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Scheduled start/stop/resize of cloud resources, orphan cleanup and rightsizing",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Configure rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Process-wide coordinator; timers start with the application
app.state.lifecycle_coordinator = build_lifecycle_coordinator()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    max_age=settings.CORS_MAX_AGE,
)


def validate_encryption_key() -> None:
    """
    Validate ENCRYPTION_KEY at startup.

    Stored cloud credentials cannot be decrypted with a different key, so a
    missing or placeholder key stops the process.

    Raises:
        SystemExit: If ENCRYPTION_KEY is missing or a placeholder
    """
    if not settings.ENCRYPTION_KEY:
        logger.error("ENCRYPTION_KEY not set in environment!")
        raise SystemExit(1)

    placeholder_keywords = ["your-", "change-", "example", "placeholder"]
    if any(keyword in settings.ENCRYPTION_KEY.lower() for keyword in placeholder_keywords):
        logger.error("ENCRYPTION_KEY appears to be a placeholder!")
        logger.error("   python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'")
        raise SystemExit(1)

    # Key hash is logged for audit trail, not security
    key_hash = hashlib.sha256(settings.ENCRYPTION_KEY.encode()).hexdigest()
    logger.info(f"ENCRYPTION_KEY validated (hash prefix: {key_hash[:16]})")


@app.on_event("startup")
async def startup_event() -> None:
    """Validate configuration and start the lifecycle timers."""
    validate_encryption_key()

    if settings.LIFECYCLE_SCHEDULER_ENABLED:
        await app.state.lifecycle_coordinator.start()
    else:
        logger.info("Lifecycle scheduler disabled - schedules will not fire in this process")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await app.state.lifecycle_coordinator.shutdown()


@app.get("/api/v1/health", tags=["health"])
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    coordinator = app.state.lifecycle_coordinator
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": settings.APP_NAME,
            "environment": settings.APP_ENV,
            "scheduler_running": coordinator.scheduler.running,
        },
    )


# Include API v1 routers
from app.api.v1 import api_router

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
