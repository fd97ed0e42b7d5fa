"""Rate limiting configuration using SlowAPI and Redis."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings


def get_owner_identifier(request: Request) -> str:
    """
    Get rate limit identifier from request.

    Priority order:
    1. Owner ID from the bearer token (set by the auth dependency)
    2. IP address (for non-authenticated requests)

    Args:
        request: FastAPI request object

    Returns:
        Unique identifier string for rate limiting
    """
    owner_id = getattr(request.state, "owner_id", None)
    if owner_id:
        return f"owner:{owner_id}"

    return f"ip:{get_remote_address(request)}"


# Initialize SlowAPI limiter with Redis backend
limiter = Limiter(
    key_func=get_owner_identifier,
    storage_uri=str(settings.REDIS_URL),
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_API_DEFAULT],
    headers_enabled=True,  # Add X-RateLimit-* headers to responses
)


# Orphan detection scans every region of an account
orphan_detection_limit = limiter.limit(settings.RATE_LIMIT_ORPHAN_DETECTION)

# Manual sweeps across all accounts
automation_limit = limiter.limit(settings.RATE_LIMIT_AUTOMATION)
