import logging

from slowapi import Limiter
from slowapi.util import get_remote_address

from app import metrics
from app.core.config import settings

logger = logging.getLogger(__name__)


def _create_storage_uri() -> str:
    """
    Storage URI for SlowAPI/limits.

    Counters only need to be shared across processes in production; dev and
    test runs keep them in memory.
    """
    if not settings.is_production:
        logger.info("Rate limiter using in-memory storage (dev/test mode)")
        return "memory://"
    if not settings.REDIS_URL:
        logger.warning("REDIS_URL not set; rate limiter falling back to in-memory storage")
        return "memory://"
    return settings.REDIS_URL


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_create_storage_uri(),
    enabled=settings.RATE_LIMIT_ENABLED,
)

RATE_LIMITS = {
    # OAuth (before authentication, keyed by client IP)
    "oauth_login": "30/minute",
    "oauth_callback": "60/minute",
    "service_login": "30/minute",
    # Service tokens
    "token_issue": "30/minute",
    "token_revoke": "60/minute",
    "token_rotate": "30/minute",
    "token_exchange": "30/minute",
    "token_introspect": "300/minute",
}


def increment_rate_limit_exceeded():
    metrics.rate_limit_exceeded()
