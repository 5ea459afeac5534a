"""Rate limiter backend selection."""

from typing import Optional

from gatekeeper.app.admission.ports import RateLimitPort
from gatekeeper.app.core.config import Settings, settings as default_settings
from gatekeeper.app.core.logging import get_logger
from gatekeeper.app.ratelimit.memory import InMemoryRateLimitPort
from gatekeeper.app.ratelimit.redis_backend import RedisRateLimitPort

logger = get_logger(__name__)


def build_rate_limiter(settings: Optional[Settings] = None) -> Optional[RateLimitPort]:
    """Build the configured rate limiter.

    Constructing a limiter never touches the network; an unreachable Redis
    is only discovered (and tolerated) when a request is evaluated.

    Args:
        settings: Settings to read, defaults to the global instance

    Returns:
        RateLimitPort, or None when rate limiting is disabled
    """
    settings = settings or default_settings

    if not settings.rate_limit_enabled:
        logger.info("Rate limiting disabled")
        return None

    if settings.rate_limit_backend == "redis":
        logger.info("Using Redis rate limiter backend")
        return RedisRateLimitPort(
            redis_url=settings.redis_url,
            requests_per_minute=settings.rate_limit_requests_per_minute,
            burst_size=settings.rate_limit_burst_size,
            window_seconds=settings.rate_limit_window_seconds,
            socket_timeout=settings.redis_socket_timeout,
        )

    logger.debug("Using in-memory rate limiter backend")
    return InMemoryRateLimitPort(
        requests_per_minute=settings.rate_limit_requests_per_minute,
        burst_size=settings.rate_limit_burst_size,
        window_seconds=settings.rate_limit_window_seconds,
        algorithm=settings.rate_limit_algorithm,
    )
