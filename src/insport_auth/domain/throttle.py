"""Rate-limit enforcement on top of the RateLimiter port."""

import logging

from .exceptions import RateLimitExceeded
from .ports import RateLimiter

logger = logging.getLogger(__name__)


def enforce(
    limiter: RateLimiter,
    key: str,
    limit: int,
    window_seconds: int,
    message: str = "Too many requests. Please try again later.",
    error: type[RateLimitExceeded] = RateLimitExceeded,
) -> None:
    """
    Count one request against ``key`` and reject it past ``limit``.

    Raises:
        RateLimitExceeded: (or ``error``) with ``retry_after`` set to the
            seconds left in the current window
    """
    decision = limiter.hit(key, limit, window_seconds)
    if not decision.allowed:
        logger.warning("Rate limit exceeded for %s", key.split(":", 1)[0])
        raise error(message, retry_after=decision.reset_after)
