"""Session store and rate limiter adapters."""

from .memory import InMemoryRateLimiter, InMemorySessionStore
from .redis_store import RedisRateLimiter, RedisSessionStore, create_redis_client

__all__ = [
    "InMemoryRateLimiter",
    "InMemorySessionStore",
    "RedisRateLimiter",
    "RedisSessionStore",
    "create_redis_client",
]
