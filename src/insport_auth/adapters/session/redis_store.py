"""
Redis adapters - Implement SessionStore and RateLimiter protocols.

Session entries are JSON documents written with ``SET ... EX`` so every
key expires on its own; nothing here is durable. The rate limiter runs a
single Lua script (INCR + PEXPIRE on first hit + PTTL) so increment and
window start cannot race between concurrent requests.

All calls inherit the socket timeout configured on the client; Redis
errors propagate to the caller.
"""

import json
import logging
import math
from typing import Any

import redis

from insport_auth.adapters.session.lua_scripts import LUA_FIXED_WINDOW_INCR_AND_PEXPIRE
from insport_auth.domain.ports import RateLimitDecision

logger = logging.getLogger(__name__)


def create_redis_client(url: str, socket_timeout: float) -> redis.Redis:
    """Build a client with bounded connect and command timeouts."""
    return redis.Redis.from_url(
        url,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
        decode_responses=True,
    )


class RedisSessionStore:
    """
    Implements SessionStore protocol via redis-py.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, client: redis.Redis, prefix: str = "insport:") -> None:
        self._client = client
        self._prefix = prefix

    def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        self._client.set(self._prefix + key, json.dumps(value), ex=ttl_seconds)

    def get(self, key: str) -> dict[str, Any] | None:
        raw = self._client.get(self._prefix + key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.error("Discarding undecodable session entry %s", key.split(":", 1)[0])
            self._client.delete(self._prefix + key)
            return None

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self._client.delete(*(self._prefix + key for key in keys)))

    def exists(self, key: str) -> bool:
        return bool(self._client.exists(self._prefix + key))

    def ttl(self, key: str) -> int:
        return int(self._client.ttl(self._prefix + key))


class RedisRateLimiter:
    """
    Implements RateLimiter protocol with a fixed window per key.

    The Lua script is registered once; redis-py falls back from EVALSHA
    to EVAL transparently when the script cache was flushed.
    """

    def __init__(self, client: redis.Redis, prefix: str = "insport:rl:") -> None:
        self._client = client
        self._prefix = prefix
        self._script = client.register_script(LUA_FIXED_WINDOW_INCR_AND_PEXPIRE)

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        rk = self._prefix + key
        count, ttl_ms = self._script(keys=[rk], args=[int(window_seconds * 1000)])
        count = int(count)
        ttl_ms = int(ttl_ms)

        reset_after = math.ceil(ttl_ms / 1000) if ttl_ms > 0 else window_seconds
        allowed = count <= limit
        remaining = max(0, limit - count) if allowed else 0
        return RateLimitDecision(allowed=allowed, remaining=remaining, reset_after=reset_after)

    def reset(self, key: str) -> None:
        self._client.delete(self._prefix + key)
