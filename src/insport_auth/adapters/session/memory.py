"""
In-process session store and rate limiter.

Implements the SessionStore and RateLimiter protocols with dictionaries
guarded by a lock. Not distributed: use for development, single-worker
deployments and tests. Expiry is evaluated lazily against an injectable
clock so TTL behaviour can be exercised without sleeping.
"""

import copy
import math
import threading
import time
from collections.abc import Callable
from typing import Any

from insport_auth.domain.ports import RateLimitDecision


class InMemorySessionStore:
    """
    Implements SessionStore protocol in process memory.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, copy.deepcopy(value))

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._live(key)
            return copy.deepcopy(entry[1]) if entry else None

    def delete(self, *keys: str) -> int:
        with self._lock:
            deleted = 0
            for key in keys:
                if self._live(key) is not None:
                    deleted += 1
                self._entries.pop(key, None)
            return deleted

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def ttl(self, key: str) -> int:
        """Seconds left for ``key``, or -2 when absent (Redis convention)."""
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return -2
            return math.ceil(entry[0] - self._clock())

    def _live(self, key: str) -> tuple[float, dict[str, Any]] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[0] <= self._clock():
            del self._entries[key]
            return None
        return entry


class InMemoryRateLimiter:
    """
    Implements RateLimiter protocol with per-key fixed windows.

    Increment and window check happen under one lock, so concurrent
    hits on the same key cannot both observe a fresh window.
    """

    def __init__(self, clock: Callable[[], float] = time.time, prefix: str = "rl:") -> None:
        self._clock = clock
        self._prefix = prefix
        self._counters: dict[str, dict[str, float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        rk = f"{self._prefix}{key}"
        with self._lock:
            now = self._clock()
            existing = self._counters.get(rk)
            if existing is None or existing["expires_at"] <= now:
                existing = {"count": 0, "expires_at": now + window_seconds}
                self._counters[rk] = existing
            existing["count"] += 1
            count = int(existing["count"])
            reset_after = max(0, math.ceil(existing["expires_at"] - now))

        allowed = count <= limit
        remaining = max(0, limit - count) if allowed else 0
        return RateLimitDecision(allowed=allowed, remaining=remaining, reset_after=reset_after)

    def reset(self, key: str) -> None:
        with self._lock:
            self._counters.pop(f"{self._prefix}{key}", None)
