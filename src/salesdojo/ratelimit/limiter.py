"""Fixed-window rate limiter with pluggable counter stores.

The limiter itself holds no global state: the application builds one in its
lifespan (``salesdojo.main``) and keeps it on ``app.state.rate_limiter``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

KEY_PREFIX = "salesdojo:ratelimit"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime

    @property
    def retry_after_seconds(self) -> int:
        delta = (self.reset_at - datetime.now(timezone.utc)).total_seconds()
        return max(1, int(delta + 0.999))

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at.timestamp())),
        }


class RateLimitStore(Protocol):
    """Counts hits in a window. Returns ``(count, reset_at_epoch_seconds)``."""

    async def hit(self, key: str, window_seconds: int) -> tuple[int, float]: ...

    async def purge_expired(self) -> int: ...


class InMemoryRateLimitStore:
    """Process-local windows. Expired windows are evicted lazily, at most once per interval."""

    def __init__(
        self,
        cleanup_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._cleanup_interval = cleanup_interval_seconds
        self._last_cleanup = clock()

    async def hit(self, key: str, window_seconds: int) -> tuple[int, float]:
        now = self._clock()
        async with self._lock:
            if now - self._last_cleanup >= self._cleanup_interval:
                self._evict(now)
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                count = 0
                reset_at = now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
            return count, reset_at

    async def purge_expired(self) -> int:
        async with self._lock:
            return self._evict(self._clock())

    def _evict(self, now: float) -> int:
        expired = [k for k, (_, reset_at) in self._windows.items() if now >= reset_at]
        for k in expired:
            del self._windows[k]
        self._last_cleanup = now
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)

    def clear(self) -> None:
        self._windows.clear()


class RedisRateLimitStore:
    """Shared windows in Redis: SET NX EX opens the window, INCR counts, PTTL reports the reset."""

    def __init__(self, redis: Any, clock: Callable[[], float] = time.time) -> None:  # noqa: ANN401
        self._redis = redis
        self._clock = clock

    async def hit(self, key: str, window_seconds: int) -> tuple[int, float]:
        redis_key = f"{KEY_PREFIX}:{key}"
        pipe = self._redis.pipeline()
        pipe.set(redis_key, 0, nx=True, ex=window_seconds)
        pipe.incr(redis_key)
        pipe.pttl(redis_key)
        results: list[Any] = await pipe.execute()
        count = int(results[1])
        ttl_ms = int(results[2])
        if ttl_ms < 0:
            # Key lost its expiry (or vanished between commands); start a fresh window.
            await self._redis.expire(redis_key, window_seconds)
            ttl_ms = window_seconds * 1000
        return count, self._clock() + ttl_ms / 1000

    async def purge_expired(self) -> int:
        return 0


class RateLimiter:
    def __init__(self, store: RateLimitStore) -> None:
        self.store = store

    async def check(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Count one request against `key` and report whether it is within `limit`."""
        count, reset_epoch = await self.store.hit(key, window_seconds)
        allowed = count <= limit
        result = RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=datetime.fromtimestamp(reset_epoch, tz=timezone.utc),
        )
        if not allowed:
            logger.info("rate_limited key=%s count=%d limit=%d", key, count, limit)
        return result


def build_rate_limiter(backend: str, redis: Any = None, cleanup_interval_seconds: float = 60.0) -> RateLimiter:  # noqa: ANN401
    """Limiter for the configured backend ("memory" or "redis")."""
    if backend == "redis":
        if redis is None:
            raise ValueError("Redis rate limit backend needs a Redis client")
        return RateLimiter(RedisRateLimitStore(redis))
    if backend != "memory":
        raise ValueError(f"Unknown rate limit backend: {backend}")
    return RateLimiter(InMemoryRateLimitStore(cleanup_interval_seconds))
