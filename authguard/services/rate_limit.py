"""
Rate limiting for sign-in requests per network origin.

Counts requests per key inside a fixed window that restarts on the first
request after the previous window has fully elapsed. Checking a key records
the request; there is no separate record step.

Two backends:
- InMemoryRateLimiter: single process, counters in a dict
- RedisRateLimiter: shared across workers, counters in Redis with expiry
"""

import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from authguard.core.config import Settings
from authguard.core.redis import get_redis
from authguard.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

# Key prefix for the Redis backend
REDIS_KEY_PREFIX = "ratelimit:auth:"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    current: int
    limit: int
    remaining: int
    retry_after: timedelta | None = None

    @property
    def retry_after_seconds(self) -> int | None:
        """Whole seconds to wait, rounded up so clients never retry early."""
        if self.retry_after is None:
            return None
        seconds = self.retry_after.total_seconds()
        return max(1, int(seconds) + (0 if seconds.is_integer() else 1))


class RateLimiter(Protocol):
    limit: int

    async def check_and_record(self, key: str) -> RateLimitResult: ...

    async def reset(self, key: str) -> None: ...

    async def cleanup(self) -> int: ...


@dataclass
class _Window:
    window_start: datetime
    count: int = 0


def _require_key(key: str) -> None:
    if not key:
        raise ValueError("Rate limit key must be a non-empty string")


class InMemoryRateLimiter:
    """Per-process fixed-window limiter.

    All counter mutation happens under one lock with no awaits inside, so
    concurrent checks for the same key never under-count.
    """

    def __init__(
        self,
        max_requests: int,
        window: timedelta,
        enabled: bool = True,
        clock: Clock = system_clock,
    ):
        self.limit = max_requests
        self.window = window
        self.enabled = enabled
        self.clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    async def check_and_record(self, key: str) -> RateLimitResult:
        _require_key(key)
        if not self.enabled:
            return RateLimitResult(allowed=True, current=0, limit=self.limit, remaining=self.limit)

        now = self.clock.now()
        with self._lock:
            entry = self._windows.get(key)
            if entry is None or now >= entry.window_start + self.window:
                entry = _Window(window_start=now)
                self._windows[key] = entry

            if entry.count >= self.limit:
                retry_after = entry.window_start + self.window - now
                logger.debug(
                    "Rate limit exceeded for %s: %d/%d", key, entry.count, self.limit
                )
                return RateLimitResult(
                    allowed=False,
                    current=entry.count,
                    limit=self.limit,
                    remaining=0,
                    retry_after=retry_after,
                )

            entry.count += 1
            return RateLimitResult(
                allowed=True,
                current=entry.count,
                limit=self.limit,
                remaining=self.limit - entry.count,
            )

    async def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)
        logger.debug("Rate limit reset for %s", key)

    async def cleanup(self) -> int:
        """Drop counters whose window has fully elapsed. Returns the number removed.

        Works from a snapshot and re-checks each candidate under the lock, so a
        key touched (and thereby given a fresh window) in the meantime survives.
        """
        now = self.clock.now()
        with self._lock:
            candidates = [
                key for key, entry in self._windows.items()
                if now >= entry.window_start + self.window
            ]

        removed = 0
        for key in candidates:
            with self._lock:
                entry = self._windows.get(key)
                if entry is not None and now >= entry.window_start + self.window:
                    del self._windows[key]
                    removed += 1

        if removed:
            logger.info("Rate limit cleanup removed %d stale keys, %d remain", removed, len(self._windows))
        return removed

    def __len__(self) -> int:
        return len(self._windows)


class RedisRateLimiter:
    """Fixed-window limiter on Redis, shared by every worker.

    INCR and PTTL run in one MULTI/EXEC pipeline; the expiry set on the first
    request of a window ends it, so Redis does the cleanup.
    """

    def __init__(
        self,
        max_requests: int,
        window: timedelta,
        enabled: bool = True,
        client_factory: Callable[[], Awaitable[redis.Redis]] = get_redis,
        key_prefix: str = REDIS_KEY_PREFIX,
    ):
        self.limit = max_requests
        self.window = window
        self.enabled = enabled
        self.client_factory = client_factory
        self.key_prefix = key_prefix

    @property
    def window_ms(self) -> int:
        return int(self.window.total_seconds() * 1000)

    async def check_and_record(self, key: str) -> RateLimitResult:
        _require_key(key)
        if not self.enabled:
            return RateLimitResult(allowed=True, current=0, limit=self.limit, remaining=self.limit)

        redis_key = f"{self.key_prefix}{key}"
        try:
            client = await self.client_factory()
            pipe = client.pipeline(transaction=True)
            pipe.incr(redis_key)
            pipe.pttl(redis_key)
            count, ttl_ms = await pipe.execute()

            # -1: first request of a new window, no expiry set yet
            if ttl_ms < 0:
                await client.pexpire(redis_key, self.window_ms)
                ttl_ms = self.window_ms

        except RedisError as e:
            # Fall back to allowing the request (fail-open); lockout still applies
            logger.warning("Rate limit check failed, allowing request: %s", e)
            return RateLimitResult(allowed=True, current=0, limit=self.limit, remaining=self.limit)

        if count > self.limit:
            logger.debug("Rate limit exceeded for %s: %d/%d", key, count, self.limit)
            return RateLimitResult(
                allowed=False,
                current=self.limit,
                limit=self.limit,
                remaining=0,
                retry_after=timedelta(milliseconds=ttl_ms),
            )

        return RateLimitResult(
            allowed=True,
            current=count,
            limit=self.limit,
            remaining=self.limit - count,
        )

    async def reset(self, key: str) -> None:
        client = await self.client_factory()
        await client.delete(f"{self.key_prefix}{key}")

    async def cleanup(self) -> int:
        # Keys expire with their window
        return 0


def build_rate_limiter(settings: Settings, clock: Clock = system_clock) -> RateLimiter:
    """Create the limiter selected by AUTH_RATE_LIMIT_BACKEND."""
    window = timedelta(milliseconds=settings.AUTH_RATE_LIMIT_WINDOW_MS)
    if settings.AUTH_RATE_LIMIT_BACKEND == "redis":
        return RedisRateLimiter(
            max_requests=settings.AUTH_RATE_LIMIT_MAX,
            window=window,
            enabled=settings.AUTH_RATE_LIMIT_ENABLED,
        )
    return InMemoryRateLimiter(
        max_requests=settings.AUTH_RATE_LIMIT_MAX,
        window=window,
        enabled=settings.AUTH_RATE_LIMIT_ENABLED,
        clock=clock,
    )
