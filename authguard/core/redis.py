"""
Shared Redis client.

Used by the Redis rate-limit backend and, in multi-worker deployments, for
the per-account sign-in lock that keeps lockout checks and attempt
recording atomic across processes.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from authguard.core.config import settings

logger = logging.getLogger(__name__)

redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Return the process-wide client, connecting lazily on first use."""
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return redis_client


async def close_redis() -> None:
    """Close the client on shutdown. Safe to call when never connected."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None


class LockTimeout(Exception):
    """Raised when a distributed lock could not be acquired in time."""


@asynccontextmanager
async def redis_lock(
    name: str,
    timeout: float,
    blocking_timeout: float,
    client_factory: Callable[[], Awaitable[redis.Redis]] = get_redis,
) -> AsyncIterator[None]:
    """
    Hold a Redis lock for the duration of the block.

    ``timeout`` bounds how long a crashed holder can keep the lock;
    ``blocking_timeout`` bounds how long to wait for it. If Redis is
    unreachable the block runs unlocked (same fallback as the scheduler
    jobs); a lock that is merely busy raises LockTimeout.
    """
    lock = None
    try:
        client = await client_factory()
        lock = client.lock(name, timeout=timeout, blocking_timeout=blocking_timeout)
        acquired = await lock.acquire()
    except RedisError as e:
        logger.warning("Redis unavailable, running without lock %s: %s", name, e)
        lock = None
        acquired = True

    if not acquired:
        raise LockTimeout(f"Timed out waiting for lock {name}")

    try:
        yield
    finally:
        if lock is not None:
            try:
                await lock.release()
            except LockError:
                # Expired before release; another holder may already own it
                logger.warning("Lock %s expired before release", name)
