"""
Login attempt tracking and account lockout.

Every sign-in attempt is recorded per account (email). Lockout is derived
from the recorded history:

- a failure triggers a lockout when, counting it, the account has
  ``threshold`` failures within one lockout duration and no success in
  between (a success acts as a barrier that resets the count)
- the account stays locked until the triggering failure is a full lockout
  duration old, however the earlier failures age out meanwhile
- attempts rejected because the account was already locked are recorded
  for audit but do not count, so probing a locked account cannot keep it
  locked indefinitely
- an administrative reset records a success barrier; history is kept
"""

import asyncio
import logging
import threading
import weakref
from collections import deque
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authguard.core.config import Settings
from authguard.core.redis import redis_lock
from authguard.models.login_attempt import FailureReason, LoginAttempt
from authguard.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

# Failures recorded for audit only; they never advance the failure count
AUDIT_ONLY_REASONS = frozenset({FailureReason.ACCOUNT_LOCKED.value})

# origin_key of the success barrier written by an administrative reset
ADMIN_RESET_ORIGIN = "admin-reset"

# Cross-worker account lock (Redis deployments)
ACCOUNT_LOCK_PREFIX = "lock:signin:"
ACCOUNT_LOCK_TIMEOUT_SECONDS = 30
ACCOUNT_LOCK_WAIT_SECONDS = 10

AccountLockFactory = Callable[[str], AbstractAsyncContextManager[None]]


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class AttemptRecord:
    """Immutable view of one recorded attempt."""

    email: str
    succeeded: bool
    occurred_at: datetime
    origin_key: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class LockoutState:
    failed_count: int
    is_locked: bool
    remaining_attempts: int
    lockout_until: datetime | None = None


class LoginAttemptStore(Protocol):
    """Persistence for attempt history."""

    async def insert(self, record: AttemptRecord) -> None: ...

    async def list_since(self, email: str, since: datetime) -> list[AttemptRecord]:
        """Attempts for ``email`` strictly after ``since``, oldest first."""
        ...

    async def delete_older_than(self, cutoff: datetime) -> int: ...


class InMemoryAttemptStore:
    """Attempt history kept in process memory (tests, single-process setups)."""

    def __init__(self) -> None:
        self._records: list[AttemptRecord] = []
        self._lock = threading.Lock()

    async def insert(self, record: AttemptRecord) -> None:
        with self._lock:
            self._records.append(record)

    async def list_since(self, email: str, since: datetime) -> list[AttemptRecord]:
        with self._lock:
            return [r for r in self._records if r.email == email and r.occurred_at > since]

    async def delete_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            kept = [r for r in self._records if r.occurred_at >= cutoff]
            removed = len(self._records) - len(kept)
            self._records = kept
        return removed

    def all(self) -> list[AttemptRecord]:
        with self._lock:
            return list(self._records)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SqlAlchemyAttemptStore:
    """Attempt history in the ``login_attempts`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def insert(self, record: AttemptRecord) -> None:
        async with self.session_factory() as session:
            session.add(
                LoginAttempt(
                    email=record.email,
                    origin_key=record.origin_key,
                    succeeded=record.succeeded,
                    failure_reason=record.failure_reason,
                    occurred_at=record.occurred_at,
                )
            )
            await session.commit()

    async def list_since(self, email: str, since: datetime) -> list[AttemptRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(LoginAttempt)
                .where(
                    LoginAttempt.email == email,
                    LoginAttempt.occurred_at > since,
                )
                .order_by(LoginAttempt.occurred_at.asc(), LoginAttempt.id.asc())
            )
            return [
                AttemptRecord(
                    email=row.email,
                    succeeded=row.succeeded,
                    occurred_at=_as_utc(row.occurred_at),
                    origin_key=row.origin_key,
                    failure_reason=row.failure_reason,
                )
                for row in result.scalars()
            ]

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(LoginAttempt).where(LoginAttempt.occurred_at < cutoff)
            )
            await session.commit()
            return result.rowcount


class LoginAttemptTracker:
    """Records attempts and derives per-account lockout state."""

    def __init__(
        self,
        store: LoginAttemptStore,
        threshold: int,
        lockout_duration: timedelta,
        enabled: bool = True,
        clock: Clock = system_clock,
        lock_factory: AccountLockFactory | None = None,
    ):
        self.store = store
        self.threshold = threshold
        self.lockout_duration = lockout_duration
        self.enabled = enabled
        self.clock = clock
        self.lock_factory = lock_factory
        self._email_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def history_window(self) -> timedelta:
        """How far back lockout evaluation reads.

        A failure inside the current lockout window may have been triggered
        by failures up to one more lockout duration before it.
        """
        return 2 * self.lockout_duration

    def _lock_for(self, email: str) -> asyncio.Lock:
        lock = self._email_locks.get(email)
        if lock is None:
            lock = asyncio.Lock()
            self._email_locks[email] = lock
        return lock

    @asynccontextmanager
    async def guard(self, email: str) -> AsyncIterator[None]:
        """Serialize check-then-record for one account.

        The sign-in flow holds this from the lockout check until its attempt
        is recorded, so parallel requests for one account are evaluated one
        after another and cannot all slip past the threshold. The in-process
        lock always applies; ``lock_factory`` extends it across workers.
        """
        email = normalize_email(email)
        async with self._lock_for(email):
            if self.lock_factory is None:
                yield
            else:
                async with self.lock_factory(email):
                    yield

    async def record_attempt(
        self,
        email: str,
        succeeded: bool,
        origin_key: str | None = None,
        failure_reason: FailureReason | str | None = None,
    ) -> None:
        """Persist one attempt. A success resets the failure count for the email."""
        if succeeded and failure_reason is not None:
            raise ValueError("A successful attempt cannot carry a failure reason")
        if not succeeded and failure_reason is None:
            raise ValueError("A failed attempt requires a failure reason")

        if isinstance(failure_reason, FailureReason):
            failure_reason = failure_reason.value

        email = normalize_email(email)
        record = AttemptRecord(
            email=email,
            succeeded=succeeded,
            occurred_at=self.clock.now(),
            origin_key=origin_key,
            failure_reason=failure_reason,
        )

        # Shielded: once a write starts it completes even if the request is cancelled
        await asyncio.shield(self.store.insert(record))

        if succeeded:
            logger.debug("Recorded successful sign-in", extra={"email": email})
        else:
            logger.debug(
                "Recorded failed sign-in",
                extra={"email": email, "failure_reason": failure_reason},
            )

    async def check_lockout(self, email: str) -> LockoutState:
        """Compute the lockout state for an email. Never mutates anything."""
        if not self.enabled:
            return LockoutState(failed_count=0, is_locked=False, remaining_attempts=self.threshold)

        email = normalize_email(email)
        now = self.clock.now()
        records = await self.store.list_since(email, now - self.history_window)

        # Counting failures since the last barrier, within one duration of the newest
        recent: deque[datetime] = deque()
        triggered_at: datetime | None = None
        for record in records:
            if record.succeeded:
                recent.clear()
                triggered_at = None
            elif record.failure_reason not in AUDIT_ONLY_REASONS:
                recent.append(record.occurred_at)
                while recent[0] <= record.occurred_at - self.lockout_duration:
                    recent.popleft()
                if len(recent) >= self.threshold:
                    triggered_at = record.occurred_at

        while recent and recent[0] <= now - self.lockout_duration:
            recent.popleft()
        failed_count = len(recent)

        lockout_until = None
        if triggered_at is not None and triggered_at + self.lockout_duration > now:
            lockout_until = triggered_at + self.lockout_duration

        is_locked = lockout_until is not None
        return LockoutState(
            failed_count=failed_count,
            is_locked=is_locked,
            remaining_attempts=0 if is_locked else max(0, self.threshold - failed_count),
            lockout_until=lockout_until,
        )

    async def reset_attempts(self, email: str) -> None:
        """Administrative unlock.

        Records a success barrier, so earlier failures stop counting while
        the history stays available for audit. Idempotent.
        """
        email = normalize_email(email)
        async with self.guard(email):
            await self.record_attempt(email, succeeded=True, origin_key=ADMIN_RESET_ORIGIN)
        logger.info("Login attempts reset", extra={"email": email})

    async def cleanup(self, retention_days: int) -> int:
        """Delete attempts older than the retention period. Returns the number removed.

        Attempts still needed for lockout evaluation are kept regardless of
        ``retention_days``.
        """
        now = self.clock.now()
        cutoff = min(now - timedelta(days=retention_days), now - self.history_window)
        removed = await self.store.delete_older_than(cutoff)
        logger.info(
            "Login attempt cleanup removed %d records",
            removed,
            extra={"retention_days": retention_days},
        )
        return removed


def redis_account_lock(email: str) -> AbstractAsyncContextManager[None]:
    return redis_lock(
        f"{ACCOUNT_LOCK_PREFIX}{email}",
        timeout=ACCOUNT_LOCK_TIMEOUT_SECONDS,
        blocking_timeout=ACCOUNT_LOCK_WAIT_SECONDS,
    )


def build_attempt_tracker(
    settings: Settings,
    store: LoginAttemptStore,
    clock: Clock = system_clock,
) -> LoginAttemptTracker:
    """Create the tracker. The Redis backend implies several workers, so the
    account guard is then backed by a Redis lock as well."""
    lock_factory = redis_account_lock if settings.AUTH_RATE_LIMIT_BACKEND == "redis" else None
    return LoginAttemptTracker(
        store=store,
        threshold=settings.AUTH_LOCKOUT_THRESHOLD,
        lockout_duration=timedelta(milliseconds=settings.AUTH_LOCKOUT_DURATION_MS),
        enabled=settings.AUTH_LOCKOUT_ENABLED,
        clock=clock,
        lock_factory=lock_factory,
    )
