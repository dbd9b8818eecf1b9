"""Tests for login attempt tracking and account lockout."""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from authguard.core.config import Settings
from authguard.models.login_attempt import FailureReason
from authguard.services.login_attempts import (
    ADMIN_RESET_ORIGIN,
    InMemoryAttemptStore,
    LoginAttemptTracker,
    build_attempt_tracker,
    normalize_email,
    redis_account_lock,
)

EMAIL = "bob@example.com"


async def _fail(tracker, times, reason=FailureReason.INVALID_PASSWORD, email=EMAIL):
    for _ in range(times):
        await tracker.record_attempt(email, succeeded=False, origin_key="10.0.0.1", failure_reason=reason)


class TestRecordAttempt:
    @pytest.mark.asyncio
    async def test_records_normalized_email(self, tracker, attempt_store):
        await tracker.record_attempt("  Bob@Example.COM ", succeeded=False, failure_reason=FailureReason.INVALID_PASSWORD)

        [record] = attempt_store.all()
        assert record.email == EMAIL
        assert record.failure_reason == "INVALID_PASSWORD"
        assert record.succeeded is False

    @pytest.mark.asyncio
    async def test_success_with_reason_rejected(self, tracker):
        with pytest.raises(ValueError):
            await tracker.record_attempt(EMAIL, succeeded=True, failure_reason=FailureReason.INVALID_PASSWORD)

    @pytest.mark.asyncio
    async def test_failure_without_reason_rejected(self, tracker):
        with pytest.raises(ValueError):
            await tracker.record_attempt(EMAIL, succeeded=False)

    @pytest.mark.asyncio
    async def test_records_origin_and_time(self, tracker, attempt_store, clock):
        await tracker.record_attempt(EMAIL, succeeded=True, origin_key="10.0.0.9")

        [record] = attempt_store.all()
        assert record.origin_key == "10.0.0.9"
        assert record.occurred_at == clock.now()
        assert record.failure_reason is None


class TestCheckLockout:
    @pytest.mark.asyncio
    async def test_no_history_is_unlocked(self, tracker):
        state = await tracker.check_lockout(EMAIL)

        assert state.is_locked is False
        assert state.failed_count == 0
        assert state.remaining_attempts == 5
        assert state.lockout_until is None

    @pytest.mark.asyncio
    async def test_below_threshold_is_unlocked(self, tracker):
        await _fail(tracker, 4)

        state = await tracker.check_lockout(EMAIL)

        assert state.is_locked is False
        assert state.failed_count == 4
        assert state.remaining_attempts == 1

    @pytest.mark.asyncio
    async def test_threshold_locks_account(self, tracker, clock):
        await _fail(tracker, 5)

        state = await tracker.check_lockout(EMAIL)

        assert state.is_locked is True
        assert state.remaining_attempts == 0
        assert state.lockout_until == clock.now() + timedelta(minutes=15)

    @pytest.mark.asyncio
    async def test_lockout_until_follows_triggering_failure(self, tracker, clock):
        start = clock.now()
        for _ in range(5):
            await _fail(tracker, 1)
            clock.advance(minutes=1)

        state = await tracker.check_lockout(EMAIL)

        # Fifth failure happened at start + 4 minutes
        assert state.lockout_until == start + timedelta(minutes=19)

    @pytest.mark.asyncio
    async def test_remaining_attempts_never_increase(self, tracker):
        seen = []
        for _ in range(7):
            await _fail(tracker, 1)
            seen.append((await tracker.check_lockout(EMAIL)).remaining_attempts)

        assert seen == [4, 3, 2, 1, 0, 0, 0]

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, tracker):
        await _fail(tracker, 4)
        await tracker.record_attempt(EMAIL, succeeded=True)
        await _fail(tracker, 1)

        state = await tracker.check_lockout(EMAIL)

        assert state.failed_count == 1
        assert state.is_locked is False

    @pytest.mark.asyncio
    async def test_lockout_expires_after_duration(self, tracker, clock):
        await _fail(tracker, 5)

        clock.advance(minutes=14, seconds=59)
        assert (await tracker.check_lockout(EMAIL)).is_locked is True

        clock.advance(seconds=1)
        state = await tracker.check_lockout(EMAIL)
        assert state.is_locked is False
        assert state.failed_count == 0

    @pytest.mark.asyncio
    async def test_failures_outside_window_do_not_count(self, tracker, clock):
        await _fail(tracker, 3)
        clock.advance(minutes=16)
        await _fail(tracker, 3)

        state = await tracker.check_lockout(EMAIL)

        assert state.failed_count == 3
        assert state.is_locked is False

    @pytest.mark.asyncio
    async def test_locked_rejections_do_not_extend_lockout(self, tracker, clock):
        await _fail(tracker, 5)
        clock.advance(minutes=10)
        await _fail(tracker, 3, reason=FailureReason.ACCOUNT_LOCKED)

        state = await tracker.check_lockout(EMAIL)
        assert state.failed_count == 5

        clock.advance(minutes=5)
        assert (await tracker.check_lockout(EMAIL)).is_locked is False

    @pytest.mark.asyncio
    async def test_accounts_are_independent(self, tracker):
        await _fail(tracker, 5)

        state = await tracker.check_lockout("carol@example.com")

        assert state.is_locked is False

    @pytest.mark.asyncio
    async def test_email_lookup_is_case_insensitive(self, tracker):
        await _fail(tracker, 5)

        assert (await tracker.check_lockout("BOB@example.com")).is_locked is True

    @pytest.mark.asyncio
    async def test_disabled_never_locks(self, attempt_store, clock):
        tracker = LoginAttemptTracker(
            store=attempt_store,
            threshold=1,
            lockout_duration=timedelta(minutes=15),
            enabled=False,
            clock=clock,
        )
        await _fail(tracker, 10)

        state = await tracker.check_lockout(EMAIL)

        assert state.is_locked is False
        # Still recorded for audit
        assert len(attempt_store.all()) == 10

    @pytest.mark.asyncio
    async def test_spread_failures_stay_locked_until_lockout_until(self, tracker, clock):
        start = clock.now()
        await _fail(tracker, 4)
        clock.advance(minutes=10)
        await _fail(tracker, 1)

        # The first four failures have left the 15 minute window by now
        clock.advance(minutes=5, seconds=1)
        state = await tracker.check_lockout(EMAIL)

        assert state.is_locked is True
        assert state.lockout_until == start + timedelta(minutes=25)
        assert state.failed_count == 1
        assert state.remaining_attempts == 0

        clock.advance(minutes=9, seconds=58)
        assert (await tracker.check_lockout(EMAIL)).is_locked is True

        clock.advance(seconds=1)
        state = await tracker.check_lockout(EMAIL)
        assert state.is_locked is False
        assert state.remaining_attempts == 5

    @pytest.mark.asyncio
    async def test_failures_further_apart_than_duration_never_lock(self, tracker, clock):
        for _ in range(6):
            await _fail(tracker, 1)
            clock.advance(minutes=15)

        state = await tracker.check_lockout(EMAIL)

        assert state.is_locked is False

    @pytest.mark.asyncio
    async def test_success_after_lockout_clears_it(self, tracker, clock):
        await _fail(tracker, 5)
        await tracker.record_attempt(EMAIL, succeeded=True)

        state = await tracker.check_lockout(EMAIL)

        assert state.is_locked is False
        assert state.lockout_until is None


class TestResetAttempts:
    @pytest.mark.asyncio
    async def test_reset_unlocks_account(self, tracker):
        await _fail(tracker, 5)

        await tracker.reset_attempts("Bob@Example.com")

        state = await tracker.check_lockout(EMAIL)
        assert state.is_locked is False
        assert state.failed_count == 0
        assert state.remaining_attempts == 5

    @pytest.mark.asyncio
    async def test_reset_keeps_history_for_audit(self, tracker, attempt_store):
        await _fail(tracker, 5)
        await _fail(tracker, 1, email="carol@example.com")

        await tracker.reset_attempts(EMAIL)

        records = [r for r in attempt_store.all() if r.email == EMAIL]
        assert [r.succeeded for r in records] == [False] * 5 + [True]
        assert records[-1].origin_key == ADMIN_RESET_ORIGIN
        assert (await tracker.check_lockout("carol@example.com")).failed_count == 1

    @pytest.mark.asyncio
    async def test_reset_is_idempotent(self, tracker):
        await tracker.reset_attempts(EMAIL)
        await tracker.reset_attempts(EMAIL)

        state = await tracker.check_lockout(EMAIL)
        assert state.failed_count == 0
        assert state.is_locked is False

    @pytest.mark.asyncio
    async def test_failures_after_reset_count_again(self, tracker):
        await _fail(tracker, 5)
        await tracker.reset_attempts(EMAIL)
        await _fail(tracker, 2)

        assert (await tracker.check_lockout(EMAIL)).failed_count == 2


class TestGuard:
    @pytest.mark.asyncio
    async def test_serializes_same_account(self, tracker):
        order = []
        entered = asyncio.Event()
        release = asyncio.Event()

        async def first():
            async with tracker.guard(EMAIL):
                order.append("first-in")
                entered.set()
                await release.wait()
                order.append("first-out")

        async def second():
            await entered.wait()
            async with tracker.guard("BOB@example.com"):
                order.append("second-in")

        task_first = asyncio.create_task(first())
        task_second = asyncio.create_task(second())
        await entered.wait()
        await asyncio.sleep(0)
        assert order == ["first-in"]

        release.set()
        await asyncio.gather(task_first, task_second)

        assert order == ["first-in", "first-out", "second-in"]

    @pytest.mark.asyncio
    async def test_other_accounts_not_blocked(self, tracker):
        async with tracker.guard(EMAIL):
            async with asyncio.timeout(1):
                async with tracker.guard("carol@example.com"):
                    pass

    @pytest.mark.asyncio
    async def test_uses_lock_factory(self, attempt_store, clock):
        acquired = []

        @asynccontextmanager
        async def fake_lock(email):
            acquired.append(email)
            yield

        tracker = LoginAttemptTracker(
            store=attempt_store,
            threshold=5,
            lockout_duration=timedelta(minutes=15),
            clock=clock,
            lock_factory=fake_lock,
        )

        async with tracker.guard(" Bob@Example.com"):
            pass

        assert acquired == [EMAIL]


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_parallel_records_are_all_kept(self, tracker, attempt_store):
        await asyncio.gather(*(_fail(tracker, 1) for _ in range(50)))

        assert len(attempt_store.all()) == 50
        state = await tracker.check_lockout(EMAIL)
        assert state.failed_count == 50
        assert state.is_locked is True

    @pytest.mark.asyncio
    async def test_guarded_check_then_record_stops_at_threshold(self, tracker):
        admitted = 0

        async def attempt():
            nonlocal admitted
            async with tracker.guard(EMAIL):
                if (await tracker.check_lockout(EMAIL)).is_locked:
                    return
                admitted += 1
                await asyncio.sleep(0)
                await _fail(tracker, 1)

        await asyncio.gather(*(attempt() for _ in range(20)))

        assert admitted == 5

    @pytest.mark.asyncio
    async def test_cleanup_alongside_writers_keeps_new_records(self, tracker, attempt_store, clock):
        await _fail(tracker, 10, email="old@example.com")
        clock.advance(days=31)

        results = await asyncio.gather(
            tracker.cleanup(retention_days=30),
            *(_fail(tracker, 1) for _ in range(10)),
        )

        assert results[0] == 10
        assert [r.email for r in attempt_store.all()] == [EMAIL] * 10


class TestCleanup:
    @pytest.mark.asyncio
    async def test_removes_attempts_past_retention(self, tracker, attempt_store, clock):
        await _fail(tracker, 2)
        clock.advance(days=2)
        await _fail(tracker, 1)

        removed = await tracker.cleanup(retention_days=1)

        assert removed == 2
        assert len(attempt_store.all()) == 1

    @pytest.mark.asyncio
    async def test_keeps_attempts_inside_lockout_window(self, attempt_store, clock):
        tracker = LoginAttemptTracker(
            store=attempt_store,
            threshold=5,
            lockout_duration=timedelta(days=2),
            clock=clock,
        )
        await _fail(tracker, 5)
        clock.advance(days=1, hours=12)

        removed = await tracker.cleanup(retention_days=1)

        assert removed == 0
        assert (await tracker.check_lockout(EMAIL)).is_locked is True

    @pytest.mark.asyncio
    async def test_keeps_failures_that_triggered_current_lockout(self, attempt_store, clock):
        tracker = LoginAttemptTracker(
            store=attempt_store,
            threshold=5,
            lockout_duration=timedelta(days=1),
            clock=clock,
        )
        await _fail(tracker, 4)
        clock.advance(hours=20)
        await _fail(tracker, 1)
        clock.advance(hours=16)

        removed = await tracker.cleanup(retention_days=1)

        assert removed == 0
        state = await tracker.check_lockout(EMAIL)
        assert state.is_locked is True
        assert state.lockout_until == clock.now() + timedelta(hours=8)

    @pytest.mark.asyncio
    async def test_nothing_to_remove(self, tracker):
        assert await tracker.cleanup(retention_days=30) == 0


def test_normalize_email():
    assert normalize_email("  Bob@Example.COM ") == EMAIL
    assert normalize_email(None) == ""


def test_build_attempt_tracker_uses_settings(clock):
    settings = Settings(
        _env_file=None,
        AUTH_LOCKOUT_THRESHOLD=3,
        AUTH_LOCKOUT_DURATION_MS=120_000,
        AUTH_LOCKOUT_ENABLED=False,
    )

    tracker = build_attempt_tracker(settings, InMemoryAttemptStore(), clock)

    assert tracker.threshold == 3
    assert tracker.lockout_duration == timedelta(minutes=2)
    assert tracker.enabled is False
    assert tracker.lock_factory is None


def test_build_attempt_tracker_redis_backend_locks_across_workers(clock):
    settings = Settings(_env_file=None, AUTH_RATE_LIMIT_BACKEND="redis")

    tracker = build_attempt_tracker(settings, InMemoryAttemptStore(), clock)

    assert tracker.lock_factory is redis_account_lock
