"""
Scheduler for out-of-band maintenance jobs.

Uses APScheduler to periodically:
- drop expired rate-limit windows
- delete login attempts past the retention period
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from authguard.services.login_attempts import LoginAttemptTracker
from authguard.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "auth_cleanup"


class SchedulerService:
    """Service for managing scheduled background jobs."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        attempts: LoginAttemptTracker,
        retention_days: int,
        interval_minutes: int,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.rate_limiter = rate_limiter
        self.attempts = attempts
        self.retention_days = retention_days
        self.interval_minutes = interval_minutes
        self.scheduler = scheduler or AsyncIOScheduler()

    def start(self) -> None:
        """Register the cleanup job and start the scheduler."""
        self.scheduler.add_job(
            self.run_cleanup,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=CLEANUP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started, cleanup every %d minutes", self.interval_minutes)

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    async def run_cleanup(self) -> dict[str, int]:
        """Run both cleanups. A failure in one does not skip the other."""
        summary = {"rate_limit_keys": 0, "login_attempts": 0}

        try:
            summary["rate_limit_keys"] = await self.rate_limiter.cleanup()
        except Exception as e:
            logger.error("Rate limit cleanup failed: %s", e)

        try:
            summary["login_attempts"] = await self.attempts.cleanup(self.retention_days)
        except Exception as e:
            logger.error("Login attempt cleanup failed: %s", e)

        return summary
