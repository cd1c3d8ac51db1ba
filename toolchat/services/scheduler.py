"""Keyed one-shot delayed jobs on top of APScheduler."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from toolchat.logging_config import get_logger

logger = get_logger("scheduler")

JobCallback = Callable[[str], Awaitable[None]]


class DelayedJobScheduler:
    """One pending job per key; scheduling a key again replaces its pending job.

    The underlying ``AsyncIOScheduler`` is started lazily on the running event
    loop. If the loop changes (each TestClient request runs its own loop) the
    scheduler is rebuilt on the new one; jobs armed on a closed loop cannot fire.
    """

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _ensure_running(self) -> AsyncIOScheduler:
        loop = asyncio.get_running_loop()
        if self._scheduler is not None and self._loop is loop:
            return self._scheduler
        self._stop()
        scheduler = AsyncIOScheduler(event_loop=loop, timezone=timezone.utc)
        scheduler.start()
        self._scheduler = scheduler
        self._loop = loop
        logger.info("Scheduler started")
        return scheduler

    def schedule(self, key: str, delay_seconds: float, callback: JobCallback) -> None:
        """Arm ``callback(key)`` to run once after ``delay_seconds``, replacing any pending job for key."""
        scheduler = self._ensure_running()
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(delay_seconds, 0))
        scheduler.add_job(
            self._run,
            DateTrigger(run_date=run_date),
            args=[key, callback],
            id=key,
            replace_existing=True,
            misfire_grace_time=None,
        )

    def cancel(self, key: str) -> bool:
        if self._scheduler is None:
            return False
        try:
            self._scheduler.remove_job(key)
        except JobLookupError:
            return False
        return True

    def pending(self, key: str) -> bool:
        return self._scheduler is not None and self._scheduler.get_job(key) is not None

    def pending_keys(self) -> List[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    async def _run(self, key: str, callback: JobCallback) -> None:
        try:
            await callback(key)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "Scheduled job failed",
                extra={"context": {"key": key, "error": str(exc)}},
            )

    def _stop(self) -> None:
        scheduler, loop = self._scheduler, self._loop
        self._scheduler = None
        self._loop = None
        if scheduler is None or not scheduler.running:
            return
        if loop is not None and loop.is_closed():
            return
        scheduler.shutdown(wait=False)

    async def shutdown(self) -> None:
        self._stop()
        # Let cancelled job tasks unwind before the loop moves on.
        await asyncio.sleep(0)
        logger.info("Scheduler stopped")
