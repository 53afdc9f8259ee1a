from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import pytz
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


def build_scheduler() -> AsyncIOScheduler:
    # strictly UTC; wall-clock zones only matter for operator input
    return AsyncIOScheduler(
        timezone=pytz.utc,
        job_defaults={"misfire_grace_time": 3600, "coalesce": True},
    )


async def _run_guarded(job_id: str, func: Callable[..., Awaitable[Any]], *args: Any) -> None:
    try:
        await func(*args)
    except Exception as e:
        logger.exception("Scheduled job %s failed: %s", job_id, e)


@dataclass
class ScheduledTask:
    job_id: str
    run_at: Optional[datetime]
    _scheduler: AsyncIOScheduler

    def cancel(self) -> bool:
        try:
            self._scheduler.remove_job(self.job_id)
        except JobLookupError:
            return False
        return True

    @property
    def pending(self) -> bool:
        return self._scheduler.get_job(self.job_id) is not None


class DrawScheduler:
    """Deferred, in-memory jobs on the asyncio loop.

    Nothing is persisted: jobs die with the process, and ``shutdown`` does
    not wait for them.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None) -> None:
        self._scheduler = scheduler or build_scheduler()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def run_at(self, job_id: str, when: datetime, func: Callable[..., Awaitable[Any]], *args: Any) -> ScheduledTask:
        """Run ``func(*args)`` at ``when``; a time in the past means now."""
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        now = datetime.now(timezone.utc)
        run_date = max(when, now)
        self._scheduler.add_job(
            _run_guarded,
            DateTrigger(run_date=run_date, timezone=pytz.utc),
            args=[job_id, func, *args],
            id=job_id,
            replace_existing=True,
            misfire_grace_time=3600,
            coalesce=True,
        )
        logger.info("Scheduled %s at %s (UTC)", job_id, run_date.isoformat())
        return ScheduledTask(job_id=job_id, run_at=run_date, _scheduler=self._scheduler)

    def every(self, job_id: str, seconds: float, func: Callable[..., Any]) -> ScheduledTask:
        job = self._scheduler.add_job(
            func,
            IntervalTrigger(seconds=seconds, timezone=pytz.utc),
            id=job_id,
            replace_existing=True,
        )
        # pending jobs get next_run_time only once the scheduler starts
        return ScheduledTask(job_id=job_id, run_at=getattr(job, "next_run_time", None), _scheduler=self._scheduler)
