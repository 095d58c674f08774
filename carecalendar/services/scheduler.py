"""
Background scheduling of reconciliation passes with APScheduler.

The task list is explicit: a daily full pass, periodic booking and
availability syncs, and a one-off pass shortly after startup. ``run_task``
runs any of them immediately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pendulum
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import SchedulerSettings
from .reconciliation import ReconciliationJob, ReconciliationReport

logger = logging.getLogger(__name__)

FULL_PASS = "full_pass"
BOOKING_SYNC = "booking_sync"
AVAILABILITY_SYNC = "availability_sync"
STARTUP_PASS = "startup_pass"


@dataclass(frozen=True)
class ScheduledTask:
    """One entry of the task list."""
    name: str
    description: str
    trigger: Any
    run: Callable[[], Awaitable[ReconciliationReport]]


class ReconciliationScheduler:
    """
    Drives the reconciliation job on a timer.

    Every job is registered with ``max_instances=1`` and ``coalesce=True``;
    overlap between different tasks is handled by the job's own lock.
    """

    def __init__(
        self,
        job: ReconciliationJob,
        settings: Optional[SchedulerSettings] = None,
        timezone: str = "Asia/Kolkata",
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        self.job = job
        self.settings = settings or SchedulerSettings()
        self.timezone = timezone
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self.is_running = False

    def tasks(self) -> List[ScheduledTask]:
        """The task list, with periods and jitter taken from the settings."""
        settings = self.settings
        jitter = settings.jitter_seconds or None
        startup_at = pendulum.now(self.timezone).add(seconds=settings.startup_delay_seconds)

        return [
            ScheduledTask(
                name=FULL_PASS,
                description=f"Full reconciliation (daily at {settings.full_pass_hour:02d}:00)",
                trigger=CronTrigger(hour=settings.full_pass_hour, minute=0, timezone=self.timezone, jitter=jitter),
                run=self._full_pass,
            ),
            ScheduledTask(
                name=BOOKING_SYNC,
                description=f"Booking sync (every {settings.booking_sync_hours}h)",
                trigger=IntervalTrigger(hours=settings.booking_sync_hours, timezone=self.timezone, jitter=jitter),
                run=self._booking_sync,
            ),
            ScheduledTask(
                name=AVAILABILITY_SYNC,
                description=f"Availability sync (every {settings.availability_sync_hours}h)",
                trigger=IntervalTrigger(hours=settings.availability_sync_hours, timezone=self.timezone, jitter=jitter),
                run=self._availability_sync,
            ),
            ScheduledTask(
                name=STARTUP_PASS,
                description=f"Startup full reconciliation (after {settings.startup_delay_seconds}s)",
                trigger=DateTrigger(run_date=startup_at, timezone=self.timezone),
                run=self._startup_pass,
            ),
        ]

    def start(self) -> None:
        """Register the task list and start the scheduler (needs a running event loop)."""
        if self.is_running:
            return

        for task in self.tasks():
            self.scheduler.add_job(
                task.run,
                trigger=task.trigger,
                id=task.name,
                name=task.description,
                misfire_grace_time=self.settings.misfire_grace_seconds,
                coalesce=True,
                max_instances=1,
                replace_existing=True,
            )

        self.scheduler.start()
        self.is_running = True
        logger.info("Reconciliation scheduler started with %s task(s)", len(self.scheduler.get_jobs()))

    def stop(self) -> None:
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Reconciliation scheduler stopped")

    async def run_task(self, name: str) -> ReconciliationReport:
        """
        Run one task of the list immediately.

        Raises:
            KeyError: If no task has that name
        """
        tasks: Dict[str, ScheduledTask] = {task.name: task for task in self.tasks()}
        if name not in tasks:
            raise KeyError(f"Unknown task {name!r}; expected one of {', '.join(sorted(tasks))}")
        return await tasks[name].run()

    def next_run_times(self) -> Dict[str, Any]:
        """Next fire time per registered job (empty before ``start``)."""
        return {job.id: job.next_run_time for job in self.scheduler.get_jobs()}

    # Coroutine functions, so the asyncio executor awaits them on the loop
    async def _full_pass(self) -> ReconciliationReport:
        return await self.job.run_full_pass(trigger=FULL_PASS)

    async def _booking_sync(self) -> ReconciliationReport:
        return await self.job.run_booking_sync(trigger=BOOKING_SYNC)

    async def _availability_sync(self) -> ReconciliationReport:
        return await self.job.run_availability_sync(trigger=AVAILABILITY_SYNC)

    async def _startup_pass(self) -> ReconciliationReport:
        return await self.job.run_full_pass(trigger=STARTUP_PASS)
