"""
Learning Infrastructure - Scheduler
====================================

APScheduler wrapper that fires the learning sweep periodically (daily by
default) and the effectiveness recompute once a day.
"""

from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Job = Callable[[], Awaitable[object]]


class LearningScheduler:
    """
    Wrapper for APScheduler for background learning sweeps.

    Overlapping runs are prevented both here (max_instances=1) and by the
    queue service's own sweep lock, which also covers manual triggers.
    """

    def __init__(self, interval_hours: float = 24, maintenance_interval_hours: float = 24):
        self.interval_hours = interval_hours
        self.maintenance_interval_hours = maintenance_interval_hours
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, sweep_job: Job, maintenance_job: Optional[Job] = None) -> None:
        """Start the scheduler with the sweep job and an optional maintenance job."""
        if self._running:
            logger.warning("Learning scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            sweep_job,
            "interval",
            hours=self.interval_hours,
            id="learning_sweep",
            name="Learning Sweep Job",
            misfire_grace_time=300,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        if maintenance_job is not None:
            self._scheduler.add_job(
                maintenance_job,
                "interval",
                hours=self.maintenance_interval_hours,
                id="effectiveness_recompute",
                name="Effectiveness Recompute Job",
                misfire_grace_time=300,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Learning scheduler started",
            extra={
                "interval_hours": self.interval_hours,
                "maintenance": maintenance_job is not None,
            }
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Learning scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
