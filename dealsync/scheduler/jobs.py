"""
Scheduled sync jobs.

A cycle runs once at startup and then on a fixed interval. Only one cycle
may run at a time: an overlapping tick logs and returns immediately instead
of starting a second cycle against the same tables. A failed cycle is logged
and the next tick still fires.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.settings import settings
from ..harvester.pipeline import CycleResult, run_cycle

logger = logging.getLogger(__name__)

CycleFn = Callable[..., Awaitable[CycleResult]]


class SyncJobRunner:
    """Single-flight wrapper around one sync cycle."""

    def __init__(
        self,
        cycle: Optional[CycleFn] = None,
        limit: Optional[int] = None,
        max_pages: Optional[int] = None,
    ):
        self.cycle = cycle or run_cycle
        self.limit = limit
        self.max_pages = max_pages
        self._lock = asyncio.Lock()

        # Job execution tracking (for observability)
        self.last_run: Optional[datetime] = None
        self.last_status: Optional[str] = None
        self.last_error: Optional[str] = None
        self.last_duration: Optional[float] = None
        self.last_result: Optional[CycleResult] = None
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> Optional[CycleResult]:
        """
        Run one cycle unless another is still in progress.

        Returns:
            The cycle result, or None if the tick was skipped or the cycle failed
        """
        if self._lock.locked():
            self.skipped_ticks += 1
            logger.warning("Previous sync cycle still running, skipping this tick")
            return None

        async with self._lock:
            self.last_run = datetime.now(timezone.utc)
            started = time.monotonic()
            try:
                result = await self.cycle(limit=self.limit, max_pages=self.max_pages)
            except Exception as e:
                self.last_status = "failed"
                self.last_error = f"{type(e).__name__}: {e}"
                logger.error(f"Updater cycle failed: {e}", exc_info=True)
                return None
            finally:
                self.last_duration = time.monotonic() - started

            self.last_status = "success"
            self.last_error = None
            self.last_result = result
            logger.info(
                f"Updater cycle finished. New: {result.created}, "
                f"Skipped: {result.skipped}, Failed: {result.failed}, Pages: {result.scanned_pages}"
            )
            return result


# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def setup_scheduler(
    runner: SyncJobRunner,
    interval_seconds: Optional[int] = None,
) -> AsyncIOScheduler:
    """
    Initialize and start the APScheduler with the periodic sync job.

    Configures:
    - Interval from VC_UPDATER_INTERVAL_SECONDS (default 4 hours)
    - max_instances=1 and the runner's lock so cycles never overlap
    """
    global scheduler

    interval = interval_seconds or settings.vc_updater_interval_seconds
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Collapse missed ticks into one run
            "max_instances": 1,
            "misfire_grace_time": 600,
        },
    )

    scheduler.add_job(
        runner.run,
        trigger=IntervalTrigger(seconds=interval),
        id="vc_updater",
        name=f"Deal sync (every {interval}s)",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(f"Scheduler started, sync every {interval / 3600:.1f} hours")

    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.id} - next run: {job.next_run_time}")

    return scheduler


def shutdown_scheduler():
    """Shutdown the scheduler without waiting for a running cycle."""
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown complete")
        scheduler = None
