"""Background scheduler that drives the metrics collector."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.exceptions import DockPulseError
from app.services.metrics_collector import MetricsCollector

logger = logging.getLogger(__name__)

JOB_ID = "metrics_tick"


class CollectorScheduler:
    """Runs ``MetricsCollector.tick()`` on a fixed interval.

    The job never raises: a failed tick is logged and recorded on the
    collector, and the next interval tries again. ``max_instances=1`` with
    ``coalesce=True`` means a slow tick delays the next one instead of
    stacking overlapping runs.
    """

    def __init__(self, collector: MetricsCollector, interval_seconds: float) -> None:
        self.collector = collector
        self.interval_seconds = interval_seconds
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._last_success: Optional[datetime] = None
        self._consecutive_failures = 0

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    async def start(self) -> None:
        """Start the background scheduler."""
        if self.running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_tick,
            IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="Container Metrics Tick",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(
            f"Metrics scheduler started with interval: {self.interval_seconds}s"
        )

    async def stop(self) -> None:
        """Stop the background scheduler.

        Shuts down the APScheduler without waiting for a running tick.
        """
        if self.scheduler:
            try:
                self.scheduler.shutdown(wait=False)
                # Give event loop a chance to process shutdown
                await asyncio.sleep(0)
                logger.info("Metrics scheduler stopped")
            except RuntimeError as e:
                logger.error(f"Scheduler shutdown error: {e}")
            self.scheduler = None

    async def run_tick(self) -> bool:
        """Run one collector tick; returns whether it succeeded."""
        start_time = datetime.now()
        try:
            await self.collector.tick()
        except DockPulseError as e:
            self._consecutive_failures += 1
            self.collector.record_error(str(e))
            duration = (datetime.now() - start_time).total_seconds()
            logger.error(
                f"Metrics tick failed after {duration:.2f}s "
                f"({self._consecutive_failures} in a row): {e}"
            )
            return False
        except Exception as e:
            self._consecutive_failures += 1
            self.collector.record_error(str(e))
            logger.exception(f"Unexpected error during metrics tick: {e}")
            return False

        if self._consecutive_failures:
            logger.info(
                f"Metrics tick recovered after {self._consecutive_failures} failed attempt(s)"
            )
        self._consecutive_failures = 0
        self._last_success = datetime.now(timezone.utc)
        return True

    def get_status(self) -> dict:
        """Get scheduler status information.

        Returns:
            Dict with scheduler status details
        """
        next_run = None
        if self.running:
            job = self.scheduler.get_job(JOB_ID)
            if job and job.next_run_time:
                next_run = job.next_run_time.isoformat()
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "next_run": next_run,
            "last_success": self._last_success.isoformat() if self._last_success else None,
            "consecutive_failures": self._consecutive_failures,
        }
