"""
Notification scheduler.

Optional background task that runs one processing cycle every
SCHEDULER_INTERVAL_SECONDS (scheduled notifications, then due reminders)
and purges old finished jobs every CLEANUP_INTERVAL_HOURS. Started from
the FastAPI lifespan when SCHEDULER_ENABLED is true; deployments that
drive processing from cron leave it off.

Typical usage:
    # In FastAPI lifespan:
    scheduler = NotificationScheduler(services.processor, interval_seconds=60)
    scheduler.start()
    # On shutdown:
    await scheduler.stop()
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from notifications.processor import JobProcessor

logger = logging.getLogger(__name__)


class NotificationScheduler:
    """Background poll loop around a JobProcessor.

    Args:
        processor: Does the actual work each tick.
        interval_seconds: Seconds between cycles.
        cleanup_interval_hours: Hours between job cleanups.
        retention_days: Age at which finished jobs are deleted.
    """

    def __init__(
        self,
        processor: JobProcessor,
        interval_seconds: int = 60,
        cleanup_interval_hours: int = 24,
        retention_days: int = 30,
    ) -> None:
        self.processor = processor
        self.interval_seconds = interval_seconds
        self.cleanup_interval = timedelta(hours=cleanup_interval_hours)
        self.retention_days = retention_days
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_cleanup: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the scheduler as a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Notification scheduler started (interval=%ds)", self.interval_seconds)

    async def stop(self) -> None:
        """Stop the scheduler and wait for the current tick to unwind."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Notification scheduler stopped")

    async def _loop(self) -> None:
        """Main scheduler loop: one tick, then sleep."""
        while self._running:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    async def tick(self, now: Optional[datetime] = None) -> None:
        """Run one cycle, plus cleanup when it is due.

        Errors are logged and the loop keeps going; the next tick retries
        whatever is still due.
        """
        now = now or datetime.now(timezone.utc)
        try:
            counts = await self.processor.run_cycle(now=now)
            if counts["notifications"] or counts["reminders"]:
                logger.info(f"Scheduler cycle: {counts}")
        except Exception as e:
            logger.error(f"Scheduler error: {e}", exc_info=True)

        if self._last_cleanup is None or now - self._last_cleanup >= self.cleanup_interval:
            try:
                await self.processor.cleanup_old_jobs(self.retention_days, now=now)
                self._last_cleanup = now
            except Exception as e:
                logger.error(f"Job cleanup error: {e}", exc_info=True)
