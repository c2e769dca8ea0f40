from datetime import timedelta

import pytest

from notifications.scheduler import NotificationScheduler
from tests.conftest import NOW


class RecordingProcessor:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.cycles = []
        self.cleanups = []

    async def run_cycle(self, now=None):
        self.cycles.append(now)
        if self.fail:
            raise RuntimeError("database is locked")
        return {"notifications": 0, "reminders": 0}

    async def cleanup_old_jobs(self, retention_days=30, now=None):
        self.cleanups.append((retention_days, now))
        return 0


@pytest.mark.asyncio
async def test_tick_runs_a_cycle_and_cleans_up_once_per_interval():
    processor = RecordingProcessor()
    scheduler = NotificationScheduler(processor, cleanup_interval_hours=24, retention_days=7)

    await scheduler.tick(now=NOW)
    await scheduler.tick(now=NOW + timedelta(hours=1))
    await scheduler.tick(now=NOW + timedelta(hours=24))

    assert len(processor.cycles) == 3
    assert processor.cleanups == [(7, NOW), (7, NOW + timedelta(hours=24))]


@pytest.mark.asyncio
async def test_tick_survives_processor_errors():
    processor = RecordingProcessor(fail=True)
    scheduler = NotificationScheduler(processor)

    await scheduler.tick(now=NOW)
    await scheduler.tick(now=NOW + timedelta(minutes=1))

    assert len(processor.cycles) == 2


@pytest.mark.asyncio
async def test_start_and_stop():
    scheduler = NotificationScheduler(RecordingProcessor(), interval_seconds=3600)

    scheduler.start()
    assert scheduler.running
    await scheduler.stop()

    assert not scheduler.running
