"""Tests for the collector scheduler (app/services/scheduler.py).

Tests background job scheduling and execution:
- Scheduler lifecycle (start/stop)
- Interval job registration without overlapping runs
- Tick failures recorded, never raised
- Status reporting
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from app.exceptions import RuntimeUnavailableError
from app.services.metrics_collector import MetricsCollector
from app.services.scheduler import JOB_ID, CollectorScheduler


@pytest.fixture
def collector(fake_runtime, settings):
    return MetricsCollector(fake_runtime, settings)


@pytest.fixture
async def scheduler(collector):
    service = CollectorScheduler(collector, interval_seconds=60)
    yield service
    await service.stop()


class TestSchedulerLifecycle:
    """Test suite for starting and stopping the scheduler."""

    async def test_start_registers_interval_job(self, scheduler):
        await scheduler.start()

        assert scheduler.running
        job = scheduler.scheduler.get_job(JOB_ID)
        assert job is not None
        assert isinstance(job.trigger, IntervalTrigger)
        assert job.trigger.interval.total_seconds() == 60
        assert job.max_instances == 1
        assert job.coalesce is True

    async def test_start_twice_keeps_one_scheduler(self, scheduler):
        await scheduler.start()
        first = scheduler.scheduler

        await scheduler.start()

        assert scheduler.scheduler is first

    async def test_stop(self, scheduler):
        await scheduler.start()

        await scheduler.stop()

        assert not scheduler.running
        assert scheduler.scheduler is None

    async def test_stop_when_not_started(self, scheduler):
        await scheduler.stop()

        assert not scheduler.running


class TestRunTick:
    """Test suite for the scheduled job body."""

    async def test_successful_tick(self, scheduler, collector, fake_runtime):
        fake_runtime.add_container("abc")

        assert await scheduler.run_tick() is True

        status = scheduler.get_status()
        assert status["last_success"] is not None
        assert status["consecutive_failures"] == 0
        assert collector.snapshot().tick_count == 1

    async def test_failed_tick_does_not_raise(self, scheduler, collector, fake_runtime):
        fake_runtime.list_error = RuntimeUnavailableError("Cannot connect to the Docker daemon")

        assert await scheduler.run_tick() is False
        assert await scheduler.run_tick() is False

        assert scheduler.get_status()["consecutive_failures"] == 2
        assert "Docker daemon" in collector.snapshot().last_error

    async def test_recovers_after_failure(self, scheduler, collector, fake_runtime):
        fake_runtime.list_error = RuntimeUnavailableError("down")
        await scheduler.run_tick()

        fake_runtime.list_error = None
        assert await scheduler.run_tick() is True

        assert scheduler.get_status()["consecutive_failures"] == 0
        assert collector.snapshot().last_error is None

    async def test_unexpected_error_recorded(self):
        collector = MagicMock()
        collector.tick = AsyncMock(side_effect=KeyError("boom"))
        service = CollectorScheduler(collector, interval_seconds=5)

        assert await service.run_tick() is False

        collector.record_error.assert_called_once()


class TestStatus:
    async def test_status_before_start(self, scheduler):
        status = scheduler.get_status()

        assert status == {
            "running": False,
            "interval_seconds": 60,
            "next_run": None,
            "last_success": None,
            "consecutive_failures": 0,
        }

    async def test_status_reports_next_run(self, scheduler):
        await scheduler.start()

        status = scheduler.get_status()

        assert status["running"] is True
        assert status["next_run"] is not None
