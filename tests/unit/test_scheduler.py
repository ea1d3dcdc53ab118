"""Unit tests for RebalanceScheduler.

Tests the APScheduler integration with a mocked engine.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest
import pytz
from apscheduler.events import EVENT_JOB_MAX_INSTANCES

from yield_rebalancer.orchestration.scheduler import TICK_JOB_ID, RebalanceScheduler
from yield_rebalancer.utils.exceptions import ConfigurationError, TickInProgressError
from yield_rebalancer.utils.logging_enhanced import RebalanceEventType


@pytest.fixture
def engine():
    """Create a mocked RebalanceEngine."""
    mock_engine = Mock()
    mock_engine.tick = AsyncMock()
    mock_engine.wait_idle = AsyncMock()
    mock_engine.event_logger = Mock()
    return mock_engine


async def wait_for_ticks(engine, count: int = 1, timeout: float = 2.0) -> None:
    """Wait until the engine has been ticked ``count`` times."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while engine.tick.await_count < count:
        if loop.time() > deadline:
            raise AssertionError(f"engine ticked {engine.tick.await_count} times, expected {count}")
        await asyncio.sleep(0.01)


class TestRebalanceSchedulerInit:
    """Test RebalanceScheduler initialization."""

    def test_defaults(self, engine):
        """Test default interval and job settings."""
        scheduler = RebalanceScheduler(engine)

        assert scheduler.refresh_interval_ms == 3_600_000
        assert scheduler.run_at_start is True
        assert scheduler.timezone == pytz.utc
        assert scheduler.is_running() is False
        assert (scheduler.ticks_run, scheduler.ticks_failed) == (0, 0)

    def test_invalid_interval(self, engine):
        """Test a non-positive interval is rejected."""
        with pytest.raises(ConfigurationError, match="refresh_interval_ms must be > 0"):
            RebalanceScheduler(engine, {"refresh_interval_ms": 0})


class TestRunTick:
    """Test the error-containing tick wrapper."""

    @pytest.mark.asyncio
    async def test_successful_tick_counted(self, engine):
        """Test a successful tick is counted."""
        scheduler = RebalanceScheduler(engine)

        await scheduler.run_tick()

        engine.tick.assert_awaited_once()
        assert scheduler.ticks_run == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_swallowed(self, engine):
        """Test an error inside a tick does not escape."""
        engine.tick.side_effect = RuntimeError("engine exploded")
        scheduler = RebalanceScheduler(engine)

        await scheduler.run_tick()
        await scheduler.run_tick()

        assert scheduler.ticks_failed == 2
        assert scheduler.ticks_run == 0

    @pytest.mark.asyncio
    async def test_tick_in_progress_skipped(self, engine):
        """Test a rejected tick is neither run nor failed."""
        engine.tick.side_effect = TickInProgressError("busy")
        scheduler = RebalanceScheduler(engine)

        await scheduler.run_tick()

        assert (scheduler.ticks_run, scheduler.ticks_failed) == (0, 0)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, engine):
        """Test cancellation is not swallowed."""
        engine.tick.side_effect = asyncio.CancelledError()
        scheduler = RebalanceScheduler(engine)

        with pytest.raises(asyncio.CancelledError):
            await scheduler.run_tick()


class TestSchedulerLifecycle:
    """Test starting and stopping the scheduler."""

    @pytest.mark.asyncio
    async def test_start_runs_startup_tick(self, engine):
        """Test the first tick runs immediately on start."""
        scheduler = RebalanceScheduler(engine, {"refresh_interval_ms": 60_000})

        scheduler.start()
        try:
            assert scheduler.is_running() is True
            await wait_for_ticks(engine, 1)

            job = scheduler.scheduler.get_job(TICK_JOB_ID)
            assert job.trigger.interval == timedelta(seconds=60)
            engine.event_logger.log_system_event.assert_any_call(
                RebalanceEventType.SCHEDULER_STARTED, "scheduler started", interval_ms=60_000
            )
        finally:
            await scheduler.stop()

        assert scheduler.is_running() is False
        engine.wait_idle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_without_startup_tick(self, engine):
        """Test run_at_start=False schedules the first tick one interval out."""
        scheduler = RebalanceScheduler(
            engine, {"refresh_interval_ms": 60_000, "run_at_start": False}
        )

        scheduler.start()
        try:
            job = scheduler.scheduler.get_job(TICK_JOB_ID)
            assert job.next_run_time > datetime.now(pytz.utc) + timedelta(seconds=30)
            await asyncio.sleep(0.05)
            engine.tick.assert_not_awaited()
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_short_interval_keeps_ticking(self, engine):
        """Test ticks repeat on the interval even after a failing tick."""
        calls = []

        async def tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")

        engine.tick.side_effect = tick
        scheduler = RebalanceScheduler(engine, {"refresh_interval_ms": 50})

        scheduler.start()
        try:
            await wait_for_ticks(engine, 3)
        finally:
            await scheduler.stop()

        assert scheduler.ticks_failed == 1
        assert scheduler.ticks_run >= 2

    @pytest.mark.asyncio
    async def test_run_until_stop_event(self, engine):
        """Test run returns after the stop event is set."""
        scheduler = RebalanceScheduler(engine, {"refresh_interval_ms": 60_000})
        stop_event = asyncio.Event()

        task = asyncio.create_task(scheduler.run(stop_event))
        await wait_for_ticks(engine, 1)
        stop_event.set()
        await asyncio.wait_for(task, timeout=2)

        assert scheduler.is_running() is False
        engine.event_logger.log_system_event.assert_called_with(
            RebalanceEventType.SCHEDULER_STOPPED,
            "scheduler stopped",
            ticks_run=1,
            ticks_failed=0,
        )

    @pytest.mark.asyncio
    async def test_no_tick_after_stop_returns(self, engine):
        """Test stop returns only once the scheduler has shut down."""
        scheduler = RebalanceScheduler(engine, {"refresh_interval_ms": 20})

        scheduler.start()
        await wait_for_ticks(engine, 1)
        await scheduler.stop()

        assert scheduler.is_running() is False
        ticks_at_stop = engine.tick.await_count
        await asyncio.sleep(0.1)
        assert engine.tick.await_count == ticks_at_stop

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, engine):
        """Test stopping an idle scheduler is a no-op."""
        scheduler = RebalanceScheduler(engine)

        await scheduler.stop()

        engine.wait_idle.assert_not_awaited()


class TestJobEvents:
    """Test the APScheduler event listener."""

    def test_max_instances_logged(self, engine, caplog: pytest.LogCaptureFixture):
        """Test an overlapping tick is reported."""
        scheduler = RebalanceScheduler(engine)
        event = Mock(code=EVENT_JOB_MAX_INSTANCES, job_id=TICK_JOB_ID)

        with caplog.at_level("WARNING", logger="yield_rebalancer.orchestration.scheduler"):
            scheduler._on_job_event(event)

        assert "previous tick still running" in caplog.text
