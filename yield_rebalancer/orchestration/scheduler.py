"""Rebalance Scheduler - APScheduler integration for periodic ticks.

This module drives ``RebalanceEngine.tick`` on a fixed interval:
- One tick immediately at start, then every ``refresh_interval_ms``
- Ticks never overlap (``max_instances=1`` plus the engine's own lock)
- Errors inside a tick are logged and never stop the schedule
- Cooperative shutdown through an ``asyncio.Event``
"""

import asyncio
from datetime import datetime
from typing import Dict, Optional

import pytz
from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from yield_rebalancer.utils.exceptions import ConfigurationError, TickInProgressError
from yield_rebalancer.utils.logging import get_logger
from yield_rebalancer.utils.logging_enhanced import RebalanceEventType

logger = get_logger(__name__)

TICK_JOB_ID = "rebalance_tick"


class RebalanceScheduler:
    """APScheduler wrapper that runs rebalance ticks on an interval.

    Example:
        >>> scheduler = RebalanceScheduler(engine, {"refresh_interval_ms": 3_600_000})
        >>> stop = asyncio.Event()
        >>> await scheduler.run(stop)  # returns after stop.set()
    """

    def __init__(self, engine, config: Optional[Dict] = None):
        """Initialize rebalance scheduler.

        Args:
            engine: RebalanceEngine to drive
            config: Scheduler settings
                - refresh_interval_ms: Interval between ticks (default 3,600,000)
                - run_at_start: Run one tick immediately on start (default True)
                - misfire_grace_time: Seconds a late tick may still run (default 60)
        """
        config = config or {}

        self.engine = engine
        self.refresh_interval_ms = config.get("refresh_interval_ms", 3_600_000)
        self.run_at_start = config.get("run_at_start", True)
        self.misfire_grace_time = config.get("misfire_grace_time", 60)
        self.timezone = pytz.utc

        if self.refresh_interval_ms <= 0:
            raise ConfigurationError(
                f"refresh_interval_ms must be > 0, got {self.refresh_interval_ms}"
            )

        self.scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": self.misfire_grace_time,
            },
        )
        self.scheduler.add_listener(
            self._on_job_event,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED,
        )

        self.ticks_run = 0
        self.ticks_failed = 0

        logger.info(
            "RebalanceScheduler initialized (interval: %.1f min)",
            self.refresh_interval_ms / 60000,
        )

    async def run_tick(self) -> None:
        """Run one tick, containing every error so the schedule continues."""
        try:
            await self.engine.tick()
            self.ticks_run += 1
        except TickInProgressError:
            logger.warning("Previous tick still running, skipping this one")
        except asyncio.CancelledError:
            logger.warning("Scheduled tick cancelled")
            raise
        except Exception as e:
            self.ticks_failed += 1
            logger.error("Scheduled tick failed: %s", e, exc_info=True)

    def start(self) -> None:
        """Start the scheduler on the running event loop (non-blocking)."""
        if self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        job_kwargs = {}
        if self.run_at_start:
            job_kwargs["next_run_time"] = datetime.now(self.timezone)

        self.scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(
                seconds=self.refresh_interval_ms / 1000, timezone=self.timezone
            ),
            id=TICK_JOB_ID,
            name=TICK_JOB_ID,
            replace_existing=True,
            **job_kwargs,
        )
        self.scheduler.start()

        job = self.scheduler.get_job(TICK_JOB_ID)
        logger.info(
            "Scheduler started, next tick at %s",
            getattr(job, "next_run_time", "N/A"),
        )
        event_logger = getattr(self.engine, "event_logger", None)
        if event_logger:
            event_logger.log_system_event(
                RebalanceEventType.SCHEDULER_STARTED,
                "scheduler started",
                interval_ms=self.refresh_interval_ms,
            )

    async def stop(self) -> None:
        """Stop scheduling new ticks and wait for an in-flight tick to finish."""
        if not self.scheduler.running:
            logger.warning("Scheduler not running")
            return

        logger.info("Shutting down scheduler...")
        self.scheduler.shutdown(wait=False)
        # AsyncIOScheduler finishes shutting down on a later loop iteration
        while self.scheduler.running:
            await asyncio.sleep(0)
        await self.engine.wait_idle()
        logger.info("Scheduler stopped")

        event_logger = getattr(self.engine, "event_logger", None)
        if event_logger:
            event_logger.log_system_event(
                RebalanceEventType.SCHEDULER_STOPPED,
                "scheduler stopped",
                ticks_run=self.ticks_run,
                ticks_failed=self.ticks_failed,
            )

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run until ``stop_event`` is set, then shut down cleanly."""
        self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    def is_running(self) -> bool:
        return self.scheduler.running

    def _on_job_event(self, event) -> None:
        if event.code == EVENT_JOB_MAX_INSTANCES:
            logger.warning("Tick skipped: previous tick still running")
        elif event.code == EVENT_JOB_MISSED:
            logger.warning("Tick missed its run time (%s)", event.scheduled_run_time)
        elif event.code == EVENT_JOB_ERROR:
            logger.error(
                "Job '%s' raised exception: %s",
                event.job_id,
                event.exception,
                exc_info=event.exception,
            )
        else:
            logger.debug("Job '%s' executed", event.job_id)
