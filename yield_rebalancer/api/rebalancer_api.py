"""Rebalancer API - wires configuration into a running rebalancer.

This module provides the composition root of the application: it turns a
``RebalancerConfig`` into the allocation state, yield source, adapters,
engine and scheduler, and exposes a small surface for scripts.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from yield_rebalancer.data.base import YieldSource
from yield_rebalancer.data.providers.http_provider import HttpYieldSource
from yield_rebalancer.data.providers.static_provider import StaticYieldSource
from yield_rebalancer.data.storage.checkpoint import AllocationCheckpoint
from yield_rebalancer.execution.base import PlatformAdapter
from yield_rebalancer.execution.simulated_adapter import build_adapters
from yield_rebalancer.monitoring.tick_history import TickHistory
from yield_rebalancer.orchestration.engine import RebalanceEngine, TickRecord
from yield_rebalancer.orchestration.scheduler import RebalanceScheduler
from yield_rebalancer.portfolio.state import AllocationState
from yield_rebalancer.utils.config import (
    RebalancerConfig,
    load_config,
    load_yield_api_credentials,
)
from yield_rebalancer.utils.exceptions import ConfigurationError
from yield_rebalancer.utils.logging import get_logger
from yield_rebalancer.utils.logging_enhanced import RebalanceLogger

logger = get_logger(__name__)


class RebalancerAPI:
    """High-level entry point for running the rebalancer.

    Example:
        >>> api = RebalancerAPI.from_file("config/default.yaml")
        >>> record = asyncio.run(api.run_once())
        >>> api.get_allocation()
        {'uniswap': 0.21, 'meteora': 0.26, 'orca': 0.24, 'raydium': 0.29}
    """

    def __init__(
        self,
        config: RebalancerConfig,
        yield_source: Optional[YieldSource] = None,
        adapters: Optional[Mapping[str, PlatformAdapter]] = None,
    ):
        """Build every component from configuration.

        Args:
            config: Validated rebalancer configuration
            yield_source: Override the configured yield source
            adapters: Override the configured adapters {pool: adapter}
        """
        self.config = config

        self.checkpoint: Optional[AllocationCheckpoint] = None
        initial = config.initial_allocation
        if config.checkpoint_enabled:
            self.checkpoint = AllocationCheckpoint(config.checkpoint_path)
            restored = self.checkpoint.load_latest(config.pool_ids)
            if restored is not None:
                logger.info("Resuming from checkpointed allocation")
                initial = restored

        self.state = AllocationState(initial)
        self.yield_source = yield_source or self._build_yield_source()
        self.adapters = dict(adapters) if adapters is not None else build_adapters(
            {pool_id: pool.adapter for pool_id, pool in config.pools.items()}
        )

        self.event_logger: Optional[RebalanceLogger] = None
        if config.log_dir:
            self.event_logger = RebalanceLogger(
                log_dir=config.log_dir, enable_console=config.enable_console
            )

        self.history = TickHistory()
        self.engine = RebalanceEngine(
            state=self.state,
            yield_source=self.yield_source,
            adapters=self.adapters,
            config={
                "rebalance_threshold": config.rebalance_threshold,
                "min_move_threshold": config.min_move_threshold,
                "call_timeout_s": config.call_timeout_s,
                "concurrent_execution": config.concurrent_execution,
            },
            default_yields=config.default_yields,
            event_logger=self.event_logger,
            history=self.history,
            checkpoint=self.checkpoint,
        )
        self.scheduler = RebalanceScheduler(
            self.engine, {"refresh_interval_ms": config.refresh_interval_ms}
        )

    @classmethod
    def from_file(cls, config_path: str | Path = None, **overrides: Any) -> "RebalancerAPI":
        """Load configuration from YAML and build the API."""
        return cls(load_config(config_path), **overrides)

    def _build_yield_source(self) -> YieldSource:
        settings = self.config.yield_source
        source_type = settings.get("type", "static")

        if source_type == "static":
            rates = settings.get("rates")
            return StaticYieldSource(dict(rates) if rates else None)

        if source_type == "http":
            credentials = load_yield_api_credentials()
            base_url = settings.get("base_url") or credentials["base_url"]
            if not base_url:
                raise ConfigurationError(
                    "HTTP yield source needs yield_source.base_url or YIELD_API_BASE_URL"
                )
            return HttpYieldSource(
                base_url=base_url,
                api_key=credentials["api_key"],
                timeout=self.config.call_timeout_s,
                apy_field=settings.get("apy_field", "apy"),
            )

        raise ConfigurationError(
            f"Unknown yield source type: {source_type}. Available: static, http"
        )

    async def run_once(self) -> TickRecord:
        """Run a single tick."""
        return await self.engine.tick()

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run scheduled ticks until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        await self.scheduler.run(stop_event)

    def get_allocation(self) -> Dict[str, float]:
        return self.state.get()

    def get_summary(self) -> Dict[str, Any]:
        """Tick history summary plus the live allocation and yields."""
        summary = self.history.get_summary()
        summary["allocation"] = self.state.get()
        summary["last_yields"] = self.engine.last_yields
        return summary

    async def close(self) -> None:
        """Release the yield source, adapters, logs and checkpoint."""
        await self.yield_source.close()
        for adapter in self.adapters.values():
            await adapter.close()
        if self.event_logger:
            self.event_logger.close()
        if self.checkpoint:
            self.checkpoint.close()
