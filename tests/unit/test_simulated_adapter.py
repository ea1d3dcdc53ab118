"""Unit tests for the simulated platform adapter and adapter registry."""

import pytest

from yield_rebalancer.execution.base import EntryStatus, ExecutionOutcome, PlatformAdapter
from yield_rebalancer.execution.simulated_adapter import (
    ADAPTER_REGISTRY,
    SimulatedAdapter,
    build_adapters,
    register_adapter,
)
from yield_rebalancer.portfolio.base import Direction, PlanEntry
from yield_rebalancer.utils.exceptions import ConfigurationError, ExecutionError


class TestSimulatedAdapter:
    """Test cases for SimulatedAdapter."""

    @pytest.mark.asyncio
    async def test_increase_and_decrease_recorded(self) -> None:
        """Test accepted moves are confirmed and recorded."""
        adapter = SimulatedAdapter("orca")

        assert await adapter.decrease("orca", 0.1) is True
        assert await adapter.increase("orca", 0.05) is True

        assert [(m.direction, m.fraction) for m in adapter.moves] == [
            ("decrease", 0.1),
            ("increase", 0.05),
        ]

    @pytest.mark.asyncio
    async def test_fail_pools(self) -> None:
        """Test failure injection raises ExecutionError."""
        adapter = SimulatedAdapter("meteora", fail_pools={"meteora"})

        with pytest.raises(ExecutionError, match="Simulated increase failure") as exc_info:
            await adapter.increase("meteora", 0.1)

        assert exc_info.value.pool == "meteora"
        assert adapter.moves == []

    @pytest.mark.asyncio
    async def test_non_positive_fraction_rejected(self) -> None:
        """Test zero-size moves are rejected."""
        adapter = SimulatedAdapter("orca")

        with pytest.raises(ExecutionError, match="must be positive"):
            await adapter.increase("orca", 0.0)

    def test_supports_concurrent_calls(self) -> None:
        """Test simulated adapters allow concurrent calls."""
        assert SimulatedAdapter.supports_concurrent_calls is True
        assert PlatformAdapter.supports_concurrent_calls is False


class TestAdapterRegistry:
    """Test cases for building adapters from configuration."""

    def test_build_adapters(self) -> None:
        """Test one adapter instance per pool."""
        adapters = build_adapters({"orca": "simulated", "raydium": "simulated"})

        assert set(adapters) == {"orca", "raydium"}
        assert adapters["orca"] is not adapters["raydium"]
        assert adapters["orca"].venue == "orca"

    def test_unknown_adapter_type(self) -> None:
        """Test an unregistered type raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Unknown adapter type 'dex'"):
            build_adapters({"orca": "dex"})

    def test_register_adapter(self) -> None:
        """Test custom adapter factories can be registered."""
        register_adapter("slow", lambda venue: SimulatedAdapter(venue, latency_s=0.01))
        try:
            adapters = build_adapters({"orca": "slow"})
            assert adapters["orca"].latency_s == 0.01
        finally:
            ADAPTER_REGISTRY.pop("slow")


class TestExecutionOutcome:
    """Test cases for ExecutionOutcome."""

    def test_to_dict(self) -> None:
        """Test the outcome flattens its entry."""
        outcome = ExecutionOutcome(
            entry=PlanEntry("orca", Direction.INCREASE, 0.1),
            status=EntryStatus.TIMED_OUT,
            error="timed out after 1.0s",
        )

        result = outcome.to_dict()

        assert result["pool"] == "orca"
        assert result["direction"] == "increase"
        assert result["status"] == "timed_out"
        assert result["duration_ms"] is None
        assert outcome.succeeded is False
