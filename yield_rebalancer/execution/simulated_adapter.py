"""Simulated platform adapter.

Paper-mode adapter that accepts every move immediately and records it. The
adapter registry maps adapter type names from configuration to classes.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from yield_rebalancer.execution.base import PlatformAdapter
from yield_rebalancer.utils.exceptions import ConfigurationError, ExecutionError
from yield_rebalancer.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SimulatedMove:
    """One move recorded by the simulated adapter."""

    pool: str
    direction: str
    fraction: float
    timestamp: datetime = field(default_factory=datetime.now)


class SimulatedAdapter(PlatformAdapter):
    """Adapter that simulates deposits and withdrawals.

    Features:
    - Records every accepted move in ``moves``
    - Optional artificial latency
    - Failure injection per pool (``fail_pools``) for dry runs and tests

    Example:
        >>> adapter = SimulatedAdapter("meteora", fail_pools={"meteora"})
        >>> await adapter.decrease("meteora", 0.1)
        Traceback (most recent call last):
        ExecutionError: ...
    """

    supports_concurrent_calls = True

    def __init__(
        self,
        venue: str,
        latency_s: float = 0.0,
        fail_pools: Optional[Set[str]] = None,
    ):
        """Initialize simulated adapter.

        Args:
            venue: Venue name used in logs
            latency_s: Artificial delay per call in seconds
            fail_pools: Pools for which every call raises ExecutionError
        """
        self.venue = venue
        self.latency_s = latency_s
        self.fail_pools: Set[str] = set(fail_pools or ())
        self.moves: List[SimulatedMove] = []

    async def _move(self, pool_id: str, direction: str, fraction: float) -> bool:
        if fraction <= 0:
            raise ExecutionError(
                f"{direction} fraction must be positive, got {fraction}", pool=pool_id
            )

        if self.latency_s:
            await asyncio.sleep(self.latency_s)

        if pool_id in self.fail_pools:
            raise ExecutionError(
                f"Simulated {direction} failure on {self.venue} for {pool_id}",
                pool=pool_id,
            )

        self.moves.append(SimulatedMove(pool_id, direction, fraction))
        logger.info(
            "[%s] Simulated %s of %s by %.2f%%",
            self.venue,
            direction,
            pool_id,
            fraction * 100,
        )
        return True

    async def increase(self, pool_id: str, fraction: float) -> bool:
        return await self._move(pool_id, "increase", fraction)

    async def decrease(self, pool_id: str, fraction: float) -> bool:
        return await self._move(pool_id, "decrease", fraction)


# Adapter type name (as used in configuration) -> factory taking the venue name
ADAPTER_REGISTRY: Dict[str, Callable[[str], PlatformAdapter]] = {
    "simulated": SimulatedAdapter,
}


def register_adapter(name: str, factory: Callable[[str], PlatformAdapter]) -> None:
    """Register an adapter factory under a configuration type name."""
    if name in ADAPTER_REGISTRY:
        logger.warning("Adapter type '%s' already registered, replacing", name)
    ADAPTER_REGISTRY[name] = factory


def build_adapters(adapter_types: Dict[str, str]) -> Dict[str, PlatformAdapter]:
    """Build the pool -> adapter mapping from configuration.

    Args:
        adapter_types: {pool: adapter type name}

    Returns:
        {pool: PlatformAdapter instance}, one instance per pool

    Raises:
        ConfigurationError: If a type name is not registered
    """
    adapters: Dict[str, PlatformAdapter] = {}
    for pool_id, type_name in adapter_types.items():
        factory = ADAPTER_REGISTRY.get(type_name)
        if factory is None:
            raise ConfigurationError(
                f"Unknown adapter type '{type_name}' for pool {pool_id}. "
                f"Available: {', '.join(sorted(ADAPTER_REGISTRY))}"
            )
        adapters[pool_id] = factory(pool_id)
    return adapters
