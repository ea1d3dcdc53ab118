"""Execution Layer - platform adapters for allocation moves."""

from yield_rebalancer.execution.base import EntryStatus, ExecutionOutcome, PlatformAdapter
from yield_rebalancer.execution.simulated_adapter import (
    ADAPTER_REGISTRY,
    SimulatedAdapter,
    build_adapters,
    register_adapter,
)

__all__ = [
    # Abstract interface
    "PlatformAdapter",
    # Concrete implementations
    "SimulatedAdapter",
    # Registry
    "ADAPTER_REGISTRY",
    "build_adapters",
    "register_adapter",
    # Data classes
    "ExecutionOutcome",
    "EntryStatus",
]
