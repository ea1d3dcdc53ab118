"""Orchestration Layer - runs rebalance ticks.

This module provides the engine that executes one fetch/decide/plan/execute
cycle and the scheduler that runs it periodically.
"""

from yield_rebalancer.orchestration.engine import RebalanceEngine, TickPhase, TickRecord
from yield_rebalancer.orchestration.scheduler import RebalanceScheduler

__all__ = [
    "RebalanceEngine",
    "RebalanceScheduler",
    "TickPhase",
    "TickRecord",
]
