"""Portfolio Layer.

This layer turns yield snapshots into target allocations and ordered
rebalancing plans, and owns the allocation state.

Components:
- AllocationState: Normalized allocation over the configured pools
- TargetAllocator: Abstract interface for yield-driven allocation
- ProportionalYieldAllocator: Allocation proportional to yield
- RebalancePlan / PlanEntry: Ordered allocation moves
"""

from yield_rebalancer.portfolio.base import (
    DecisionReason,
    Direction,
    PlanEntry,
    RebalanceDecision,
    RebalancePlan,
    TargetAllocator,
    YieldSnapshot,
)
from yield_rebalancer.portfolio.state import AllocationState, normalize_allocation
from yield_rebalancer.portfolio.yield_allocator import ProportionalYieldAllocator

__all__ = [
    "AllocationState",
    "normalize_allocation",
    "TargetAllocator",
    "ProportionalYieldAllocator",
    "YieldSnapshot",
    "RebalanceDecision",
    "DecisionReason",
    "RebalancePlan",
    "PlanEntry",
    "Direction",
]
