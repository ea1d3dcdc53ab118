"""Core data types and the abstract allocator contract.

This module defines the transient per-tick data (yield snapshot, decision,
plan) and the interface every target allocator implements.

Responsibilities of an allocator:
- Drift decision: is the yield spread wide enough to act on
- Target computation: turn yields into a normalized allocation
- Plan construction: turn current vs target into ordered moves
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List


class Direction(Enum):
    """Direction of an allocation move."""

    INCREASE = "increase"
    DECREASE = "decrease"


class DecisionReason(Enum):
    """Why a tick did or did not rebalance."""

    WITHIN_THRESHOLD = "within_threshold"
    DEVIATION_EXCEEDED = "deviation_exceeded"
    DEGENERATE_YIELD = "degenerate_yield"


@dataclass(frozen=True)
class YieldSnapshot:
    """Yields observed for every pool during one tick.

    Attributes:
        yields: Annualized yield per pool {pool: rate}
        stale: Pools whose yield is a fallback value, not a fresh fetch
        timestamp: When the snapshot was captured
    """

    yields: Dict[str, float]
    stale: FrozenSet[str] = frozenset()
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        for pool, rate in self.yields.items():
            if rate < 0:
                raise ValueError(f"yield for {pool} must be non-negative, got {rate}")

    @property
    def mean(self) -> float:
        if not self.yields:
            return 0.0
        return sum(self.yields.values()) / len(self.yields)

    @property
    def total(self) -> float:
        return sum(self.yields.values())

    def to_dict(self) -> dict:
        return {
            "yields": dict(self.yields),
            "stale": sorted(self.stale),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class RebalanceDecision:
    """Outcome of the drift check for one tick.

    Attributes:
        triggered: Whether a rebalance should be planned
        reason: Why
        mean_yield: Mean of the snapshot yields
        deviations: Relative deviation from the mean per pool
    """

    triggered: bool
    reason: DecisionReason
    mean_yield: float = 0.0
    deviations: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "triggered": self.triggered,
            "reason": self.reason.value,
            "mean_yield": self.mean_yield,
            "deviations": dict(self.deviations),
        }


@dataclass(frozen=True)
class PlanEntry:
    """One incremental allocation move.

    Attributes:
        pool: Pool identifier
        direction: INCREASE or DECREASE
        magnitude: Size of the move as a fraction of total capital
    """

    pool: str
    direction: Direction
    magnitude: float

    def __post_init__(self):
        if self.magnitude <= 0:
            raise ValueError(f"magnitude must be positive, got {self.magnitude}")

    @property
    def signed_delta(self) -> float:
        if self.direction == Direction.INCREASE:
            return self.magnitude
        return -self.magnitude

    def to_dict(self) -> dict:
        return {
            "pool": self.pool,
            "direction": self.direction.value,
            "magnitude": self.magnitude,
        }


@dataclass
class RebalancePlan:
    """Ordered moves that take the current allocation toward a target.

    Decreases always precede increases so capital is freed before it is
    committed elsewhere.
    """

    entries: List[PlanEntry] = field(default_factory=list)

    def __post_init__(self):
        seen_increase = False
        for entry in self.entries:
            if entry.direction == Direction.INCREASE:
                seen_increase = True
            elif seen_increase:
                raise ValueError(
                    f"decrease for {entry.pool} is ordered after an increase"
                )

    @property
    def decreases(self) -> List[PlanEntry]:
        return [e for e in self.entries if e.direction == Direction.DECREASE]

    @property
    def increases(self) -> List[PlanEntry]:
        return [e for e in self.entries if e.direction == Direction.INCREASE]

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def turnover(self) -> float:
        """Total allocation moved (sum of magnitudes)."""
        return sum(e.magnitude for e in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def to_list(self) -> List[dict]:
        return [e.to_dict() for e in self.entries]


class TargetAllocator(ABC):
    """Abstract interface for yield-driven allocators.

    Example:
        >>> allocator = ProportionalYieldAllocator(config)
        >>> snapshot = YieldSnapshot({"a": 0.04, "b": 0.10, "c": 0.04})
        >>> decision = allocator.should_rebalance(snapshot)
        >>> if decision.triggered:
        ...     target = allocator.calculate_target_weights(snapshot)
        ...     plan = allocator.generate_plan(current, target)
    """

    @abstractmethod
    def should_rebalance(self, snapshot: YieldSnapshot) -> RebalanceDecision:
        """Decide whether the yield spread warrants a rebalance.

        Args:
            snapshot: Yields for every configured pool

        Returns:
            RebalanceDecision with the trigger flag and per-pool deviations
        """
        pass

    @abstractmethod
    def calculate_target_weights(self, snapshot: YieldSnapshot) -> Dict[str, float]:
        """Convert yields to a target allocation summing to 1.0.

        Raises:
            DegenerateYieldError: If yields cannot produce a distribution
        """
        pass

    @abstractmethod
    def generate_plan(
        self,
        current: Dict[str, float],
        target: Dict[str, float],
    ) -> RebalancePlan:
        """Generate ordered moves from the current to the target allocation."""
        pass
