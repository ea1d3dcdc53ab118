"""Proportional-to-yield allocator.

This module implements a simple, transparent allocation rule: capital is
spread across pools in proportion to their observed yield.

Algorithm:
1. Dead-band on yields: only act when some pool's yield deviates from the
   mean yield by more than ``rebalance_threshold`` (relative)
2. Target weight of each pool = yield / sum of yields
3. Dead-band on moves: skip pools whose change is at most
   ``min_move_threshold``
4. Order moves with decreases first (free capital before committing it)

The rule is linear and not risk-adjusted: no capacity limits, fees or
slippage are modelled.
"""

from typing import Dict, List, Optional

from yield_rebalancer.portfolio.base import (
    DecisionReason,
    Direction,
    PlanEntry,
    RebalanceDecision,
    RebalancePlan,
    TargetAllocator,
    YieldSnapshot,
)
from yield_rebalancer.utils.exceptions import DegenerateYieldError


class ProportionalYieldAllocator(TargetAllocator):
    """Allocator that tracks the highest-yielding pools proportionally.

    Configuration Parameters:
        rebalance_threshold: Relative deviation from the mean yield that
            triggers a rebalance (default 0.05)
        min_move_threshold: Smallest allocation change that enters the
            plan (default 0.01)

    Example:
        >>> allocator = ProportionalYieldAllocator({"rebalance_threshold": 0.05})
        >>> snapshot = YieldSnapshot({"a": 0.04, "b": 0.10, "c": 0.04})
        >>> allocator.should_rebalance(snapshot).triggered
        True
        >>> allocator.calculate_target_weights(snapshot)
        {'a': 0.222..., 'b': 0.555..., 'c': 0.222...}
    """

    def __init__(self, config: Optional[Dict] = None):
        """Initialize allocator with configuration.

        Args:
            config: Configuration dictionary with threshold parameters.
                   Uses defaults if not provided.
        """
        config = config or {}

        self.rebalance_threshold = config.get("rebalance_threshold", 0.05)
        self.min_move_threshold = config.get("min_move_threshold", 0.01)

        self._validate_config()

    def _validate_config(self) -> None:
        if self.rebalance_threshold < 0:
            raise ValueError(
                f"rebalance_threshold must be >= 0, got {self.rebalance_threshold}"
            )
        if not 0 <= self.min_move_threshold < 1:
            raise ValueError(
                f"min_move_threshold must be in [0, 1), got {self.min_move_threshold}"
            )

    def should_rebalance(self, snapshot: YieldSnapshot) -> RebalanceDecision:
        """Check whether any pool's yield is an outlier against the mean.

        Deviation of a pool is ``|yield - mean| / mean``. A zero mean means
        every pool yields nothing, which can never be turned into a target,
        so the tick is skipped as degenerate.

        Args:
            snapshot: Yields for every configured pool

        Returns:
            RebalanceDecision with per-pool deviations
        """
        avg = snapshot.mean

        if avg <= 0:
            return RebalanceDecision(
                triggered=False,
                reason=DecisionReason.DEGENERATE_YIELD,
                mean_yield=avg,
                deviations={pool: 0.0 for pool in snapshot.yields},
            )

        deviations = {
            pool: abs(rate - avg) / avg for pool, rate in snapshot.yields.items()
        }
        triggered = any(d > self.rebalance_threshold for d in deviations.values())

        return RebalanceDecision(
            triggered=triggered,
            reason=(
                DecisionReason.DEVIATION_EXCEEDED
                if triggered
                else DecisionReason.WITHIN_THRESHOLD
            ),
            mean_yield=avg,
            deviations=deviations,
        )

    def calculate_target_weights(self, snapshot: YieldSnapshot) -> Dict[str, float]:
        """Allocate proportionally to yield over the full pool set.

        Args:
            snapshot: Yields for every configured pool

        Returns:
            Target weights {pool: weight} summing to 1.0

        Raises:
            DegenerateYieldError: If the sum of yields is not positive
        """
        total = snapshot.total
        if total <= 0:
            raise DegenerateYieldError(
                f"Sum of yields must be positive to compute a target, got {total}"
            )

        return {pool: rate / total for pool, rate in snapshot.yields.items()}

    def generate_plan(
        self,
        current: Dict[str, float],
        target: Dict[str, float],
    ) -> RebalancePlan:
        """Generate moves from the current to the target allocation.

        Pools are visited in the order of ``current`` (configuration order).
        Moves of at most ``min_move_threshold`` are dropped. Decreases come
        first, then increases, each group keeping pool order.

        Args:
            current: Current allocation {pool: fraction}
            target: Target allocation {pool: fraction}

        Returns:
            RebalancePlan, decreases first then increases
        """
        decreases: List[PlanEntry] = []
        increases: List[PlanEntry] = []

        for pool, current_fraction in current.items():
            delta = target.get(pool, 0.0) - current_fraction

            # Skip micro-moves
            if abs(delta) <= self.min_move_threshold:
                continue

            if delta > 0:
                increases.append(PlanEntry(pool, Direction.INCREASE, delta))
            else:
                decreases.append(PlanEntry(pool, Direction.DECREASE, -delta))

        return RebalancePlan(entries=decreases + increases)

    def calculate_metrics(
        self,
        current: Dict[str, float],
        target: Dict[str, float],
        plan: RebalancePlan,
    ) -> Dict[str, float]:
        """Calculate allocation metrics for monitoring.

        Returns:
            Dictionary with turnover, concentration and move counts
        """
        herfindahl = sum(w**2 for w in target.values()) if target else 0.0
        max_drift = max(
            (abs(target.get(p, 0.0) - f) for p, f in current.items()),
            default=0.0,
        )

        return {
            "turnover": plan.turnover,
            "herfindahl_index": herfindahl,
            "max_drift": max_drift,
            "entry_count": float(len(plan)),
            "decrease_count": float(len(plan.decreases)),
            "increase_count": float(len(plan.increases)),
        }
