"""Allocation state owned by the rebalance engine.

The allocation is the fraction of total managed capital assigned to each
pool. It is created from configuration at startup, replaced only after an
execution pass, and never destroyed during the process lifetime.
"""

import math
import threading
from typing import Dict, Iterable, Mapping, Tuple

from yield_rebalancer.utils.config import EPSILON
from yield_rebalancer.utils.exceptions import InvalidAllocationError
from yield_rebalancer.utils.logging import get_logger

logger = get_logger(__name__)


class AllocationState:
    """Normalized allocation vector over a fixed pool set.

    Invariants:
    - The key set equals the configured pools and never changes.
    - Every fraction is in [0, 1].
    - Fractions sum to 1.0 within ``EPSILON`` whenever observable.

    Updates are whole-mapping swaps under a lock, so readers on any thread
    see either the old or the new allocation, never a mix.

    Example:
        >>> state = AllocationState({"orca": 0.5, "raydium": 0.5})
        >>> state.apply({"orca": 0.4, "raydium": 0.6})
        >>> state.get()
        {'orca': 0.4, 'raydium': 0.6}
    """

    def __init__(self, initial_allocation: Mapping[str, float]):
        """Initialize with the configured starting allocation.

        Args:
            initial_allocation: {pool: fraction}, must sum to 1.0

        Raises:
            InvalidAllocationError: If the allocation is empty or invalid
        """
        if not initial_allocation:
            raise InvalidAllocationError("Allocation must contain at least one pool")

        self._pools: Tuple[str, ...] = tuple(initial_allocation)
        self._lock = threading.Lock()
        self._allocation: Dict[str, float] = {}

        self._validate(initial_allocation)
        self._allocation = {p: float(initial_allocation[p]) for p in self._pools}

    @property
    def pools(self) -> Tuple[str, ...]:
        """Configured pool identifiers in configuration order."""
        return self._pools

    def get(self) -> Dict[str, float]:
        """Return a copy of the current allocation."""
        with self._lock:
            return dict(self._allocation)

    def __getitem__(self, pool: str) -> float:
        with self._lock:
            return self._allocation[pool]

    def apply(self, new_allocation: Mapping[str, float]) -> None:
        """Replace the allocation.

        Args:
            new_allocation: {pool: fraction} over exactly the configured pools

        Raises:
            InvalidAllocationError: If the allocation violates an invariant;
                the state is left unchanged
        """
        self._validate(new_allocation)
        replacement = {p: float(new_allocation[p]) for p in self._pools}

        with self._lock:
            self._allocation = replacement

        logger.debug("Allocation applied: %s", replacement)

    def normalize(self) -> Dict[str, float]:
        """Rescale fractions to sum exactly 1.0, absorbing floating drift.

        Returns:
            The normalized allocation

        Raises:
            InvalidAllocationError: If the total is not positive
        """
        with self._lock:
            self._allocation = normalize_allocation(self._allocation)
            return dict(self._allocation)

    def _validate(self, allocation: Mapping[str, float]) -> None:
        keys = set(allocation)
        expected = set(self._pools)
        if keys != expected:
            missing = sorted(expected - keys)
            extra = sorted(keys - expected)
            raise InvalidAllocationError(
                f"Allocation pools do not match configured pools "
                f"(missing: {missing}, unexpected: {extra})"
            )

        for pool, fraction in allocation.items():
            if not isinstance(fraction, (int, float)) or isinstance(fraction, bool):
                raise InvalidAllocationError(f"Fraction for {pool} is not numeric: {fraction!r}")
            if not math.isfinite(fraction) or not 0 <= fraction <= 1:
                raise InvalidAllocationError(
                    f"Fraction for {pool} must be in [0, 1], got {fraction}"
                )

        total = sum(allocation.values())
        if abs(total - 1.0) > EPSILON:
            raise InvalidAllocationError(
                f"Allocation must sum to 1.0 (+/- {EPSILON}), got {total:.9f}"
            )

    def to_dict(self) -> Dict[str, float]:
        return self.get()

    def __repr__(self) -> str:
        body = ", ".join(f"{p}={f:.4f}" for p, f in self.get().items())
        return f"AllocationState({body})"


def normalize_allocation(
    allocation: Mapping[str, float],
    pinned: Iterable[str] = (),
) -> Dict[str, float]:
    """Rescale an allocation so its fractions sum to exactly 1.0.

    Negative fractions are clipped to zero first. Pinned pools keep their
    fraction and the remaining pools are rescaled to fill the rest. If the
    unpinned pools hold nothing, pinning is dropped and every pool is
    rescaled.

    Args:
        allocation: {pool: fraction}, any positive total
        pinned: Pools whose fraction must not change

    Returns:
        Normalized allocation in the same pool order

    Raises:
        InvalidAllocationError: If nothing positive is left to rescale
    """
    clipped = {p: max(0.0, float(f)) for p, f in allocation.items()}
    fixed = {p for p in pinned if p in clipped}

    fixed_total = sum(clipped[p] for p in fixed)
    free_total = sum(f for p, f in clipped.items() if p not in fixed)
    if not fixed or fixed_total >= 1.0 or free_total <= 0:
        fixed = set()
        fixed_total = 0.0
        free_total = sum(clipped.values())

    if free_total <= 0 or not math.isfinite(free_total):
        raise InvalidAllocationError(f"Cannot normalize allocation with total {free_total}")

    scale = (1.0 - fixed_total) / free_total
    normalized = {
        p: f if p in fixed else f * scale for p, f in clipped.items()
    }

    # Push the rounding residue into the largest free pool so the sum is exact
    residue = 1.0 - sum(normalized.values())
    if residue:
        free = [p for p in normalized if p not in fixed]
        largest = max(free, key=normalized.get)
        normalized[largest] = min(1.0, max(0.0, normalized[largest] + residue))

    return normalized
