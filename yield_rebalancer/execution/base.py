"""Abstract base class for platform adapters.

A platform adapter performs the incremental deposit or withdrawal behind one
plan entry on one venue. Adapters are selected per pool through a mapping
{pool: adapter}, so adding a venue means adding an adapter class, not a new
branch in the engine.

Adapters are independently fallible and idempotency is not guaranteed, so the
engine calls each entry at most once per tick.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from yield_rebalancer.portfolio.base import PlanEntry


class EntryStatus(Enum):
    """Outcome of executing one plan entry."""

    SUCCEEDED = "succeeded"  # Adapter confirmed the move
    REJECTED = "rejected"  # Adapter returned False
    FAILED = "failed"  # Adapter raised
    TIMED_OUT = "timed_out"  # Call exceeded the per-call timeout
    CANCELLED = "cancelled"  # Tick cancelled before the call completed


@dataclass
class ExecutionOutcome:
    """Result of one adapter call.

    Attributes:
        entry: The plan entry that was executed
        status: Terminal status of the call
        error: Error message when the call did not succeed
        started_at: When the call started
        finished_at: When the call finished
    """

    entry: PlanEntry
    status: EntryStatus
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == EntryStatus.SUCCEEDED

    @property
    def duration_ms(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict:
        return {
            **self.entry.to_dict(),
            "status": self.status.value,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


class PlatformAdapter(ABC):
    """Abstract interface for venue-specific allocation moves.

    Example:
        >>> adapter = SimulatedAdapter("orca")
        >>> await adapter.increase("orca", 0.05)
        True
    """

    #: Whether calls for different pools may run concurrently
    supports_concurrent_calls: bool = False

    @abstractmethod
    async def increase(self, pool_id: str, fraction: float) -> bool:
        """Deposit additional capital into a pool.

        Args:
            pool_id: Pool identifier
            fraction: Fraction of total managed capital to add (> 0)

        Returns:
            True if the venue confirmed the deposit

        Raises:
            ExecutionError: If the operation failed
        """
        pass

    @abstractmethod
    async def decrease(self, pool_id: str, fraction: float) -> bool:
        """Withdraw capital from a pool.

        Args:
            pool_id: Pool identifier
            fraction: Fraction of total managed capital to remove (> 0)

        Returns:
            True if the venue confirmed the withdrawal

        Raises:
            ExecutionError: If the operation failed
        """
        pass

    async def close(self) -> None:
        """Release any connections held by the adapter."""
        return None
