"""Abstract base class for yield sources.

This module defines the YieldSource interface that every concrete source of
pool yields must implement.
"""

from abc import ABC, abstractmethod


class YieldSource(ABC):
    """Abstract interface for per-pool yield providers.

    The engine calls ``fetch`` once per configured pool per tick, for all
    pools concurrently, so implementations must not assume sequential use.

    Example:
        >>> class FixedSource(YieldSource):
        ...     async def fetch(self, pool_id):
        ...         return 0.05
    """

    @abstractmethod
    async def fetch(self, pool_id: str) -> float:
        """Fetch the current annualized yield for a pool.

        Args:
            pool_id: Pool identifier (e.g. "orca")

        Returns:
            Yield as a dimensionless fraction (0.05 == 5% APY)

        Raises:
            FetchError: If the yield cannot be obtained
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the source."""
        return None
