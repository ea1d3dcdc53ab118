"""Static yield source for paper runs and tests."""

from typing import Dict, Optional

from yield_rebalancer.data.base import YieldSource
from yield_rebalancer.utils.exceptions import FetchError
from yield_rebalancer.utils.logging import get_logger

logger = get_logger(__name__)

# Reference APYs used when no live yield feed is configured
DEFAULT_RATES: Dict[str, float] = {
    "uniswap": 0.05,
    "meteora": 0.06,
    "orca": 0.055,
    "raydium": 0.065,
}


class StaticYieldSource(YieldSource):
    """Yield source backed by a fixed table of rates.

    Rates can be changed at runtime with ``set_rate`` which makes this source
    handy for dry runs and for driving the engine in tests.

    Example:
        >>> source = StaticYieldSource({"orca": 0.055, "raydium": 0.065})
        >>> await source.fetch("orca")
        0.055
    """

    def __init__(self, rates: Optional[Dict[str, float]] = None):
        self.rates: Dict[str, float] = dict(DEFAULT_RATES if rates is None else rates)
        logger.debug("StaticYieldSource initialized with %d pools", len(self.rates))

    async def fetch(self, pool_id: str) -> float:
        if pool_id not in self.rates:
            raise FetchError(f"No static rate configured for pool {pool_id}", pool=pool_id)
        return self.rates[pool_id]

    def set_rate(self, pool_id: str, rate: float) -> None:
        self.rates[pool_id] = rate
