"""Validation of yield values reported by yield sources."""

import math
from typing import Any

from yield_rebalancer.utils.exceptions import FetchError
from yield_rebalancer.utils.logging import get_logger

logger = get_logger(__name__)


class YieldValidator:
    """Validator for per-pool yield rates."""

    # APY above this is almost certainly a unit error (percent instead of fraction)
    SUSPICIOUS_YIELD = 10.0

    @classmethod
    def validate(cls, value: Any, pool_id: str) -> float:
        """Coerce and check a raw yield value.

        Args:
            value: Raw value returned by a yield source
            pool_id: Pool identifier for error messages

        Returns:
            The yield as a float

        Raises:
            FetchError: If the value is not a finite, non-negative number
        """
        if isinstance(value, bool):
            raise FetchError(f"Yield for {pool_id} is not numeric: {value!r}", pool=pool_id)

        try:
            rate = float(value)
        except (TypeError, ValueError) as e:
            raise FetchError(
                f"Yield for {pool_id} is not numeric: {value!r}", pool=pool_id
            ) from e

        if not math.isfinite(rate):
            raise FetchError(f"Yield for {pool_id} is not finite: {rate}", pool=pool_id)
        if rate < 0:
            raise FetchError(f"Yield for {pool_id} is negative: {rate}", pool=pool_id)

        if rate > cls.SUSPICIOUS_YIELD:
            logger.warning(
                "Yield for %s is %.2f (%.0f%% APY), check the source units",
                pool_id,
                rate,
                rate * 100,
            )

        return rate
