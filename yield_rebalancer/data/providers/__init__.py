"""Concrete yield sources."""

from yield_rebalancer.data.providers.http_provider import HttpYieldSource
from yield_rebalancer.data.providers.static_provider import StaticYieldSource

__all__ = ["HttpYieldSource", "StaticYieldSource"]
