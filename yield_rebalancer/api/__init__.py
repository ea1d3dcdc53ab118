"""High-level interface for running the rebalancer."""

from yield_rebalancer.api.rebalancer_api import RebalancerAPI

__all__ = ["RebalancerAPI"]
