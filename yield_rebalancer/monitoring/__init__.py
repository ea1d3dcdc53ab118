"""Monitoring Layer - tick history and summaries."""

from yield_rebalancer.monitoring.tick_history import TickHistory

__all__ = ["TickHistory"]
