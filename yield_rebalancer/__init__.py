"""Yield-weighted allocation rebalancer.

Polls per-pool yield, decides whether the yield spread warrants action,
computes a target allocation proportional to yield and converges toward it
with incremental decrease-then-increase moves.
"""

__version__ = "0.1.0"
