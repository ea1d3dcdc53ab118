"""Tick history tracking.

This module keeps the observability records of recent ticks in memory and
summarizes them: how often rebalances trigger, how many adapter calls fail
and how often yield sources fall back to stale values.
"""

from collections import deque
from typing import Any, Deque, Dict, List, Optional

import pandas as pd


class TickHistory:
    """Bounded in-memory history of tick records.

    Example:
        >>> history = TickHistory(max_records=500)
        >>> engine = RebalanceEngine(..., history=history)
        >>> await engine.tick()
        >>> history.get_summary()["tick_count"]
        1
    """

    def __init__(self, max_records: int = 1000):
        """Initialize tick history.

        Args:
            max_records: Number of most recent ticks to keep
        """
        if max_records < 1:
            raise ValueError(f"max_records must be >= 1, got {max_records}")

        self.max_records = max_records
        self.records: Deque = deque(maxlen=max_records)

    def record(self, tick_record) -> None:
        """Append a finished tick record."""
        self.records.append(tick_record)

    def __len__(self) -> int:
        return len(self.records)

    @property
    def last(self):
        return self.records[-1] if self.records else None

    def to_dataframe(self) -> pd.DataFrame:
        """Flatten tick records into one row per tick.

        Returns:
            DataFrame indexed by tick_id with decision, counts, and one
            ``yield_<pool>`` and ``alloc_<pool>`` column per pool
        """
        if not self.records:
            return pd.DataFrame()

        rows: List[Dict[str, Any]] = []
        for rec in self.records:
            row: Dict[str, Any] = {
                "tick_id": rec.tick_id,
                "started_at": rec.started_at,
                "triggered": rec.triggered,
                "reason": rec.decision.reason.value if rec.decision else None,
                "entries": len(rec.plan) if rec.plan is not None else 0,
                "succeeded": len(rec.succeeded_entries),
                "failed": len(rec.failed_entries),
                "stale": len(rec.snapshot.stale) if rec.snapshot else 0,
                "error": rec.error,
            }
            if rec.snapshot:
                for pool, rate in rec.snapshot.yields.items():
                    row[f"yield_{pool}"] = rate
            for pool, fraction in rec.allocation_after.items():
                row[f"alloc_{pool}"] = fraction
            rows.append(row)

        return pd.DataFrame(rows).set_index("tick_id")

    def get_summary(self) -> Dict[str, Any]:
        """Calculate summary statistics over the retained ticks.

        Returns:
            Dictionary with tick, rebalance, failure and staleness counts
            and the most recent allocation
        """
        last: Optional[Any] = self.last
        if last is None:
            return {
                "tick_count": 0,
                "rebalance_count": 0,
                "trigger_rate": 0.0,
                "failed_entry_count": 0,
                "stale_yield_count": 0,
                "error_count": 0,
                "last_allocation": {},
            }

        df = self.to_dataframe()
        tick_count = len(df)

        return {
            "tick_count": tick_count,
            "rebalance_count": int((df["succeeded"] > 0).sum()),
            "trigger_rate": float(df["triggered"].mean()),
            "failed_entry_count": int(df["failed"].sum()),
            "stale_yield_count": int(df["stale"].sum()),
            "error_count": int(df["error"].notna().sum()),
            "last_allocation": dict(last.allocation_after),
        }

    def clear(self) -> None:
        self.records.clear()
