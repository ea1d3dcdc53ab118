"""Unit tests for TickHistory."""

import pandas as pd
import pytest

from yield_rebalancer.execution.base import EntryStatus, ExecutionOutcome
from yield_rebalancer.monitoring.tick_history import TickHistory
from yield_rebalancer.orchestration.engine import TickRecord
from yield_rebalancer.portfolio.base import (
    DecisionReason,
    Direction,
    PlanEntry,
    RebalanceDecision,
    RebalancePlan,
    YieldSnapshot,
)


def make_record(
    tick_id: int,
    triggered: bool = False,
    failed: bool = False,
    stale=frozenset(),
    error=None,
) -> TickRecord:
    """Build a finished tick record over pools a and b."""
    entries = [
        PlanEntry("a", Direction.DECREASE, 0.1),
        PlanEntry("b", Direction.INCREASE, 0.1),
    ]
    outcomes = []
    allocation_after = {"a": 0.5, "b": 0.5}
    if triggered:
        outcomes = [
            ExecutionOutcome(entries[0], EntryStatus.SUCCEEDED),
            ExecutionOutcome(
                entries[1],
                EntryStatus.FAILED if failed else EntryStatus.SUCCEEDED,
                error="venue down" if failed else None,
            ),
        ]
        allocation_after = {"a": 0.4, "b": 0.6}

    return TickRecord(
        tick_id=tick_id,
        snapshot=YieldSnapshot({"a": 0.04, "b": 0.06}, stale=frozenset(stale)),
        decision=RebalanceDecision(
            triggered=triggered,
            reason=(
                DecisionReason.DEVIATION_EXCEEDED
                if triggered
                else DecisionReason.WITHIN_THRESHOLD
            ),
            mean_yield=0.05,
        ),
        plan=RebalancePlan(entries) if triggered else None,
        outcomes=outcomes,
        allocation_before={"a": 0.5, "b": 0.5},
        allocation_after=allocation_after,
        error=error,
    )


class TestTickHistory:
    """Test cases for TickHistory."""

    def test_invalid_max_records(self) -> None:
        """Test max_records must be positive."""
        with pytest.raises(ValueError, match="max_records must be >= 1"):
            TickHistory(max_records=0)

    def test_bounded(self) -> None:
        """Test only the most recent records are kept."""
        history = TickHistory(max_records=2)
        for tick_id in range(1, 4):
            history.record(make_record(tick_id))

        assert len(history) == 2
        assert history.last.tick_id == 3
        assert [r.tick_id for r in history.records] == [2, 3]

    def test_empty_summary(self) -> None:
        """Test summary of an empty history."""
        history = TickHistory()

        summary = history.get_summary()

        assert summary["tick_count"] == 0
        assert summary["last_allocation"] == {}
        assert history.to_dataframe().empty
        assert history.last is None

    def test_to_dataframe(self) -> None:
        """Test one row per tick with per-pool columns."""
        history = TickHistory()
        history.record(make_record(1))
        history.record(make_record(2, triggered=True, failed=True, stale={"b"}))

        df = history.to_dataframe()

        assert isinstance(df, pd.DataFrame)
        assert list(df.index) == [1, 2]
        assert df.loc[2, "triggered"]
        assert df.loc[2, "reason"] == "deviation_exceeded"
        assert df.loc[2, "entries"] == 2
        assert df.loc[2, "succeeded"] == 1
        assert df.loc[2, "failed"] == 1
        assert df.loc[2, "stale"] == 1
        assert df.loc[1, "yield_a"] == 0.04
        assert df.loc[2, "alloc_b"] == 0.6

    def test_summary(self) -> None:
        """Test rebalance, failure, staleness and error counts."""
        history = TickHistory()
        history.record(make_record(1))
        history.record(make_record(2, triggered=True, failed=True, stale={"a", "b"}))
        history.record(make_record(3, triggered=True))
        history.record(make_record(4, error="RuntimeError: boom"))

        summary = history.get_summary()

        assert summary["tick_count"] == 4
        assert summary["rebalance_count"] == 2
        assert summary["trigger_rate"] == pytest.approx(0.5)
        assert summary["failed_entry_count"] == 1
        assert summary["stale_yield_count"] == 2
        assert summary["error_count"] == 1
        assert summary["last_allocation"] == {"a": 0.5, "b": 0.5}

    def test_clear(self) -> None:
        """Test clearing the history."""
        history = TickHistory()
        history.record(make_record(1))

        history.clear()

        assert len(history) == 0
