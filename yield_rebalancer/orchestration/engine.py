"""Rebalance Engine - fetch, decide, plan and execute one tick.

Tick chain:
Yield Fetch (concurrent) -> Drift Decision -> Target Allocation ->
Plan (decreases first) -> Adapter Execution -> Allocation Update

Phases of a tick:
IDLE -> FETCHING -> DECIDING -> (NO_ACTION | PLANNING -> EXECUTING) -> IDLE

The engine degrades gracefully: a failing yield fetch falls back to the last
known yield, a failing adapter call only leaves its own pool untouched, and
no error inside a tick stops the next tick from running.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from yield_rebalancer.data.base import YieldSource
from yield_rebalancer.data.validation import YieldValidator
from yield_rebalancer.execution.base import EntryStatus, ExecutionOutcome, PlatformAdapter
from yield_rebalancer.portfolio.base import (
    DecisionReason,
    Direction,
    PlanEntry,
    RebalanceDecision,
    RebalancePlan,
    TargetAllocator,
    YieldSnapshot,
)
from yield_rebalancer.portfolio.state import AllocationState, normalize_allocation
from yield_rebalancer.portfolio.yield_allocator import ProportionalYieldAllocator
from yield_rebalancer.utils.exceptions import (
    ConfigurationError,
    DegenerateYieldError,
    ExecutionError,
    FetchError,
    InvalidAllocationError,
    TickInProgressError,
)
from yield_rebalancer.utils.logging import get_logger, log_with_context
from yield_rebalancer.utils.logging_enhanced import RebalanceEventType, RebalanceLogger

logger = get_logger(__name__)


class TickPhase(Enum):
    """Phases of the per-tick state machine."""

    IDLE = "idle"
    FETCHING = "fetching"
    DECIDING = "deciding"
    NO_ACTION = "no_action"
    PLANNING = "planning"
    EXECUTING = "executing"


@dataclass
class TickRecord:
    """Observability record of one tick.

    Attributes:
        tick_id: Sequential tick number (1-based)
        started_at: When the tick started
        finished_at: When the tick returned to IDLE
        phases: Phases visited, in order
        snapshot: Yields used for the decision
        fetch_errors: Fetch failure message per stale pool
        decision: Drift decision
        target: Proposed target allocation (if a rebalance was triggered)
        plan: Ordered plan (if a rebalance was triggered)
        metrics: Allocator metrics for the plan
        outcomes: Per-entry execution outcomes, in completion order
        allocation_before: Allocation when the tick started
        allocation_after: Allocation when the tick finished
        error: Unexpected error that ended the tick early
    """

    tick_id: int
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    phases: List[TickPhase] = field(default_factory=list)
    snapshot: Optional[YieldSnapshot] = None
    fetch_errors: Dict[str, str] = field(default_factory=dict)
    decision: Optional[RebalanceDecision] = None
    target: Optional[Dict[str, float]] = None
    plan: Optional[RebalancePlan] = None
    metrics: Dict[str, float] = field(default_factory=dict)
    outcomes: List[ExecutionOutcome] = field(default_factory=list)
    allocation_before: Dict[str, float] = field(default_factory=dict)
    allocation_after: Dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def triggered(self) -> bool:
        return self.decision is not None and self.decision.triggered

    @property
    def succeeded_entries(self) -> List[ExecutionOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed_entries(self) -> List[ExecutionOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def rebalanced(self) -> bool:
        """Whether any allocation change was applied."""
        return bool(self.succeeded_entries)

    def to_dict(self) -> dict:
        return {
            "tick_id": self.tick_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "phases": [p.value for p in self.phases],
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "fetch_errors": dict(self.fetch_errors),
            "decision": self.decision.to_dict() if self.decision else None,
            "target": dict(self.target) if self.target is not None else None,
            "plan": self.plan.to_list() if self.plan is not None else None,
            "metrics": dict(self.metrics),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "allocation_before": dict(self.allocation_before),
            "allocation_after": dict(self.allocation_after),
            "error": self.error,
        }


class RebalanceEngine:
    """Decision and execution core of the yield rebalancer.

    Owns no global state: the allocation state, yield source and adapters
    are passed in explicitly. One tick runs at a time; a tick requested while
    another is running is rejected with ``TickInProgressError``.

    Configuration Parameters:
        rebalance_threshold: Relative yield deviation that triggers a
            rebalance (default 0.05)
        min_move_threshold: Smallest move that enters the plan (default 0.01)
        call_timeout_s: Timeout per yield fetch and adapter call (default 30)
        concurrent_execution: Run entries of one plan group concurrently when
            every adapter in the group supports it (default False)

    Example:
        >>> state = AllocationState({"orca": 0.5, "raydium": 0.5})
        >>> engine = RebalanceEngine(
        ...     state=state,
        ...     yield_source=StaticYieldSource({"orca": 0.04, "raydium": 0.08}),
        ...     adapters={"orca": SimulatedAdapter("orca"),
        ...               "raydium": SimulatedAdapter("raydium")},
        ... )
        >>> record = await engine.tick()
        >>> state.get()
        {'orca': 0.333..., 'raydium': 0.666...}
    """

    def __init__(
        self,
        state: AllocationState,
        yield_source: YieldSource,
        adapters: Mapping[str, PlatformAdapter],
        config: Optional[Dict] = None,
        allocator: Optional[TargetAllocator] = None,
        default_yields: Optional[Mapping[str, float]] = None,
        event_logger: Optional[RebalanceLogger] = None,
        history=None,
        checkpoint=None,
    ):
        """Initialize the engine.

        Args:
            state: Allocation state to read and update
            yield_source: Source of per-pool yields
            adapters: Adapter per pool {pool: adapter}; must cover every pool
            config: Engine configuration (see class docstring)
            allocator: Target allocator (default ProportionalYieldAllocator
                built from ``config``)
            default_yields: Fallback yield per pool for failed first fetches
            event_logger: Optional structured event logger
            history: Optional TickHistory receiving every tick record
            checkpoint: Optional AllocationCheckpoint saved after each update

        Raises:
            ConfigurationError: If an adapter is missing for a pool or the
                configuration is invalid
        """
        config = config or {}

        self.state = state
        self.yield_source = yield_source
        self.adapters: Dict[str, PlatformAdapter] = dict(adapters)
        self.call_timeout_s = config.get("call_timeout_s", 30.0)
        self.concurrent_execution = config.get("concurrent_execution", False)
        self.allocator = allocator or ProportionalYieldAllocator(
            {
                "rebalance_threshold": config.get("rebalance_threshold", 0.05),
                "min_move_threshold": config.get("min_move_threshold", 0.01),
            }
        )
        self.default_yields: Dict[str, float] = dict(default_yields or {})
        self.event_logger = event_logger
        self.history = history
        self.checkpoint = checkpoint

        missing = [p for p in state.pools if p not in self.adapters]
        if missing:
            raise ConfigurationError(f"No platform adapter configured for pools: {missing}")
        if self.call_timeout_s <= 0:
            raise ConfigurationError(f"call_timeout_s must be > 0, got {self.call_timeout_s}")

        self._tick_lock = asyncio.Lock()
        self._tick_count = 0
        self._phase = TickPhase.IDLE
        self._last_yields: Dict[str, float] = {}

        logger.info(
            "RebalanceEngine initialized with %d pools (timeout: %.1fs, concurrent: %s)",
            len(state.pools),
            self.call_timeout_s,
            self.concurrent_execution,
        )

    @property
    def phase(self) -> TickPhase:
        return self._phase

    @property
    def is_running(self) -> bool:
        return self._tick_lock.locked()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_yields(self) -> Dict[str, float]:
        """Last successfully fetched yield per pool."""
        return dict(self._last_yields)

    async def wait_idle(self) -> None:
        """Wait until any in-flight tick has finished."""
        async with self._tick_lock:
            pass

    async def tick(self) -> TickRecord:
        """Run one complete fetch -> decide -> (plan -> execute) cycle.

        Returns:
            TickRecord describing everything the tick observed and did

        Raises:
            TickInProgressError: If another tick is still running
        """
        if self._tick_lock.locked():
            logger.warning("Tick requested while a tick is in progress, rejecting")
            if self.event_logger:
                self.event_logger.log_tick_rejected("tick_in_progress")
            raise TickInProgressError("A rebalance tick is already in progress")

        async with self._tick_lock:
            self._tick_count += 1
            record = TickRecord(
                tick_id=self._tick_count,
                allocation_before=self.state.get(),
            )
            logger.info("Tick %d started", record.tick_id)

            try:
                await self._run_tick(record)
            except asyncio.CancelledError:
                record.error = "cancelled"
                logger.warning("Tick %d cancelled", record.tick_id)
                raise
            except Exception as e:
                record.error = f"{type(e).__name__}: {e}"
                logger.error("Tick %d failed: %s", record.tick_id, e, exc_info=True)
                if self.event_logger:
                    self.event_logger.log_error(
                        RebalanceEventType.TICK_ERROR, record.error, tick_id=record.tick_id
                    )
            finally:
                self._set_phase(record, TickPhase.IDLE)
                record.finished_at = datetime.now()
                record.allocation_after = self.state.get()
                self._emit(record)

            return record

    async def _run_tick(self, record: TickRecord) -> None:
        self._set_phase(record, TickPhase.FETCHING)
        snapshot = await self.fetch_yields(record)
        record.snapshot = snapshot

        self._set_phase(record, TickPhase.DECIDING)
        decision = self.allocator.should_rebalance(snapshot)
        record.decision = decision

        if not decision.triggered:
            if decision.reason == DecisionReason.DEGENERATE_YIELD:
                self._report_degenerate(record, "mean yield is zero")
            else:
                logger.info(
                    "Allocations within threshold (max deviation %.2f%%), no action",
                    max(decision.deviations.values(), default=0.0) * 100,
                )
            self._set_phase(record, TickPhase.NO_ACTION)
            return

        self._set_phase(record, TickPhase.PLANNING)
        try:
            target = self.allocator.calculate_target_weights(snapshot)
        except DegenerateYieldError as e:
            record.decision = RebalanceDecision(
                triggered=False,
                reason=DecisionReason.DEGENERATE_YIELD,
                mean_yield=decision.mean_yield,
                deviations=decision.deviations,
            )
            self._report_degenerate(record, str(e))
            self._set_phase(record, TickPhase.NO_ACTION)
            return

        current = self.state.get()
        plan = self.allocator.generate_plan(current, target)
        record.target = target
        record.plan = plan
        if isinstance(self.allocator, ProportionalYieldAllocator):
            record.metrics = self.allocator.calculate_metrics(current, target, plan)

        log_with_context(
            logger,
            "info",
            "Rebalance triggered",
            entries=len(plan),
            decreases=len(plan.decreases),
            increases=len(plan.increases),
            turnover=plan.turnover,
        )

        if plan.is_empty:
            logger.info("All moves below min_move_threshold, nothing to execute")
            return

        self._set_phase(record, TickPhase.EXECUTING)
        await self.execute_plan(plan, record)

    def _report_degenerate(self, record: TickRecord, detail: str) -> None:
        logger.warning("Degenerate yields, skipping rebalance: %s", detail)
        if self.event_logger:
            self.event_logger.log_error(
                RebalanceEventType.DEGENERATE_YIELD, detail, tick_id=record.tick_id
            )

    def _set_phase(self, record: TickRecord, phase: TickPhase) -> None:
        self._phase = phase
        record.phases.append(phase)
        logger.debug("Tick %d -> %s", record.tick_id, phase.value)

    # ------------------------------------------------------------------
    # Yield evaluation
    # ------------------------------------------------------------------

    async def fetch_yields(self, record: Optional[TickRecord] = None) -> YieldSnapshot:
        """Fetch yields for every pool concurrently.

        A pool whose fetch fails or times out falls back to its last known
        yield (or its configured default on first run) and is flagged stale.

        Args:
            record: Optional tick record receiving per-pool fetch errors

        Returns:
            YieldSnapshot covering every configured pool
        """
        pools = self.state.pools
        results = await asyncio.gather(*(self._fetch_one(pool) for pool in pools))

        yields: Dict[str, float] = {}
        stale = set()

        for pool, (rate, error) in zip(pools, results):
            if error is None:
                yields[pool] = rate
                self._last_yields[pool] = rate
                continue

            fallback = self._last_yields.get(pool, self.default_yields.get(pool, 0.0))
            yields[pool] = fallback
            stale.add(pool)
            if record is not None:
                record.fetch_errors[pool] = error

            logger.warning(
                "Yield fetch failed for %s (%s), using fallback %.4f", pool, error, fallback
            )
            if self.event_logger:
                self.event_logger.log_system_event(
                    RebalanceEventType.YIELD_STALE,
                    error,
                    pool=pool,
                    fallback=fallback,
                )

        log_with_context(logger, "info", "Yields fetched", stale=len(stale), yields=yields)
        return YieldSnapshot(yields=yields, stale=frozenset(stale))

    async def _fetch_one(self, pool: str) -> Tuple[float, Optional[str]]:
        try:
            raw = await asyncio.wait_for(
                self.yield_source.fetch(pool), timeout=self.call_timeout_s
            )
            return YieldValidator.validate(raw, pool), None
        except asyncio.TimeoutError:
            return 0.0, f"timed out after {self.call_timeout_s}s"
        except FetchError as e:
            return 0.0, str(e)
        except Exception as e:
            logger.error("Unexpected error fetching yield for %s", pool, exc_info=True)
            return 0.0, f"{type(e).__name__}: {e}"

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_plan(
        self,
        plan: RebalancePlan,
        record: Optional[TickRecord] = None,
    ) -> List[ExecutionOutcome]:
        """Execute a plan: all decreases, then all increases.

        After every entry has been attempted (or the tick is cancelled), the
        allocation is updated with the deltas that succeeded only and
        re-normalized.

        Args:
            plan: Plan to execute
            record: Optional tick record receiving the outcomes

        Returns:
            Outcomes in completion order
        """
        outcomes: List[ExecutionOutcome] = record.outcomes if record is not None else []

        try:
            for group in (plan.decreases, plan.increases):
                if not group:
                    continue
                if self.concurrent_execution and self._group_is_concurrent_safe(group):
                    await asyncio.gather(*(self._execute_entry(e, outcomes) for e in group))
                else:
                    for entry in group:
                        await self._execute_entry(entry, outcomes)
        finally:
            # Runs on cancellation too: confirmed deltas are never lost
            self._apply_outcomes(outcomes, record)

        return outcomes

    def _group_is_concurrent_safe(self, group: List[PlanEntry]) -> bool:
        return all(self.adapters[e.pool].supports_concurrent_calls for e in group)

    async def _execute_entry(
        self,
        entry: PlanEntry,
        outcomes: List[ExecutionOutcome],
    ) -> ExecutionOutcome:
        adapter = self.adapters[entry.pool]
        operation = adapter.increase if entry.direction == Direction.INCREASE else adapter.decrease
        outcome = ExecutionOutcome(entry=entry, status=EntryStatus.FAILED)

        try:
            confirmed = await asyncio.wait_for(
                operation(entry.pool, entry.magnitude), timeout=self.call_timeout_s
            )
            if confirmed:
                outcome.status = EntryStatus.SUCCEEDED
            else:
                outcome.status = EntryStatus.REJECTED
                outcome.error = "adapter did not confirm the operation"
        except asyncio.TimeoutError:
            outcome.status = EntryStatus.TIMED_OUT
            outcome.error = f"timed out after {self.call_timeout_s}s"
        except ExecutionError as e:
            outcome.error = str(e)
        except asyncio.CancelledError:
            outcome.status = EntryStatus.CANCELLED
            outcome.error = "cancelled"
            outcome.finished_at = datetime.now()
            outcomes.append(outcome)
            raise
        except Exception as e:
            logger.error(
                "Unexpected adapter error for %s %s", entry.direction.value, entry.pool,
                exc_info=True,
            )
            outcome.error = f"{type(e).__name__}: {e}"

        outcome.finished_at = datetime.now()
        outcomes.append(outcome)
        self._log_outcome(outcome)
        return outcome

    def _log_outcome(self, outcome: ExecutionOutcome) -> None:
        entry = outcome.entry
        if outcome.succeeded:
            logger.info(
                "%s %s by %.2f%%: ok",
                entry.direction.value.capitalize(),
                entry.pool,
                entry.magnitude * 100,
            )
            event_type = RebalanceEventType.ENTRY_SUCCEEDED
        else:
            logger.warning(
                "%s %s by %.2f%%: %s (%s)",
                entry.direction.value.capitalize(),
                entry.pool,
                entry.magnitude * 100,
                outcome.status.value,
                outcome.error,
            )
            event_type = RebalanceEventType.ENTRY_FAILED

        if self.event_logger:
            self.event_logger.log_execution_event(
                event_type,
                pool=entry.pool,
                direction=entry.direction.value,
                magnitude=entry.magnitude,
                error=outcome.error,
                status=outcome.status.value,
            )

    def _apply_outcomes(
        self,
        outcomes: List[ExecutionOutcome],
        record: Optional[TickRecord] = None,
    ) -> None:
        succeeded = [o for o in outcomes if o.succeeded]
        if not succeeded:
            logger.warning("No plan entry succeeded, allocation unchanged")
            return

        updated = self.state.get()
        for outcome in succeeded:
            updated[outcome.entry.pool] += outcome.entry.signed_delta

        # Pools whose move failed keep their pre-tick fraction
        failed_pools = [o.entry.pool for o in outcomes if not o.succeeded]

        try:
            normalized = normalize_allocation(updated, pinned=failed_pools)
            self.state.apply(normalized)
        except InvalidAllocationError as e:
            logger.error("Allocation update rejected, state unchanged: %s", e)
            if record is not None:
                record.error = f"InvalidAllocationError: {e}"
            return

        log_with_context(
            logger,
            "info",
            "Allocation updated",
            applied=len(succeeded),
            failed=len(outcomes) - len(succeeded),
            allocation=normalized,
        )
        if self.event_logger:
            self.event_logger.log_allocation(
                normalized,
                applied=[o.entry.pool for o in succeeded],
                failed=failed_pools,
            )
        if self.checkpoint is not None:
            self.checkpoint.save(normalized)

    def _emit(self, record: TickRecord) -> None:
        if self.history is not None:
            self.history.record(record)
        if self.event_logger:
            self.event_logger.log_tick(record.to_dict())

        log_with_context(
            logger,
            "info",
            f"Tick {record.tick_id} finished",
            triggered=record.triggered,
            reason=record.decision.reason.value if record.decision else None,
            applied=len(record.succeeded_entries),
            failed=len(record.failed_entries),
        )
