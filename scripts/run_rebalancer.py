#!/usr/bin/env python3
"""CLI tool for running and inspecting the yield rebalancer.

Usage:
    python scripts/run_rebalancer.py run
    python scripts/run_rebalancer.py tick
    python scripts/run_rebalancer.py status
    python scripts/run_rebalancer.py run --config config/default.yaml --log-level DEBUG
"""

import asyncio
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import click
from rich.console import Console
from rich.table import Table

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from yield_rebalancer.api.rebalancer_api import RebalancerAPI
from yield_rebalancer.data.storage.checkpoint import AllocationCheckpoint
from yield_rebalancer.orchestration.engine import TickRecord
from yield_rebalancer.utils.config import load_config
from yield_rebalancer.utils.exceptions import RebalancerError
from yield_rebalancer.utils.logging import setup_logging

console = Console()


def create_allocation_table(allocation: Dict[str, float], title: str = "Allocation") -> Table:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Pool", style="cyan", no_wrap=True)
    table.add_column("Fraction", justify="right", style="green")

    for pool, fraction in allocation.items():
        table.add_row(pool, f"{fraction:.2%}")
    return table


def create_tick_table(record: TickRecord) -> Table:
    """Create a per-pool table for one tick.

    Args:
        record: Finished tick record

    Returns:
        Rich Table with yield, target, move and outcome per pool
    """
    table = Table(
        title=f"Tick {record.tick_id}", show_header=True, header_style="bold magenta"
    )
    table.add_column("Pool", style="cyan", no_wrap=True)
    table.add_column("APY", justify="right")
    table.add_column("Deviation", justify="right")
    table.add_column("Before", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Move", justify="right")
    table.add_column("Outcome")
    table.add_column("After", justify="right", style="green")

    outcomes = {o.entry.pool: o for o in record.outcomes}
    moves = {e.pool: e for e in record.plan} if record.plan is not None else {}
    yields = record.snapshot.yields if record.snapshot else {}
    stale = record.snapshot.stale if record.snapshot else frozenset()
    deviations = record.decision.deviations if record.decision else {}

    for pool, before in record.allocation_before.items():
        apy = f"{yields[pool]:.2%}" if pool in yields else "-"
        if pool in stale:
            apy += " [yellow](stale)[/yellow]"

        entry = moves.get(pool)
        move = f"{entry.signed_delta:+.2%}" if entry else "-"

        outcome = outcomes.get(pool)
        if outcome is None:
            outcome_text = "-"
        elif outcome.succeeded:
            outcome_text = "[green]ok[/green]"
        else:
            outcome_text = f"[red]{outcome.status.value}[/red]"

        table.add_row(
            pool,
            apy,
            f"{deviations[pool]:.1%}" if pool in deviations else "-",
            f"{before:.2%}",
            f"{record.target[pool]:.2%}" if record.target else "-",
            move,
            outcome_text,
            f"{record.allocation_after.get(pool, before):.2%}",
        )

    return table


def print_tick(record: TickRecord) -> None:
    console.print(create_tick_table(record))

    if record.decision is None:
        console.print("[bold red]Tick ended before a decision was made[/bold red]")
    elif record.decision.triggered:
        console.print(
            f"[bold]Rebalance triggered[/bold] (mean APY {record.decision.mean_yield:.2%}): "
            f"{len(record.succeeded_entries)} applied, {len(record.failed_entries)} failed"
        )
    else:
        console.print(f"[dim]No rebalance: {record.decision.reason.value}[/dim]")

    if record.error:
        console.print(f"[bold red]Error:[/bold red] {record.error}")


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True), default=None,
              help="Path to YAML configuration (default: config/default.yaml)")
@click.option("--log-level", default=None, help="Override logging level")
@click.pass_context
def cli(ctx, config_path: Optional[str], log_level: Optional[str]):
    """Yield Rebalancer"""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


def _load(ctx):
    config = load_config(ctx.obj["config_path"])
    setup_logging(level=ctx.obj["log_level"] or config.log_level)
    return config


@cli.command()
@click.pass_context
def run(ctx):
    """Run scheduled ticks until interrupted (Ctrl+C)."""

    async def _run():
        config = _load(ctx)
        api = RebalancerAPI(config)
        stop_event = asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                pass

        console.print(
            f"[bold green]Rebalancing {len(config.pools)} pools every "
            f"{config.refresh_interval_ms / 60000:.0f} min. Press Ctrl+C to stop.[/bold green]"
        )
        try:
            await api.run_forever(stop_event)
        finally:
            await api.close()

        console.print(create_allocation_table(api.get_allocation(), "Final Allocation"))

    try:
        asyncio.run(_run())
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.pass_context
def tick(ctx):
    """Run a single tick and print the result."""

    async def _tick():
        api = RebalancerAPI(_load(ctx))
        try:
            return await api.run_once()
        finally:
            await api.close()

    try:
        record = asyncio.run(_tick())
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    print_tick(record)


@cli.command()
@click.option("--history", is_flag=True, help="Show every checkpoint, not just the latest")
@click.pass_context
def status(ctx, history: bool):
    """Show the checkpointed allocation."""
    try:
        config = _load(ctx)
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    if not config.checkpoint_enabled:
        console.print("[yellow]Checkpointing is disabled; showing the initial allocation.[/yellow]")
        console.print(create_allocation_table(config.initial_allocation, "Initial Allocation"))
        return

    checkpoint = AllocationCheckpoint(config.checkpoint_path)
    try:
        if history:
            df = checkpoint.load_history()
            if df.empty:
                console.print("No checkpoints saved yet")
            else:
                console.print(df.to_string(float_format=lambda v: f"{v:.2%}"))
            return

        allocation = checkpoint.load_latest(config.pool_ids)
        if allocation is None:
            console.print("No usable checkpoint; showing the initial allocation.")
            allocation = config.initial_allocation
        console.print(create_allocation_table(allocation, "Current Allocation"))
        console.print(f"[dim]{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}[/dim]")
    finally:
        checkpoint.close()


if __name__ == "__main__":
    cli()
