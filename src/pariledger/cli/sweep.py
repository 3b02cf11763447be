"""Sweep subcommand: one-shot or looping auto-refund of single-bettor markets."""

from __future__ import annotations

import asyncio

import typer

from pariledger.cli.common import echo_result, engine_from_ctx
from pariledger.engine.sweeper import run_refund_sweeper

app = typer.Typer(help="Auto-refund markets that attracted a single bettor")


@app.command("run")
def run_once(ctx: typer.Context) -> None:
    """Run one sweep now."""
    engine = engine_from_ctx(ctx)
    echo_result(asyncio.run(engine.check_and_refund_single_bettor_markets()))


@app.command("loop")
def loop(
    ctx: typer.Context,
    interval: float | None = typer.Option(None, "--interval", "-i", help="Seconds between sweeps"),
) -> None:
    """Sweep periodically until interrupted."""
    engine = engine_from_ctx(ctx)
    interval_sec = interval or ctx.obj["settings"].sweep_interval_sec
    typer.echo(f"Sweeping every {interval_sec:.0f}s. Ctrl+C to stop.")
    try:
        asyncio.run(run_refund_sweeper(engine, interval_sec=interval_sec))
    except KeyboardInterrupt:
        typer.echo("Stopped.")
