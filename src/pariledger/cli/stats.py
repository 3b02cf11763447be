"""Stats subcommand: show, rebuild."""

from __future__ import annotations

import asyncio

import typer

from pariledger.cli.common import engine_from_ctx

app = typer.Typer(help="Platform statistics")


def _echo_stats(s) -> None:
    typer.echo(f"Total volume:   {s.total_volume:.6f}")
    typer.echo(f"Total fees:     {s.total_fees:.6f}")
    typer.echo(f"Users:          {s.total_users}")
    typer.echo(f"Active markets: {s.active_markets}")
    typer.echo(f"Pool money:     {s.total_pool_money:.6f}")
    typer.echo(f"24h volume:     {s.last_24h_volume:.6f}")
    typer.echo(f"24h fees:       {s.last_24h_fees:.6f}")


@app.command("show")
def show(ctx: typer.Context) -> None:
    """Show cached platform statistics."""
    engine = engine_from_ctx(ctx)
    _echo_stats(asyncio.run(engine.platform_stats()))


@app.command("rebuild")
def rebuild(ctx: typer.Context) -> None:
    """Recompute statistics from the market collection."""
    engine = engine_from_ctx(ctx)
    _echo_stats(asyncio.run(engine.stats.rebuild()))
