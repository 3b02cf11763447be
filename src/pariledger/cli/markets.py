"""Markets subcommand: list, show, create, close, resolve, delete."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import typer

from pariledger.cli.common import echo_result, engine_from_ctx
from pariledger.engine.pricing import implied_prices

app = typer.Typer(help="Market listing and administration")


def _fmt_ts(ms: int | None) -> str:
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _admin(ctx: typer.Context, admin_wallet: str | None) -> str:
    return admin_wallet or ctx.obj["settings"].admin_wallet


@app.command("list")
def list_markets(
    ctx: typer.Context,
    status: str | None = typer.Option(None, "--status", "-s", help="active, closed or resolved"),
    category: str | None = typer.Option(None, "--category", "-c"),
) -> None:
    """List markets in the ledger."""
    engine = engine_from_ctx(ctx)
    rows = asyncio.run(engine.list_markets(status=status, category=category))
    for m in rows:
        yes_price, _ = implied_prices(m.total_yes_amount, m.total_no_amount, m.initial_yes_price)
        typer.echo(f"  {m.id[:28]:<28}  {m.status:<8}  {m.total_pool:>10.4f}  {yes_price:>5.2f}  {m.title[:50]}")
    typer.echo(f"Total: {len(rows)} markets")


@app.command("show")
def show(ctx: typer.Context, market_id: str = typer.Argument(..., help="Market ID")) -> None:
    """Show one market: pools, fees, outcomes and bets."""
    engine = engine_from_ctx(ctx)
    m = asyncio.run(engine.get_market(market_id))
    if m is None:
        typer.echo(f"Market not found: {market_id}", err=True)
        raise typer.Exit(1)
    typer.echo(f"{m.title}  [{m.market_type}, {m.status}]")
    typer.echo(f"Created: {_fmt_ts(m.created_at)}  Closes: {_fmt_ts(m.closes_at)}  Resolved: {_fmt_ts(m.resolved_at)}")
    typer.echo(f"Pool: yes={m.total_yes_amount:.6f} no={m.total_no_amount:.6f} total={m.total_pool:.6f}")
    typer.echo(
        f"Fees: platform={m.platform_fees_collected:.6f} settlement={m.settlement_fees_collected:.6f} "
        f"house={m.house_retained:.6f}"
    )
    if m.outcome:
        typer.echo(f"Outcome: {m.outcome}")
    if m.refunded_at is not None:
        typer.echo(f"Refunded: {_fmt_ts(m.refunded_at)}")
    for o in m.outcomes:
        marker = " *" if o.is_winner else ""
        typer.echo(f"  outcome {o.id}  {o.name:<24} yes={o.total_yes_amount:.6f} no={o.total_no_amount:.6f}{marker}")
    typer.echo(f"Bets: {len(m.bets)}")
    for b in m.bets:
        typer.echo(f"  {b.id}  {b.wallet_address[:12]}  {b.prediction:<3}  {b.amount:.6f}  {b.outcome_id or ''}")


@app.command("create")
def create(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Market question"),
    description: str = typer.Option("", "--description", "-d"),
    category: str = typer.Option("other", "--category", "-c"),
    closes_in_hours: float | None = typer.Option(None, "--closes-in", help="Hours until betting closes"),
    outcome: list[str] = typer.Option([], "--outcome", "-o", help="Outcome name (repeat for multi-outcome)"),
    admin_wallet: str | None = typer.Option(None, "--admin", help="Admin wallet (default: config admin.wallet)"),
) -> None:
    """Create a yes/no market, or a multi-outcome market with two or more --outcome."""
    engine = engine_from_ctx(ctx)
    closes_at = None
    if closes_in_hours is not None:
        closes_at = engine.clock() + int(closes_in_hours * 60 * 60 * 1000)
    result = asyncio.run(
        engine.create_market(
            _admin(ctx, admin_wallet),
            title,
            description=description,
            category=category,
            closes_at=closes_at,
            outcomes=outcome or None,
        )
    )
    echo_result(result)


@app.command("close")
def close(
    ctx: typer.Context,
    market_id: str = typer.Argument(...),
    admin_wallet: str | None = typer.Option(None, "--admin"),
) -> None:
    """Stop betting on a market."""
    engine = engine_from_ctx(ctx)
    echo_result(asyncio.run(engine.close_market(market_id, _admin(ctx, admin_wallet))))


@app.command("resolve")
def resolve(
    ctx: typer.Context,
    market_id: str = typer.Argument(...),
    winner: str = typer.Argument(..., help="yes/no, or the winning outcome ID for multi-outcome markets"),
    admin_wallet: str | None = typer.Option(None, "--admin"),
) -> None:
    """Resolve a market and pay out winners."""
    engine = engine_from_ctx(ctx)
    admin = _admin(ctx, admin_wallet)
    if winner in ("yes", "no"):
        result = asyncio.run(engine.resolve_market(market_id, winner, admin))
    else:
        result = asyncio.run(engine.resolve_multi_outcome_market(market_id, winner, admin))
    echo_result(result)


@app.command("delete")
def delete(
    ctx: typer.Context,
    market_id: str = typer.Argument(...),
    admin_wallet: str | None = typer.Option(None, "--admin"),
) -> None:
    """Delete a market that has no bets."""
    engine = engine_from_ctx(ctx)
    echo_result(asyncio.run(engine.delete_market(market_id, _admin(ctx, admin_wallet))))
