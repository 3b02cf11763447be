"""Bets subcommand: place, sell, copy."""

from __future__ import annotations

import asyncio

import typer

from pariledger.cli.common import echo_result, engine_from_ctx

app = typer.Typer(help="Place, exit and copy bets")


@app.command("place")
def place(
    ctx: typer.Context,
    market_id: str = typer.Argument(...),
    wallet: str = typer.Argument(..., help="Bettor wallet"),
    amount: float = typer.Argument(..., help="Gross stake, platform fee included"),
    prediction: str = typer.Argument(..., help="yes or no"),
    outcome_id: str | None = typer.Option(None, "--outcome", "-o", help="Outcome ID (multi-outcome markets)"),
    signature: str = typer.Option("", "--signature", help="Payment transaction signature"),
) -> None:
    """Place a bet."""
    engine = engine_from_ctx(ctx)
    if outcome_id is not None:
        result = asyncio.run(engine.place_bet_on_outcome(market_id, outcome_id, wallet, amount, prediction, signature))
    else:
        result = asyncio.run(engine.place_bet(market_id, wallet, amount, prediction, signature))
    echo_result(result)


@app.command("sell")
def sell(
    ctx: typer.Context,
    market_id: str = typer.Argument(...),
    bet_id: str = typer.Argument(...),
    wallet: str = typer.Argument(..., help="Wallet that owns the bet"),
) -> None:
    """Exit a bet early at its current pool value."""
    engine = engine_from_ctx(ctx)
    echo_result(asyncio.run(engine.sell_position(market_id, bet_id, wallet)))


@app.command("copy")
def copy(
    ctx: typer.Context,
    market_id: str = typer.Argument(...),
    copier: str = typer.Argument(..., help="Copier wallet"),
    target: str = typer.Argument(..., help="Wallet whose position is copied"),
    signature: str = typer.Option("", "--signature"),
) -> None:
    """Mirror another wallet's yes/no split, scaled to the copier's balance."""
    engine = engine_from_ctx(ctx)
    echo_result(asyncio.run(engine.copy_trade(market_id, copier, target, signature)))
