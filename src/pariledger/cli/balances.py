"""Balances subcommand: show, deposit, withdraw, rebuild."""

from __future__ import annotations

import asyncio
import uuid

import typer

from pariledger.cli.common import echo_result, engine_from_ctx

app = typer.Typer(help="Wallet balances and the balance journal")


@app.command("show")
def show(
    ctx: typer.Context,
    wallet: str | None = typer.Argument(None, help="Wallet (omit to list all)"),
    history: bool = typer.Option(False, "--history", help="Also print journal entries"),
) -> None:
    """Show one wallet's balance, or every wallet."""
    engine = engine_from_ctx(ctx)
    if wallet is None:
        balances = asyncio.run(engine.balances.load_all())
        for b in sorted(balances.values(), key=lambda b: b.balance, reverse=True):
            typer.echo(f"  {b.wallet_address:<46}  {b.balance:>14.6f}")
        typer.echo(f"Total: {len(balances)} wallets")
        return
    b = asyncio.run(engine.get_balance(wallet))
    typer.echo(f"Balance:   {b.balance:.6f}")
    typer.echo(f"Deposited: {b.total_deposited:.6f}")
    typer.echo(f"Withdrawn: {b.total_withdrawn:.6f}")
    typer.echo(f"Winnings:  {b.total_winnings:.6f}")
    if history:
        for e in asyncio.run(engine.balances.history(wallet)):
            typer.echo(f"  {e.timestamp}  {e.kind:<8}  {e.delta:>+14.6f}  {e.key}")


@app.command("deposit")
def deposit(
    ctx: typer.Context,
    wallet: str = typer.Argument(...),
    amount: float = typer.Argument(...),
    reference: str | None = typer.Option(None, "--ref", help="Idempotency reference (e.g. tx signature)"),
) -> None:
    """Credit a wallet."""
    engine = engine_from_ctx(ctx)
    echo_result(asyncio.run(engine.deposit(wallet, amount, reference or uuid.uuid4().hex)))


@app.command("withdraw")
def withdraw(
    ctx: typer.Context,
    wallet: str = typer.Argument(...),
    amount: float = typer.Argument(...),
    reference: str | None = typer.Option(None, "--ref", help="Idempotency reference"),
) -> None:
    """Debit a wallet; fails when the balance is short."""
    engine = engine_from_ctx(ctx)
    echo_result(asyncio.run(engine.withdraw(wallet, amount, reference or uuid.uuid4().hex)))


@app.command("rebuild")
def rebuild(ctx: typer.Context) -> None:
    """Recompute every balance from the journal."""
    engine = engine_from_ctx(ctx)
    balances = asyncio.run(engine.balances.rebuild())
    typer.echo(f"Rebuilt {len(balances)} balances from the journal.")
