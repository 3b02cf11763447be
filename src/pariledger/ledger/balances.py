"""Per-wallet balance ledger: append-only journal plus the materialized balance map."""

from __future__ import annotations

import time
from typing import Callable

import structlog

from pariledger.errors import InsufficientFunds, InvalidInput
from pariledger.models import BalanceEntry, UserBalance
from pariledger.storage.ledger_store import LedgerStore

log = structlog.get_logger(__name__)


def empty_balance(wallet_address: str, now_ms: int = 0) -> UserBalance:
    return UserBalance(wallet_address=wallet_address, last_updated=now_ms)


def apply_entry(balance: UserBalance, entry: BalanceEntry) -> None:
    """Fold one journal entry into a balance in place."""
    balance.balance += entry.delta
    if entry.kind == "deposit":
        balance.total_deposited += entry.delta
    elif entry.kind == "withdraw":
        balance.total_withdrawn += abs(entry.delta)
    elif entry.kind == "winning":
        balance.total_winnings += entry.delta
    balance.last_updated = entry.timestamp


def reduce_entries(entries: list[BalanceEntry]) -> dict[str, UserBalance]:
    """Rebuild every wallet's balance from the journal, in journal order."""
    balances: dict[str, UserBalance] = {}
    for entry in entries:
        balance = balances.setdefault(entry.wallet_address, empty_balance(entry.wallet_address))
        apply_entry(balance, entry)
    return balances


def _check_funds(balances: dict[str, UserBalance], entries: list[BalanceEntry]) -> None:
    projected = {wallet: b.balance for wallet, b in balances.items()}
    for entry in entries:
        projected[entry.wallet_address] = projected.get(entry.wallet_address, 0.0) + entry.delta
        if entry.delta < 0 and projected[entry.wallet_address] < -1e-9:
            raise InsufficientFunds("Insufficient balance")


class BalanceLedger:
    """
    Spendable balances. Every adjustment is a keyed BalanceEntry; applying an entry whose key
    is already journaled is a no-op, so a partially failed operation can be replayed.
    """

    def __init__(self, store: LedgerStore, clock: Callable[[], int] | None = None) -> None:
        self.store = store
        self.clock = clock or (lambda: int(time.time() * 1000))

    def entry(
        self,
        key: str,
        wallet_address: str,
        delta: float,
        kind: str,
        market_id: str | None = None,
        note: str = "",
    ) -> BalanceEntry:
        return BalanceEntry(
            key=key,
            wallet_address=wallet_address,
            delta=delta,
            kind=kind,
            timestamp=self.clock(),
            market_id=market_id,
            note=note,
        )

    async def get_balance(self, wallet_address: str) -> UserBalance:
        balances = await self.store.load_balances()
        return balances.get(wallet_address) or empty_balance(wallet_address, self.clock())

    async def load_all(self) -> dict[str, UserBalance]:
        return await self.store.load_balances()

    async def history(self, wallet_address: str) -> list[BalanceEntry]:
        journal = await self.store.load_balance_journal()
        return [e for e in journal if e.wallet_address == wallet_address]

    async def apply(self, entries: list[BalanceEntry], check_funds: bool = False) -> list[BalanceEntry]:
        """
        Journal and apply new entries in one cycle. Returns the entries actually applied.
        With check_funds, a debit that would take a wallet below zero rejects the whole batch.
        """
        if not entries:
            return []
        async with self.store.balances_lock:
            journal = await self.store.load_balance_journal()
            seen = {e.key for e in journal}
            fresh = []
            for entry in entries:
                if entry.key in seen:
                    log.info("balance_entry_duplicate", key=entry.key)
                    continue
                seen.add(entry.key)
                fresh.append(entry)
            if not fresh:
                return []
            balances = await self.store.load_balances()
            if check_funds:
                _check_funds(balances, fresh)
            for entry in fresh:
                balance = balances.setdefault(
                    entry.wallet_address, empty_balance(entry.wallet_address, entry.timestamp)
                )
                apply_entry(balance, entry)
            await self.store.save_balance_journal(journal + fresh)
            await self.store.save_balances(balances)
        for entry in fresh:
            log.info(
                "balance_updated",
                wallet=entry.wallet_address,
                delta=round(entry.delta, 9),
                kind=entry.kind,
                key=entry.key,
            )
        return fresh

    async def deposit(self, wallet_address: str, amount: float, reference: str) -> UserBalance:
        if amount <= 0:
            raise InvalidInput("Deposit amount must be positive")
        await self.apply([self.entry(f"deposit:{reference}", wallet_address, amount, "deposit")])
        return await self.get_balance(wallet_address)

    async def withdraw(self, wallet_address: str, amount: float, reference: str) -> UserBalance:
        if amount <= 0:
            raise InvalidInput("Withdrawal amount must be positive")
        await self.apply(
            [self.entry(f"withdraw:{reference}", wallet_address, -amount, "withdraw")],
            check_funds=True,
        )
        return await self.get_balance(wallet_address)

    async def rebuild(self) -> dict[str, UserBalance]:
        """Recompute the balance map from the journal and overwrite the materialized copy."""
        async with self.store.balances_lock:
            journal = await self.store.load_balance_journal()
            balances = reduce_entries(journal)
            await self.store.save_balances(balances)
        log.info("balances_rebuilt", wallets=len(balances), entries=len(journal))
        return balances
