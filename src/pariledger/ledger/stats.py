"""Platform statistics - derived from the market collection, cached for dashboard reads."""

from __future__ import annotations

import time
from typing import Callable

import structlog

from pariledger.models import Market, PlatformStats
from pariledger.storage.ledger_store import LedgerStore

log = structlog.get_logger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


def market_volume_since(market: Market, cutoff_ms: int) -> float:
    """Gross volume (stake plus entry fee) of the bets placed at or after cutoff_ms."""
    return sum(b.amount + b.platform_fee for b in market.bets if b.timestamp >= cutoff_ms)


def compute_platform_stats(markets: list[Market], now_ms: int) -> PlatformStats:
    """Reconstruct every counter from markets and their bets."""
    cutoff = now_ms - DAY_MS
    wallets: set[str] = set()
    total_volume = 0.0
    total_fees = 0.0
    pool_money = 0.0
    volume_24h = 0.0
    fees_24h = 0.0
    active = 0
    for market in markets:
        total_volume += market.total_volume
        total_fees += market.platform_fees_collected + market.settlement_fees_collected + market.house_retained
        if market.status == "active":
            active += 1
        if market.status != "resolved" and market.refunded_at is None:
            pool_money += market.total_pool
        volume_24h += market_volume_since(market, cutoff)
        for bet in market.bets:
            wallets.add(bet.wallet_address)
            if bet.timestamp >= cutoff:
                fees_24h += bet.platform_fee
        if market.resolved_at is not None and market.resolved_at >= cutoff:
            fees_24h += market.settlement_fees_collected
    return PlatformStats(
        total_volume=total_volume,
        total_fees=total_fees,
        total_users=len(wallets),
        active_markets=active,
        total_pool_money=pool_money,
        last_24h_volume=volume_24h,
        last_24h_fees=fees_24h,
        last_updated=now_ms,
    )


class PlatformStatsAggregator:
    """Keeps platform-stats.json consistent with each committed market mutation."""

    def __init__(self, store: LedgerStore, clock: Callable[[], int] | None = None) -> None:
        self.store = store
        self.clock = clock or (lambda: int(time.time() * 1000))

    async def load(self) -> PlatformStats:
        return await self.store.load_platform_stats()

    async def refresh(self) -> PlatformStats:
        """
        Recompute from the stored collection under the stats lock. Each refresh reads the
        collection after the previous one saved, so a later save never carries older counts.
        """
        async with self.store.stats_lock:
            markets = await self.store.load_markets()
            stats = compute_platform_stats(markets, self.clock())
            await self.store.save_platform_stats(stats)
        log.debug(
            "platform_stats_refreshed",
            total_volume=round(stats.total_volume, 6),
            total_users=stats.total_users,
            active_markets=stats.active_markets,
        )
        return stats

    async def rebuild(self) -> PlatformStats:
        """Manual repair entry point (`pari stats rebuild`)."""
        return await self.refresh()
