"""Typed load/save of the ledger documents over an ObjectStore."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog

from pariledger.errors import StorageError, StorageUnavailable
from pariledger.models import (
    BalanceEntry,
    CopyTradeAction,
    Market,
    PlatformStats,
    UserAgreement,
    UserBalance,
)
from pariledger.storage.object_store import Document, ObjectStore, ResilientObjectStore

log = structlog.get_logger(__name__)

MARKETS_KEY = "markets.json"
BALANCES_KEY = "balances.json"
BALANCE_JOURNAL_KEY = "balance-ledger.json"
PLATFORM_STATS_KEY = "platform-stats.json"
COPY_TRADES_KEY = "copy-trades.json"
USER_AGREEMENTS_KEY = "user-agreements.json"


def _now_ms() -> int:
    return int(time.time() * 1000)


class MarketSession:
    """Market collection loaded for one load-mutate-save cycle."""

    def __init__(self, markets: list[Market], version: int) -> None:
        self.markets = markets
        self.version = version
        self.dirty = False

    def find(self, market_id: str) -> Market | None:
        return next((m for m in self.markets if m.id == market_id), None)

    def mark_dirty(self) -> None:
        self.dirty = True


class LedgerStore:
    """
    Ledger documents (markets, balances, journal, stats, copy trades, agreements).
    Each document has one asyncio.Lock; writers hold it across their whole cycle.
    Lock order is markets -> balances -> stats.
    """

    def __init__(self, object_store: ObjectStore) -> None:
        self.object_store = object_store
        self.markets_lock = asyncio.Lock()
        self.balances_lock = asyncio.Lock()
        self.stats_lock = asyncio.Lock()
        self.copy_trades_lock = asyncio.Lock()
        self.agreements_lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def _get(self, key: str) -> Document | None:
        try:
            return await self.object_store.get(key)
        except StorageError as e:
            log.error("storage_read_failed", key=key, error=str(e))
            raise StorageUnavailable("Storage is unavailable, please try again later") from e

    async def _put(self, key: str, doc: Document) -> None:
        try:
            await self.object_store.put(key, doc)
        except StorageError as e:
            log.error("storage_write_failed", key=key, error=str(e))
            raise StorageUnavailable("Storage is unavailable, please try again later") from e

    async def flush_pending(self) -> int:
        """Push documents written only to the fallback cache. Returns how many are still pending."""
        if isinstance(self.object_store, ResilientObjectStore):
            return await self.object_store.flush()
        return 0

    async def initialize(self) -> None:
        """Create any missing documents. Idempotent."""
        if self._initialized:
            return
        async with self._init_lock:
            if not self._initialized:
                await self._create_missing()
                self._initialized = True

    async def _create_missing(self) -> None:
        defaults: dict[str, Document] = {
            MARKETS_KEY: {"markets": [], "last_updated": _now_ms(), "version": 0},
            BALANCES_KEY: {},
            BALANCE_JOURNAL_KEY: {"entries": []},
            PLATFORM_STATS_KEY: PlatformStats().model_dump(),
            COPY_TRADES_KEY: {"trades": []},
            USER_AGREEMENTS_KEY: {},
        }
        for key, doc in defaults.items():
            if await self._get(key) is None:
                log.info("document_created", key=key)
                await self._put(key, doc)

    # --- Markets ---
    async def _load_markets_doc(self) -> tuple[list[Market], int]:
        await self.initialize()
        data = await self._get(MARKETS_KEY)
        if not data or not isinstance(data, dict):
            return [], 0
        markets = [Market.model_validate(m) for m in data.get("markets") or []]
        return markets, int(data.get("version", 0))

    async def load_markets(self) -> list[Market]:
        markets, _ = await self._load_markets_doc()
        return markets

    async def save_markets(self, markets: list[Market], version: int = 0) -> int:
        """Write the whole collection. Returns the new version."""
        new_version = version + 1
        await self._put(
            MARKETS_KEY,
            {
                "markets": [m.model_dump() for m in markets],
                "last_updated": _now_ms(),
                "version": new_version,
            },
        )
        return new_version

    @asynccontextmanager
    async def editing_markets(self) -> AsyncIterator[MarketSession]:
        """
        Hold the collection lock, load, yield a session, and save on clean exit when the
        session is dirty. An exception discards the in-memory mutation.
        """
        async with self.markets_lock:
            markets, version = await self._load_markets_doc()
            session = MarketSession(markets, version)
            yield session
            if session.dirty:
                session.version = await self.save_markets(session.markets, version)

    # --- Balances ---
    async def load_balances(self) -> dict[str, UserBalance]:
        await self.initialize()
        data = await self._get(BALANCES_KEY) or {}
        return {wallet: UserBalance.model_validate(b) for wallet, b in data.items()}

    async def save_balances(self, balances: dict[str, UserBalance]) -> None:
        await self._put(BALANCES_KEY, {wallet: b.model_dump() for wallet, b in balances.items()})

    async def load_balance_journal(self) -> list[BalanceEntry]:
        await self.initialize()
        data = await self._get(BALANCE_JOURNAL_KEY) or {}
        return [BalanceEntry.model_validate(e) for e in data.get("entries") or []]

    async def save_balance_journal(self, entries: list[BalanceEntry]) -> None:
        await self._put(BALANCE_JOURNAL_KEY, {"entries": [e.model_dump() for e in entries]})

    # --- Platform stats ---
    async def load_platform_stats(self) -> PlatformStats:
        await self.initialize()
        data = await self._get(PLATFORM_STATS_KEY)
        return PlatformStats.model_validate(data) if data else PlatformStats()

    async def save_platform_stats(self, stats: PlatformStats) -> None:
        await self._put(PLATFORM_STATS_KEY, stats.model_dump())

    # --- Copy trades (append-only audit log) ---
    async def load_copy_trades(self) -> list[CopyTradeAction]:
        await self.initialize()
        data = await self._get(COPY_TRADES_KEY) or {}
        return [CopyTradeAction.model_validate(t) for t in data.get("trades") or []]

    async def append_copy_trade(self, action: CopyTradeAction) -> None:
        async with self.copy_trades_lock:
            trades = await self.load_copy_trades()
            trades.append(action)
            await self._put(COPY_TRADES_KEY, {"trades": [t.model_dump() for t in trades]})

    # --- User agreements ---
    async def load_agreements(self) -> dict[str, UserAgreement]:
        await self.initialize()
        data = await self._get(USER_AGREEMENTS_KEY) or {}
        return {wallet: UserAgreement.model_validate(a) for wallet, a in data.items()}

    async def save_agreement(self, agreement: UserAgreement) -> None:
        async with self.agreements_lock:
            agreements = await self.load_agreements()
            agreements[agreement.wallet_address] = agreement
            await self._put(USER_AGREEMENTS_KEY, {w: a.model_dump() for w, a in agreements.items()})

    async def snapshot(self) -> dict[str, Any]:
        """All documents as plain dicts (debugging / export)."""
        return {
            "markets": [m.model_dump() for m in await self.load_markets()],
            "balances": {w: b.model_dump() for w, b in (await self.load_balances()).items()},
            "platform_stats": (await self.load_platform_stats()).model_dump(),
            "copy_trades": [t.model_dump() for t in await self.load_copy_trades()],
        }
