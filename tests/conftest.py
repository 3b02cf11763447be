"""Shared fixtures: in-memory ledger, controllable clock, engine."""

import asyncio

import pytest

from pariledger.engine.core import EngineConfig, MarketEngine
from pariledger.storage.ledger_store import LedgerStore
from pariledger.storage.object_store import MemoryObjectStore

ADMIN = "admin-wallet"
HOUR_MS = 60 * 60 * 1000
T0 = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def object_store():
    return MemoryObjectStore()


@pytest.fixture
def store(object_store):
    return LedgerStore(object_store)


@pytest.fixture
def engine(store, clock):
    return MarketEngine(store, EngineConfig(admin_wallet=ADMIN), clock=clock)


@pytest.fixture
def new_market(engine):
    """Factory: create a market as admin and return its id."""

    def _create(title: str = "Will it rain tomorrow?", **kwargs) -> str:
        result = run(engine.create_market(ADMIN, title, **kwargs))
        assert result.success, result.error
        return result.data["market_id"]

    return _create


@pytest.fixture
def bet(engine):
    """Factory: place a bet that must succeed and return the stored Bet dict."""

    def _place(market_id: str, wallet: str, amount: float, prediction: str, outcome_id: str | None = None) -> dict:
        if outcome_id is None:
            result = run(engine.place_bet(market_id, wallet, amount, prediction, f"sig-{wallet}"))
        else:
            result = run(engine.place_bet_on_outcome(market_id, outcome_id, wallet, amount, prediction, f"sig-{wallet}"))
        assert result.success, result.error
        return result.data["bet"]

    return _place
