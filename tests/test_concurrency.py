"""Concurrent operations over a store that yields to the event loop on every call."""

import asyncio

import pytest

from conftest import ADMIN, run
from pariledger.errors import StorageError
from pariledger.storage.ledger_store import MARKETS_KEY
from pariledger.storage.object_store import MemoryObjectStore

FEE = 0.975


class YieldingStore(MemoryObjectStore):
    """Memory store that suspends on each get/put, like a network round trip."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_market_writes = False

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def put(self, key, doc):
        await asyncio.sleep(0)
        if self.fail_market_writes and key == MARKETS_KEY:
            raise StorageError("markets write refused")
        await super().put(key, doc)


@pytest.fixture
def object_store():
    return YieldingStore()


def test_concurrent_bets_all_land(engine, new_market):
    market_id = new_market()

    async def scenario():
        return await asyncio.gather(
            *(engine.place_bet(market_id, f"wallet-{i}", 10.0, "yes", f"sig-{i}") for i in range(10))
        )

    results = run(scenario())
    assert all(r.success for r in results)
    market = run(engine.get_market(market_id))
    assert len(market.bets) == 10
    assert market.total_yes_amount == pytest.approx(10 * 9.75)
    assert len(market.unique_yes_bettors) == 10
    assert len(run(engine.balances.load_all())) == 10
    assert run(engine.platform_stats()).total_users == 10


def test_bet_racing_resolution_is_paid_or_rejected(engine, new_market, bet):
    market_id = new_market()
    bet(market_id, "alice", 10.0, "yes")
    bet(market_id, "bob", 10.0, "no")

    async def scenario():
        return await asyncio.gather(
            engine.place_bet(market_id, "carol", 10.0, "yes", "sig-carol"),
            engine.resolve_market(market_id, "yes", ADMIN),
        )

    placed, resolved = run(scenario())
    assert resolved.success
    market = run(engine.get_market(market_id))
    paid = {w["wallet_address"] for w in resolved.data["winners"]}
    if placed.success:
        assert "carol" in paid
        assert run(engine.get_balance("carol")).total_winnings > 0
    else:
        assert placed.code == "invalid_state"
        assert "carol" not in market.bettors()
        assert "carol" not in paid
    payouts = sum(w["payout"] for w in resolved.data["winners"])
    assert payouts + resolved.data["settlement_fees"] == pytest.approx(market.total_pool)


def test_concurrent_copy_trades_stay_within_balance(engine, new_market, bet):
    market_id = new_market()
    bet(market_id, "whale", 10.0, "yes")
    assert run(engine.deposit("copier", 5.0, "dep-1")).success

    async def scenario():
        return await asyncio.gather(
            engine.copy_trade(market_id, "copier", "whale", "sig-a"),
            engine.copy_trade(market_id, "copier", "whale", "sig-b"),
        )

    results = run(scenario())
    assert sorted(r.success for r in results) == [False, True]
    assert [r.code for r in results if not r.success] == ["insufficient_funds"]
    assert run(engine.get_balance("copier")).balance == pytest.approx(0.0)
    market = run(engine.get_market(market_id))
    copied = engine.get_user_bets(market, "copier")
    assert sum(b.amount + b.platform_fee for b in copied) == pytest.approx(5.0)
    assert len(run(engine.copy_trade_log())) == 1


def test_copy_trade_voids_debits_when_market_save_fails(engine, new_market, bet, object_store):
    market_id = new_market()
    bet(market_id, "whale", 6 / FEE, "yes")
    bet(market_id, "whale", 4 / FEE, "no")
    run(engine.deposit("copier", 5.0, "dep-1"))

    object_store.fail_market_writes = True
    result = run(engine.copy_trade(market_id, "copier", "whale", "sig-1"))
    object_store.fail_market_writes = False

    assert result.code == "storage_unavailable"
    assert run(engine.get_balance("copier")).balance == pytest.approx(5.0)
    keys = [e.key for e in run(engine.balances.history("copier"))]
    assert len([k for k in keys if k.startswith("void:bet:")]) == 2
    assert engine.get_user_bets(run(engine.get_market(market_id)), "copier") == []
    assert run(engine.copy_trade_log()) == []
