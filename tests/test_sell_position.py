"""Early exit: remove the bet, shrink the pool, credit the marked value."""

import pytest

from conftest import ADMIN, run


def test_exit_removes_bet_and_credits_value(engine, new_market, bet):
    market_id = new_market()
    mine = bet(market_id, "alice", 10.0, "yes")
    bet(market_id, "bob", 30.0, "yes")
    bet(market_id, "carol", 20.0, "no")
    before = run(engine.get_market(market_id))
    expected = mine["amount"] / before.total_yes_amount * before.total_pool

    result = run(engine.sell_position(market_id, mine["id"], "alice"))
    assert result.success, result.error
    assert result.data["exit_value"] == pytest.approx(expected)

    after = run(engine.get_market(market_id))
    assert after.find_bet(mine["id"]) is None
    assert after.total_yes_amount == pytest.approx(before.total_yes_amount - mine["amount"])
    assert after.total_no_amount == pytest.approx(before.total_no_amount)
    assert "alice" not in after.unique_yes_bettors

    alice = run(engine.get_balance("alice"))
    assert alice.balance == pytest.approx(expected - 10.0)
    assert alice.total_withdrawn == pytest.approx(expected)
    history = run(engine.balances.history("alice"))
    assert history[-1].key == f"exit:{mine['id']}"
    assert history[-1].kind == "withdraw"


def test_exit_keeps_bettor_with_remaining_bets(engine, new_market, bet):
    market_id = new_market()
    first = bet(market_id, "alice", 1.0, "yes")
    bet(market_id, "alice", 1.0, "yes")
    assert run(engine.sell_position(market_id, first["id"], "alice")).success
    assert run(engine.get_market(market_id)).unique_yes_bettors == ["alice"]


def test_exit_on_outcome_bet(engine, new_market, bet):
    market_id = new_market(outcomes=["A", "B"])
    a, b = (o.id for o in run(engine.get_market(market_id)).outcomes)
    mine = bet(market_id, "alice", 10.0, "yes", outcome_id=a)
    bet(market_id, "bob", 10.0, "yes", outcome_id=b)
    result = run(engine.sell_position(market_id, mine["id"], "alice"))
    assert result.data["exit_value"] == pytest.approx(19.5)
    market = run(engine.get_market(market_id))
    assert market.find_outcome(a).total_yes_amount == pytest.approx(0.0)
    assert market.total_yes_amount == pytest.approx(9.75)


def test_exit_failures(engine, new_market, bet):
    market_id = new_market()
    mine = bet(market_id, "alice", 1.0, "yes")
    assert run(engine.sell_position(market_id, "missing", "alice")).code == "not_found"
    assert run(engine.sell_position(market_id, mine["id"], "bob")).code == "unauthorized"
    assert run(engine.close_market(market_id, ADMIN)).success
    assert run(engine.sell_position(market_id, mine["id"], "alice")).code == "invalid_state"
