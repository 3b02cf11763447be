"""Binary and multi-outcome resolution."""

import pytest

from conftest import ADMIN, run

FEE = 0.975  # 1 - platform fee


def _seed_worked_example(new_market, bet):
    """Yes=100, No=50 from other wallets, then carol bets 10 gross on yes."""
    market_id = new_market()
    bet(market_id, "alice", 100 / FEE, "yes")
    bet(market_id, "bob", 50 / FEE, "no")
    bet(market_id, "carol", 10.0, "yes")
    return market_id


def test_worked_example_payout(engine, new_market, bet):
    market_id = _seed_worked_example(new_market, bet)
    result = run(engine.resolve_market(market_id, "yes", ADMIN))
    assert result.success, result.error
    winners = {w["wallet_address"]: w for w in result.data["winners"]}
    assert set(winners) == {"alice", "carol"}
    assert winners["carol"]["gross"] == pytest.approx(14.19, abs=0.005)
    assert winners["carol"]["payout"] == pytest.approx(13.76, abs=0.005)

    carol = run(engine.get_balance("carol"))
    assert carol.total_winnings == pytest.approx(13.76, abs=0.005)
    assert carol.balance == pytest.approx(13.76 - 10.0, abs=0.005)
    assert carol.total_deposited == 0


def test_conservation(engine, new_market, bet):
    market_id = _seed_worked_example(new_market, bet)
    before = run(engine.get_market(market_id))
    pool = before.total_pool
    result = run(engine.resolve_market(market_id, "yes", ADMIN))
    paid = sum(w["payout"] for w in result.data["winners"])
    assert paid + result.data["settlement_fees"] == pytest.approx(pool)

    market = run(engine.get_market(market_id))
    assert market.status == "resolved"
    assert market.outcome == "yes"
    assert market.resolved_at is not None
    assert market.settlement_fees_collected == pytest.approx(result.data["settlement_fees"])


def test_multiple_bets_grouped_per_wallet(engine, new_market, bet):
    market_id = new_market()
    bet(market_id, "alice", 4.0, "yes")
    bet(market_id, "alice", 6.0, "yes")
    bet(market_id, "bob", 10.0, "no")
    result = run(engine.resolve_market(market_id, "yes", ADMIN))
    assert len(result.data["winners"]) == 1
    winner = result.data["winners"][0]
    assert winner["stake"] == pytest.approx(9.75)
    assert winner["gross"] == pytest.approx(19.5)
    history = run(engine.balances.history("alice"))
    assert [e.key for e in history if e.kind == "winning"] == [f"payout:{market_id}:alice"]


def test_resolve_twice_fails_without_second_payout(engine, new_market, bet):
    market_id = _seed_worked_example(new_market, bet)
    assert run(engine.resolve_market(market_id, "yes", ADMIN)).success
    balance = run(engine.get_balance("carol")).balance

    again = run(engine.resolve_market(market_id, "yes", ADMIN))
    assert not again.success
    assert again.code == "invalid_state"
    assert "already resolved" in again.error
    assert run(engine.get_balance("carol")).balance == pytest.approx(balance)


def test_non_admin_cannot_resolve(engine, new_market, bet):
    market_id = _seed_worked_example(new_market, bet)
    result = run(engine.resolve_market(market_id, "yes", "mallory"))
    assert not result.success
    assert result.code == "unauthorized"
    market = run(engine.get_market(market_id))
    assert market.status == "active"


def test_resolve_closed_market(engine, new_market, bet):
    market_id = new_market()
    bet(market_id, "alice", 1.0, "no")
    bet(market_id, "bob", 1.0, "yes")
    assert run(engine.close_market(market_id, ADMIN)).success
    assert run(engine.resolve_market(market_id, "no", ADMIN)).success


def test_zero_backers_house_keeps_pool(engine, new_market, bet):
    market_id = new_market()
    bet(market_id, "alice", 10.0, "yes")
    result = run(engine.resolve_market(market_id, "no", ADMIN))
    assert result.success
    assert result.data["winners"] == []
    market = run(engine.get_market(market_id))
    assert market.house_retained == pytest.approx(9.75)
    assert market.settlement_fees_collected == 0
    stats = run(engine.platform_stats())
    assert stats.total_fees == pytest.approx(10.0)
    assert stats.total_pool_money == 0
    assert run(engine.get_balance("alice")).total_winnings == 0


def test_empty_market_resolves_without_payouts(engine, new_market):
    market_id = new_market()
    result = run(engine.resolve_market(market_id, "yes", ADMIN))
    assert result.success
    assert result.data["pool"] == 0


def test_multi_outcome_pool_spans_all_outcomes(engine, new_market, bet):
    market_id = new_market(outcomes=["A", "B", "C"])
    a, b, c = (o.id for o in run(engine.get_market(market_id)).outcomes)
    bet(market_id, "alice", 10 / FEE, "yes", outcome_id=a)
    bet(market_id, "bob", 20 / FEE, "yes", outcome_id=b)
    bet(market_id, "carol", 30 / FEE, "yes", outcome_id=c)
    bet(market_id, "dave", 5 / FEE, "no", outcome_id=a)

    result = run(engine.resolve_multi_outcome_market(market_id, a, ADMIN))
    assert result.success, result.error
    assert result.data["pool"] == pytest.approx(65.0)
    (winner,) = result.data["winners"]
    assert winner["wallet_address"] == "alice"
    assert winner["gross"] == pytest.approx(65.0)
    assert winner["payout"] == pytest.approx(65.0 * 0.97)

    market = run(engine.get_market(market_id))
    assert market.winning_outcome_id == a
    assert [o.is_winner for o in market.outcomes] == [True, False, False]
    assert market.status == "resolved"


def test_multi_outcome_resolution_checks(engine, new_market):
    multi = new_market(outcomes=["A", "B"])
    simple = new_market()
    assert run(engine.resolve_multi_outcome_market(multi, "missing", ADMIN)).code == "not_found"
    assert run(engine.resolve_multi_outcome_market(simple, "x", ADMIN)).code == "invalid_state"
    assert run(engine.resolve_market(multi, "yes", ADMIN)).code == "invalid_state"
    assert run(engine.resolve_multi_outcome_market(multi, "x", "mallory")).code == "unauthorized"
