"""HTTP surface: status codes, error shape, single resolution path."""

import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN
from pariledger.api.main import app, get_engine


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, **body) -> str:
    resp = client.post("/markets", json={"admin_wallet": ADMIN, "title": "Will it rain?", **body})
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["market_id"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_bet_and_resolve(client):
    market_id = _create(client)
    resp = client.post(
        f"/markets/{market_id}/bets", json={"wallet_address": "alice", "amount": 10, "prediction": "yes"}
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["bet"]["amount"] == pytest.approx(9.75)
    client.post(f"/markets/{market_id}/bets", json={"wallet_address": "bob", "amount": 10, "prediction": "no"})

    resp = client.post(f"/markets/{market_id}/resolve", json={"admin_wallet": ADMIN, "outcome": "yes"})
    assert resp.status_code == 200
    assert resp.json()["data"]["winners"][0]["wallet_address"] == "alice"

    again = client.post(f"/markets/{market_id}/resolve", json={"admin_wallet": ADMIN, "outcome": "yes"})
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_state"

    balance = client.get("/users/alice/balance").json()
    assert balance["total_winnings"] == pytest.approx(19.5 * 0.97)


def test_error_status_mapping(client):
    market_id = _create(client)
    resp = client.post(f"/markets/{market_id}/resolve", json={"admin_wallet": "mallory", "outcome": "yes"})
    assert resp.status_code == 403
    assert resp.json() == {"detail": "Unauthorized: Only admin can resolve markets", "code": "unauthorized"}

    assert client.get("/markets/missing").status_code == 404
    resp = client.post(f"/markets/{market_id}/resolve", json={"admin_wallet": ADMIN})
    assert resp.status_code == 422

    resp = client.post(f"/markets/{market_id}/copy", json={"copier_wallet": "a", "target_wallet": "b"})
    assert resp.status_code == 404


def test_multi_outcome_resolution_same_endpoint(client):
    market_id = _create(client, outcomes=["A", "B"])
    outcomes = client.get(f"/markets/{market_id}").json()["outcomes"]
    a = outcomes[0]["id"]
    client.post(
        f"/markets/{market_id}/bets",
        json={"wallet_address": "alice", "amount": 1, "prediction": "yes", "outcome_id": a},
    )
    resp = client.post(f"/markets/{market_id}/resolve", json={"admin_wallet": ADMIN, "winning_outcome_id": a})
    assert resp.status_code == 200
    assert client.get(f"/markets/{market_id}").json()["winning_outcome_id"] == a


def test_sell_and_reads(client):
    market_id = _create(client)
    bet = client.post(
        f"/markets/{market_id}/bets", json={"wallet_address": "alice", "amount": 2, "prediction": "yes"}
    ).json()["data"]["bet"]
    client.post(f"/markets/{market_id}/bets", json={"wallet_address": "bob", "amount": 2, "prediction": "no"})

    listing = client.get("/markets", params={"status": "active"}).json()
    assert listing["total"] == 1
    assert client.get("/markets/trending").json()[0]["market_id"] == market_id
    chart = client.get(f"/markets/{market_id}/chart").json()
    assert len(chart["points"]) == 3
    preview = client.get(f"/markets/{market_id}/payout", params={"amount": 1, "prediction": "no"})
    assert preview.status_code == 200

    resp = client.delete(f"/markets/{market_id}/bets/{bet['id']}", params={"wallet_address": "alice"})
    assert resp.status_code == 200
    assert resp.json()["data"]["exit_value"] == pytest.approx(3.9)

    portfolio = client.get("/users/bob/portfolio").json()
    assert portfolio["active_positions"] == 1
    board = client.get("/leaderboard", params={"sort_by": "volume"}).json()
    assert [row["rank"] for row in board] == list(range(1, len(board) + 1))
    assert client.get("/leaderboard", params={"sort_by": "luck"}).status_code == 422
    assert client.get("/platform-stats").json()["total_users"] == 1


def test_refund_sweep_endpoint(client):
    resp = client.post("/maintenance/refund-sweep")
    assert resp.status_code == 200
    assert resp.json()["data"]["refunded"] == []
