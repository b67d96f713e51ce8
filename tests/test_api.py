# tests/test_api.py
import time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from arcade import config, service
from arcade.simulator import SimulatedChain, SimulatedLedger
from auth.api import make_token, parse_token
from conftest import ME, UNIT


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(config, "DATABASE_URL", None)
    chain = SimulatedChain(confirm_seconds=0, resolve_seconds=0, round_seconds=3600)
    monkeypatch.setattr(service, "ledger_factory", lambda identity: SimulatedLedger(chain, identity))

    from app import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth(client):
    r = client.post("/auth/session", json={"address": ME})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['token']}"}


def poll(client, path, headers, pred, tries=100):
    for _ in range(tries):
        body = client.get(path, headers=headers).json()
        if pred(body):
            return body
        time.sleep(0.01)
    raise AssertionError(f"{path} never settled")


def test_token_round_trip():
    token = make_token(ME, secret="s")
    assert parse_token(token, secret="s") == ME
    assert parse_token(token, secret="other") is None
    assert parse_token(make_token("not-an-address", secret="s"), secret="s") is None
    assert parse_token(make_token(ME, secret="s", ttl=-10), secret="s") is None


def test_health_and_me(client, auth):
    assert client.get("/health").json() == {"ok": True}
    assert client.get("/auth/me", headers=auth).json() == {"address": ME}


def test_routes_need_token(client):
    assert client.get("/games/dice").status_code == 401
    assert client.get("/jackpot", headers={"Authorization": "Bearer junk"}).status_code == 401
    assert client.post("/auth/session", json={"address": "0x123"}).status_code == 422


def test_empty_game_state(client, auth):
    body = client.get("/games/slots", headers=auth).json()
    assert body == {
        "game": "slots", "wager": None, "potential_payout": None,
        "slow": False, "error": None, "history": [],
    }


def test_unknown_game(client, auth):
    assert client.get("/games/roulette", headers=auth).status_code == 404
    r = client.post("/games/roulette/wager", headers=auth, json={"stake": 1})
    assert r.status_code == 404


def test_place_wager_and_poll_result(client, auth):
    r = client.post(
        "/games/dice/wager",
        headers=auth,
        json={"stake": UNIT, "parameters": {"direction": "over", "target": 7}},
    )
    assert r.status_code == 200
    assert r.json()["wager"]["status"] in ("awaiting_resolution", "resolved")

    body = poll(client, "/games/dice", auth, lambda b: b["wager"]["status"] == "resolved")
    assert len(body["history"]) == 1
    assert body["history"][0]["target"] == 7

    # 離開遊戲清掉歷史
    assert client.post("/games/dice/leave", headers=auth).json() == {"ok": True}
    assert client.get("/games/dice", headers=auth).json()["history"] == []


def test_bad_wager_is_400(client, auth):
    r = client.post(
        "/games/dice/wager",
        headers=auth,
        json={"stake": UNIT, "parameters": {"direction": "over", "target": 13}},
    )
    assert r.status_code == 400
    assert "target" in r.json()["detail"]
    assert client.post("/games/flip/wager", headers=auth, json={"stake": 0}).status_code == 422


def test_jackpot_state_and_chance(client, auth):
    body = client.get("/jackpot", headers=auth).json()
    assert body["round_id"] == 1
    assert body["pool_total"] == 0
    assert 0 < body["remaining_seconds"] <= 3600
    assert body["countdown"]["minutes"] in range(60)

    r = client.post("/games/jackpot/wager", headers=auth, json={"stake": 3 * UNIT})
    assert r.status_code == 200
    body = poll(client, "/jackpot", auth, lambda b: b["user_total"] == 3 * UNIT)
    assert Decimal(body["win_chance"]) == Decimal("100")
    assert body["contributions"][0]["amount"] == 3 * UNIT

    chance = client.get("/jackpot/chance", headers=auth, params={"amount": UNIT}).json()
    assert Decimal(chance["win_chance"]) == Decimal("25")
    assert client.get("/jackpot/chance", headers=auth, params={"amount": 0}).status_code == 422


def test_lightning_shows_potential_payout(client, auth):
    r = client.post("/games/lightning/wager", headers=auth, json={"stake": 2 * UNIT, "parameters": {"lane_id": 4}})
    assert r.status_code == 200
    assert Decimal(r.json()["potential_payout"]) == Decimal("8")
