"""
Tests for the HTTP gateway.

Test coverage:
- Read endpoints and their JSON shape
- Action endpoints and error-to-status mapping
- Operator-only admin endpoint and ledger outages
- Winner names on close
- CORS origins from config lists or comma-separated strings
"""

import pytest
from fastapi.testclient import TestClient

from lottery_client.errors import RemoteError
from lottery_client.web_server import LotteryWebServer

from tests.conftest import OTHER_PLAYER_KEY, OPERATOR_KEY, PLAYER_KEY, act_as


@pytest.fixture
def api(session):
    server = LotteryWebServer({"server": {"cors_origins": ["http://localhost:3000"]}}, session)
    return TestClient(server.app)


def test_health(api):
    response = api.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["ledger"]["status"] == "healthy"


def test_list_lotteries_newest_first(api, ledger):
    ledger.seed_lottery(ticket_price=10)
    ledger.seed_lottery(ticket_price=50_000_000_000_000_000)

    response = api.get("/api/lotteries")

    assert response.status_code == 200
    lotteries = response.json()["lotteries"]
    assert [item["id"] for item in lotteries] == [2, 1]
    assert lotteries[0]["ticketPriceWei"] == "50000000000000000"
    assert lotteries[0]["ticketPriceEth"] == "0.050000"
    assert lotteries[0]["winners"] == [{"address": None, "name": None}] * 3


def test_unknown_lottery_is_404(api):
    assert api.get("/api/lotteries/5").status_code == 404


def test_create_and_buy(api, ledger, signer):
    created = api.post("/api/lotteries", json={"ticket_price": "0.001"})
    assert created.status_code == 200
    assert created.json()["outcome"] == "succeeded"
    lottery_id = created.json()["lottery"]["id"]

    act_as(signer, PLAYER_KEY)
    bought = api.post(f"/api/lotteries/{lottery_id}/tickets", json={"count": 2, "name": "bob"})

    assert bought.status_code == 200
    body = bought.json()
    assert body["txHash"].startswith("0x")
    assert body["lottery"]["totalTickets"] == 2
    assert body["lottery"]["userTickets"] == 2
    assert body["lottery"]["totalPoolWei"] == str(2 * 10**15)


def test_invalid_price_is_400(api, ledger):
    response = api.post("/api/lotteries", json={"ticket_price": "free"})

    assert response.status_code == 400
    assert ledger.write_count == 0


def test_rejected_signature_is_409(api, ledger):
    lottery_id = ledger.seed_lottery(ticket_price=10)
    api.get("/api/lotteries")
    ledger.reject_next = True

    response = api.post(f"/api/lotteries/{lottery_id}/tickets", json={"count": 1, "name": "bob"})

    assert response.status_code == 409


def test_disconnected_wallet_is_503(api, signer):
    signer.disconnect()

    response = api.post("/api/lotteries", json={"ticket_price": "1"})

    assert response.status_code == 503


def test_close_with_too_few_tickets_is_400(api, ledger):
    lottery_id = ledger.seed_lottery(ticket_price=10)
    api.get("/api/lotteries")

    response = api.post(f"/api/lotteries/{lottery_id}/close")

    assert response.status_code == 400
    assert ledger.write_count == 0


def test_admin_requires_operator(api, signer):
    assert api.get("/api/admin").status_code == 200

    act_as(signer, PLAYER_KEY)

    assert api.get("/api/admin").status_code == 403


def test_admin_outage_is_502_not_403(api, ledger):
    ledger.fail_on["is_operator"] = RemoteError("node unreachable")

    response = api.get("/api/admin")

    assert response.status_code == 502


def test_close_returns_winner_names(api, ledger, signer):
    lottery_id = api.post("/api/lotteries", json={"ticket_price": "0.001"}).json()["lottery"]["id"]
    for key, name in ((PLAYER_KEY, "bob"), (OTHER_PLAYER_KEY, "carol"), (OPERATOR_KEY, "op")):
        act_as(signer, key)
        assert api.post(f"/api/lotteries/{lottery_id}/tickets", json={"count": 1, "name": name}).status_code == 200

    closed = api.post(f"/api/lotteries/{lottery_id}/close")

    assert closed.status_code == 200
    winners = closed.json()["lottery"]["winners"]
    assert [winner["name"] for winner in winners] == ["bob", "carol", "op"]
    listed = api.get("/api/lotteries").json()["lotteries"][0]["winners"]
    assert [winner["address"] for winner in listed] == [winner["address"] for winner in winners]
    assert [winner["name"] for winner in listed] == [None, None, None]


def test_cors_origins_accepts_comma_separated_string(session):
    server = LotteryWebServer({"server": {"cors_origins": "http://a.test, http://b.test"}}, session)
    client = TestClient(server.app)

    allowed = client.get("/api/health", headers={"Origin": "http://b.test"})
    refused = client.get("/api/health", headers={"Origin": "http://a"})

    assert server.cors_origins == ["http://a.test", "http://b.test"]
    assert allowed.headers["access-control-allow-origin"] == "http://b.test"
    assert "access-control-allow-origin" not in refused.headers
