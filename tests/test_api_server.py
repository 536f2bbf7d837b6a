from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api_server import app, get_llm, get_market_client, get_session_factory
from conftest import FakeLLM
from errors import MarketDataError, RateLimitError
from market_data import Quote

BTC = {"asset_id": "bitcoin", "symbol": "BTC", "name": "Bitcoin", "amount": 100, "buy_price": 10,
       "category": "Crypto", "purchase_date": "2024-01-01"}
ETH = {"asset_id": "ethereum", "symbol": "ETH", "name": "Ethereum", "amount": 100, "buy_price": 10,
       "category": "Crypto", "purchase_date": "2024-02-01"}


class FakeMarket:
    def __init__(self, quotes=None, error=None):
        self.quotes = quotes or []
        self.error = error
        self.requested = []

    def get_prices(self, coin_ids=None):
        self.requested.append(coin_ids)
        if self.error:
            raise self.error
        return self.quotes


@pytest.fixture()
def market():
    return FakeMarket([Quote(id="bitcoin", symbol="BTC", name="Bitcoin", current_price=20.0)])


@pytest.fixture()
def llm():
    return FakeLLM()


@pytest.fixture()
def client(session_factory, market, llm):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_market_client] = lambda: market
    app.dependency_overrides[get_llm] = lambda: llm
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_categorize(client):
    res = client.post("/tools/categorize_transaction", json={"description": "Uber para o trabalho"})

    assert res.status_code == 200
    assert res.json() == {"category": "Transporte", "type": "expense"}


def test_consolidate_with_given_quotes(client, market):
    res = client.post("/tools/consolidate", json={"holdings": [BTC, BTC, ETH], "quotes": {"bitcoin": 20.0}})

    assert res.status_code == 200
    body = res.json()
    assert [p["asset_id"] for p in body] == ["bitcoin", "ethereum"]
    assert body[0]["holdings_count"] == 2
    assert body[0]["current_value"] == pytest.approx(400)
    assert body[1]["price_is_stale"] is True
    assert market.requested == []


def test_consolidate_fetches_missing_quotes(client, market):
    res = client.post("/tools/consolidate", json={"holdings": [BTC, ETH]})

    assert res.status_code == 200
    assert market.requested == [["bitcoin", "ethereum"]]


def test_unknown_category_is_422(client):
    res = client.post("/tools/consolidate", json={"holdings": [dict(BTC, category="Beanie Babies")], "quotes": {}})

    assert res.status_code == 422
    assert res.json()["error"] == "ValidationError"


def test_rate_limit_is_429(client, market):
    market.error = RateLimitError("Too Many Requests")

    res = client.post("/tools/consolidate", json={"holdings": [BTC]})

    assert res.status_code == 429


def test_market_outage_returns_stale_positions(client, market):
    market.error = MarketDataError("CoinGecko request failed after 3 attempts")

    res = client.post("/tools/portfolio_analytics", json={"holdings": [BTC, ETH]})

    assert res.status_code == 200
    positions = res.json()["positions"]
    assert all(p["price_is_stale"] for p in positions)
    assert [p["current_price"] for p in positions] == [10.0, 10.0]


def test_analytics_reports_risk_flags(client):
    res = client.post("/tools/portfolio_analytics", json={"holdings": [BTC, ETH], "quotes": {"bitcoin": 20.0, "ethereum": 5.0}})

    body = res.json()
    assert res.status_code == 200
    assert body["metrics"]["best_performer"] == "bitcoin"
    assert body["metrics"]["worst_performer"] == "ethereum"
    assert body["categories"][0]["percentage"] == pytest.approx(100)
    assert {f["code"] for f in body["risk_flags"]} == {"concentration", "volatile_exposure", "low_diversification"}


def test_heatmap_cells(client):
    res = client.post("/tools/heatmap", json={"holdings": [BTC, ETH], "quotes": {"bitcoin": 20.0, "ethereum": 5.0}})

    cells = res.json()["cells"]
    assert [c["asset_id"] for c in cells] == ["bitcoin", "ethereum"]
    assert cells[0]["color"] == "#059669"
    assert cells[1]["color"] == "#DC2626"


def test_prices(client, market):
    res = client.get("/tools/prices", params={"ids": "bitcoin"})

    assert res.json()["quotes"][0]["current_price"] == 20.0
    assert market.requested == [["bitcoin"]]


def test_assistant_message_adds_transaction(client, llm, user, session_factory):
    llm.answers.append({"type": "action", "action": "add_transaction", "amount": 50, "description": "ifood"})

    res = client.post("/tools/assistant/message", json={"user_id": user.id, "message": "gastei 50 reais no ifood"})

    assert res.status_code == 200
    assert res.json()["is_success"] is True

    csv = client.get(f"/users/{user.id}/transactions.csv")
    assert csv.status_code == 200
    assert "Alimentação" in csv.content.decode("utf-8-sig")


def test_assistant_requires_message(client, user):
    res = client.post("/tools/assistant/message", json={"user_id": user.id, "message": ""})

    assert res.status_code == 422
