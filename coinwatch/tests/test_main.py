"""Tests for the FastAPI app wiring.

Covers:
- Lifespan creates provider, watchlist and store on a temporary database
- Health endpoint
- Watchlist routes reachable over HTTP without touching the network
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from coinwatch.main import app
from coinwatch.services.market_store import MarketDataStore
from coinwatch.watchlist import Watchlist


@pytest.fixture()
def client(tmp_path, monkeypatch):
    """App client whose database lives in a temporary file."""
    monkeypatch.setattr("coinwatch.config.DATABASE_URL", "")
    monkeypatch.setattr("coinwatch.config.DATABASE_PATH", str(tmp_path / "test.db"))
    with TestClient(app) as c:
        yield c


class TestApp:
    def test_lifespan_wires_state(self, client):
        assert isinstance(app.state.watchlist, Watchlist)
        assert isinstance(app.state.store, MarketDataStore)

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_empty_watchlist(self, client):
        resp = client.get("/api/watchlist")
        assert resp.status_code == 200
        body = resp.json()
        assert body["ids"] == []
        assert body["status"] in ("loading", "success")
        assert body["assets"] == []

    def test_reload(self, client):
        resp = client.post("/api/watchlist/reload")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_add_empty_query(self, client):
        resp = client.post("/api/watchlist", json={"query": " "})
        assert resp.status_code == 400

    def test_remove_missing(self, client):
        resp = client.delete("/api/watchlist/bitcoin")
        assert resp.status_code == 404
