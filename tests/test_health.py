"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' when the store answers
  - 503 'degraded' when the store is unreachable
  - No authentication required
  - Lifespan shutdown releases the stores and the bcrypt worker pool
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

from api import main as api_main
from auth.errors import PersistenceError


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _token, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_health_reports_unreachable_database(api_client, monkeypatch):
    """A failing ping turns the response into 503 'degraded' without leaking the driver error."""
    client, _, _ = api_client

    def down() -> None:
        raise PersistenceError("catalog store unavailable: unable to open database file")

    monkeypatch.setattr(client.app.state.rbac_store, "ping", down)
    resp = client.get("/api/v1/health")
    assert resp.status_code == 503
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "unavailable"
    assert "unable to open" not in resp.text


def test_lifespan_closes_stores_and_stops_hash_pool(monkeypatch):
    """Shutdown closes both stores and stops the bcrypt worker pool."""
    events: list[str] = []
    monkeypatch.setattr(api_main, "shutdown_hash_pool", lambda: events.append("hash_pool"))
    target = SimpleNamespace(state=SimpleNamespace())

    async def run() -> None:
        async with api_main.lifespan(target):
            monkeypatch.setattr(target.state.rbac_store, "close", lambda: events.append("rbac_store"))
            monkeypatch.setattr(target.state.user_store, "close", lambda: events.append("user_store"))

    asyncio.run(run())
    assert events == ["rbac_store", "user_store", "hash_pool"]
