"""
test_health.py — Tests for GET /health.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeScheduler


@pytest.fixture()
async def health_client(build_service, make_post, app_client_for):
    service = build_service(FakeScheduler([make_post("us-1", 1)]))
    async with app_client_for(service) as client:
        yield client, service


async def test_health_returns_200(health_client):
    client, _ = health_client
    response = await client.get("/health")
    assert response.status_code == 200


async def test_health_response_shape(health_client):
    client, _ = health_client
    data = (await client.get("/health")).json()
    assert data["status"] == "ok"
    assert "version" in data
    assert "database" in data
    assert "environment" in data
    assert data["cache"] == {"entries": {}, "in_flight": [], "background_tasks": 0}


async def test_health_db_disconnected_in_test_mode(health_client):
    """In test mode, db_client.client is None → database should be 'disconnected'."""
    client, _ = health_client
    data = (await client.get("/health")).json()
    assert data["database"] == "disconnected"


async def test_health_db_connected_when_ping_succeeds(health_client, monkeypatch):
    import watchfeed.core.database as db_module

    client, _ = health_client
    fake = MagicMock()
    fake.admin.command = AsyncMock(return_value={"ok": 1})
    monkeypatch.setattr(db_module.db_client, "client", fake)

    data = (await client.get("/health")).json()
    assert data["database"] == "connected"


async def test_health_lists_cache_entries(health_client):
    client, service = health_client
    await client.get("/news")
    await service.cache.drain()

    data = (await client.get("/health")).json()
    assert "all" in data["cache"]["entries"]
    assert data["cache"]["entries"]["all"] >= 0
