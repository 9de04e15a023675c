"""
Tests for health and readiness endpoints.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from saas_backend.api.routers import health
from saas_backend.core.config import settings
from saas_backend.events.bus import ReliableEventBus
from saas_backend.events.dispatcher import EventDispatcher
from saas_backend.events.idempotency import ConsumerIdempotencyStore
from saas_backend.events.store import EventStore


@pytest.fixture
def app(engine, session_factory) -> FastAPI:
    store = EventStore(session_factory)
    bus = ReliableEventBus(store)
    app = FastAPI()
    app.state.engine = engine
    app.state.event_bus = bus
    app.state.dispatcher = EventDispatcher(
        store, bus, ConsumerIdempotencyStore(session_factory), idle_interval=0.01
    )
    app.include_router(health.router, prefix="/api/v1")
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == settings.APP_NAME
        assert data["version"] == settings.APP_VERSION
        assert "timestamp" in data


class TestReadinessEndpoint:
    @pytest.mark.asyncio
    async def test_ready_with_running_dispatcher(self, app, client, monkeypatch):
        monkeypatch.setattr(settings, "EVENT_DISPATCHER_ENABLED", True)
        await app.state.dispatcher.start()
        try:
            response = await client.get("/api/v1/ready")
        finally:
            await app.state.dispatcher.stop()

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["database"] == "connected"
        assert data["dispatcher"] == "running"
        assert data["fallback_queue"] == 0

    @pytest.mark.asyncio
    async def test_stopped_dispatcher_is_not_ready(self, client, monkeypatch):
        monkeypatch.setattr(settings, "EVENT_DISPATCHER_ENABLED", True)

        response = await client.get("/api/v1/ready")

        assert response.status_code == 503
        assert response.json()["dispatcher"] == "stopped"

    @pytest.mark.asyncio
    async def test_disabled_dispatcher_is_ready(self, client, monkeypatch):
        monkeypatch.setattr(settings, "EVENT_DISPATCHER_ENABLED", False)

        response = await client.get("/api/v1/ready")

        assert response.status_code == 200
        assert response.json()["dispatcher"] == "disabled"

    @pytest.mark.asyncio
    async def test_database_down_is_not_ready(self, client, monkeypatch):
        monkeypatch.setattr(settings, "EVENT_DISPATCHER_ENABLED", False)
        unhealthy = {"status": "unhealthy", "database": "disconnected", "error": "refused"}

        with patch(
            "saas_backend.api.routers.health.get_db_health",
            new=AsyncMock(return_value=unhealthy),
        ):
            response = await client.get("/api/v1/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
        assert response.json()["database"] == "disconnected"
