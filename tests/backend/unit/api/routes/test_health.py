"""Tests for the health, readiness and liveness endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes.health import router


@pytest.fixture
def subscriptions() -> MagicMock:
    manager = MagicMock()
    manager.get_stats.return_value = {"total_connections": 2, "total_chatrooms": 1, "shutting_down": False}
    return manager


@pytest.fixture
def app(mock_db_pool: MagicMock, subscriptions: MagicMock) -> FastAPI:
    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.state.db_pool = mock_db_pool
    app.state.ws_manager = subscriptions
    app.state.supervisor = MagicMock()
    app.state.supervisor.get_stats.return_value = {"active": 0, "completed": 3, "failed": 0, "accepting": True}
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture
def probe(mock_db_pool: MagicMock) -> AsyncMock:
    """The connection every probe runs ``SELECT 1`` on."""
    conn = mock_db_pool.acquire.return_value.__aenter__.return_value
    conn.fetchval.return_value = 1
    return conn


class TestProbes:
    def test_live(self, client: TestClient) -> None:
        response = client.get("/api/health/live")

        assert response.status_code == 200
        assert response.json() == {"alive": True}

    def test_ready(self, client: TestClient, probe: AsyncMock) -> None:
        response = client.get("/api/health/ready")

        assert response.status_code == 200
        assert response.json() == {"ready": True}
        probe.fetchval.assert_awaited_once_with("SELECT 1")

    def test_not_ready_is_503(self, client: TestClient, probe: AsyncMock) -> None:
        probe.fetchval.side_effect = ConnectionError("postgres unreachable")

        response = client.get("/api/health/ready")

        assert response.status_code == 503
        assert response.json() == {"ready": False, "error": "postgres unreachable"}


class TestHealthReport:
    def test_healthy_report(self, client: TestClient, probe: AsyncMock) -> None:
        report = client.get("/api/health").json()

        assert report["status"] == "healthy"
        assert "degraded" not in report
        assert report["version"] == "1.0.0-test"
        assert report["pipeline_mode"] == "multi_agent"
        assert report["database"]["healthy"] is True
        assert report["websocket"]["total_chatrooms"] == 1
        assert report["tasks"]["completed"] == 3
        assert report["event_bus"] == {"enabled": False}

    def test_bus_stats_reported_when_running(self, client: TestClient, app: FastAPI, probe: AsyncMock) -> None:
        app.state.event_bus = MagicMock()
        app.state.event_bus.get_stats.return_value = {"enabled": True, "running": True, "relayed": 4}

        assert client.get("/api/health").json()["event_bus"]["relayed"] == 4

    def test_database_failure_degrades(self, client: TestClient, probe: AsyncMock) -> None:
        probe.fetchval.side_effect = ConnectionError("postgres unreachable")

        report = client.get("/api/health").json()

        assert report["status"] == "degraded"
        assert report["degraded"] == ["database"]
        assert report["database"]["healthy"] is False

    def test_shutdown_degrades(self, client: TestClient, probe: AsyncMock, subscriptions: MagicMock) -> None:
        subscriptions.get_stats.return_value = {"total_connections": 0, "shutting_down": True}

        report = client.get("/api/health").json()

        assert report["status"] == "degraded"
        assert report["degraded"] == ["shutting_down"]
