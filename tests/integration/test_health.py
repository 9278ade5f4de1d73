"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.features.matching.dependencies import get_connection_manager, get_matching_engine
from app.main import app
from app.services.realtime.connection_manager import ConnectionManager

HEALTHY_DB = {
    "healthy": True,
    "service": "database_pool",
    "pool_stats": {"pool_size": 2, "pool_available": 2, "requests_waiting": 0, "requests_errors": 0},
}


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_matching_engine] = lambda: engine
    app.dependency_overrides[get_connection_manager] = ConnectionManager
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthz_endpoint(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"X-Request-ID": "trace-123"})

    assert response.headers["X-Request-ID"] == "trace-123"


def test_readyz_reports_stopped_scheduler(client, monkeypatch):
    monkeypatch.setattr("app.routes.health.db_health_check", AsyncMock(return_value=HEALTHY_DB))

    data = client.get("/readyz").json()

    assert data["checks"]["database"]["ok"] is True
    assert data["checks"]["matching"]["ok"] is False
    assert data["overall_ok"] is False


def test_readyz_database_unhealthy(client, monkeypatch):
    monkeypatch.setattr(
        "app.routes.health.db_health_check",
        AsyncMock(return_value={"healthy": False, "error": "Pool not initialized"}),
    )

    data = client.get("/readyz").json()

    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Pool not initialized"


def test_readyz_database_exception(client, monkeypatch):
    monkeypatch.setattr(
        "app.routes.health.db_health_check", AsyncMock(side_effect=RuntimeError("down"))
    )

    data = client.get("/readyz").json()

    assert data["checks"]["database"]["ok"] is False
    assert "RuntimeError" in data["checks"]["database"]["error"]


def test_readyz_all_healthy(client, engine, monkeypatch):
    monkeypatch.setattr("app.routes.health.db_health_check", AsyncMock(return_value=HEALTHY_DB))
    monkeypatch.setattr(
        engine.job, "health_check", lambda: {"healthy": True, "scheduled": True, "last_run_time": None}
    )

    data = client.get("/readyz").json()

    assert data["checks"]["configuration"]["ok"] is True
    assert data["overall_ok"] is True


def test_matching_health(client, engine):
    data = client.get("/health/matching").json()

    assert data["job_name"] == "matching"
    assert data["registry"] == {"waiters_working": 0, "waiters_busy": 0, "queued_users": 0}
    assert data["busy_waiter_ids"] == []
    assert data["realtime_connections"] == 0
    assert data["health"]["service"] == "matching_job"
