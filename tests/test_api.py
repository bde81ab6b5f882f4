"""Tests for the pool health API router."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from portal_db import api
from portal_db.pool_metrics import PoolMetrics


@pytest.fixture
def client():
    app = FastAPI()
    app.include_router(api.router)
    return TestClient(app)


def make_metrics(health_score=100.0, suspicious=0):
    metrics = PoolMetrics()
    metrics.update_connection_counts(total=2, active=1, idle=1, waiting=0, max_connections=4, healthy=2)
    metrics.performance.health_score = health_score
    metrics.security.suspicious_activity = suspicious
    return metrics


def test_pool_health_disabled_before_init(client, monkeypatch):
    monkeypatch.setattr(api, "get_pool_metrics", lambda: None)

    response = client.get("/api/database/pool-health")

    assert response.status_code == 200
    assert response.json()["status"] == "disabled"


def test_pool_health_healthy(client, monkeypatch):
    monkeypatch.setattr(api, "get_pool_metrics", lambda: make_metrics())

    body = client.get("/api/database/pool-health").json()

    assert body["status"] == "healthy"
    assert body["pool"]["total_connections"] == 2
    assert body["pool"]["performance"]["connection_utilization"] == 25.0


def test_pool_health_degraded_on_findings(client, monkeypatch):
    monkeypatch.setattr(api, "get_pool_metrics", lambda: make_metrics(suspicious=1))

    assert client.get("/api/database/pool-health").json()["status"] == "degraded"


def test_pool_health_degraded_on_low_score(client, monkeypatch):
    monkeypatch.setattr(api, "get_pool_metrics", lambda: make_metrics(health_score=25.0))

    assert client.get("/api/database/pool-health").json()["status"] == "degraded"


def test_prometheus_endpoint(client):
    response = client.get("/api/database/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "portal_db_pool_connections" in response.text
