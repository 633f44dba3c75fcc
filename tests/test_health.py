from unittest.mock import AsyncMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from wchic.routes import health


def _client():
    app = FastAPI()
    app.include_router(health.router)
    return TestClient(app)


def _patched(database, redis):
    return (
        patch.object(health, "database_health_check", AsyncMock(return_value=database)),
        patch.object(health, "redis_health_check", AsyncMock(return_value=redis)),
    )


def test_healthy_when_all_checks_pass():
    db, cache = _patched({"status": "healthy"}, {"status": "healthy"})
    with db, cache:
        response = _client().get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["podio_mappings"]["workspaces"] == "franqueadora,campinas,litoral_norte,rio_bh"


def test_redis_outage_only_degrades():
    db, cache = _patched({"status": "healthy"}, {"status": "unhealthy", "error": "refused"})
    with db, cache:
        response = _client().get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["checks"]["redis"]["error"] == "refused"


def test_database_outage_is_unhealthy():
    db, cache = _patched({"status": "unhealthy", "error": "timeout"}, {"status": "healthy"})
    with db, cache:
        response = _client().get("/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


def test_liveness():
    assert _client().get("/health/live").json()["status"] == "alive"
