from unittest.mock import AsyncMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from wchic.core.config import settings
from wchic.middleware import rate_limiter
from wchic.middleware.rate_limiter import RateLimitingMiddleware
from tests.fakes import FakeRedis


def _app(monkeypatch, limit=2):
    monkeypatch.setattr(settings, "rate_limit_requests", limit)
    monkeypatch.setattr(settings, "rate_limit_period", 60)
    app = FastAPI()
    app.add_middleware(RateLimitingMiddleware)

    @app.get("/leads")
    async def leads():
        return {"ok": True}

    @app.post("/webhook/podio")
    async def podio():
        return {"ok": True}

    return app


def test_requests_over_limit_are_rejected(monkeypatch):
    redis = FakeRedis()
    with patch.object(rate_limiter, "get_redis_client", AsyncMock(return_value=redis)):
        client = TestClient(_app(monkeypatch))
        first = client.get("/leads")
        client.get("/leads")
        third = client.get("/leads")

    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert third.status_code == 429
    assert third.json()["code"] == "RateLimitError"
    assert "Retry-After" in third.headers


def test_webhooks_are_exempt(monkeypatch):
    redis = FakeRedis()
    with patch.object(rate_limiter, "get_redis_client", AsyncMock(return_value=redis)):
        client = TestClient(_app(monkeypatch, limit=1))
        responses = [client.post("/webhook/podio") for _ in range(3)]

    assert [r.status_code for r in responses] == [200, 200, 200]
    assert redis.store == {}


def test_fails_open_without_redis(monkeypatch):
    with patch.object(rate_limiter, "get_redis_client", AsyncMock(side_effect=ConnectionError("down"))):
        response = TestClient(_app(monkeypatch, limit=1)).get("/leads")
    assert response.status_code == 200
