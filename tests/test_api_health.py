"""
Tests for src/api/health.py - liveness and readiness.
"""
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.database import get_db
from src.main import create_app


@pytest.fixture
async def client(session_factory):
    async def _db():
        async with session_factory() as session:
            yield session

    app = create_app()
    app.dependency_overrides[get_db] = _db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


class TestHealth:
    async def test_liveness(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_ready_when_database_and_redis_up(self, client, mock_redis):
        mock_redis.get.return_value = "2026-10-19T10:00:00+00:00"
        with patch("src.api.health.get_redis", new=AsyncMock(return_value=mock_redis)):
            resp = await client.get("/health/ready")

        body = resp.json()
        assert body["status"] == "ready"
        assert body["checks"] == {"database": True, "redis": True}
        assert body["workers"]["backup_sync"] == "2026-10-19T10:00:00+00:00"

    async def test_degraded_when_redis_down(self, client):
        with patch("src.api.health.get_redis", new=AsyncMock(side_effect=ConnectionError("refused"))):
            resp = await client.get("/health/ready")

        body = resp.json()
        assert body["status"] == "degraded"
        assert body["checks"]["redis"] is False
        assert body["workers"]["backup_sync"] is None

    async def test_correlation_id_is_echoed(self, client):
        resp = await client.get("/health", headers={"X-Correlation-ID": "abc123"})
        assert resp.headers["X-Correlation-ID"] == "abc123"
