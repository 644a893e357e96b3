"""
Tests for src/api/health.py - liveness and readiness endpoints.
"""
import json
from datetime import datetime
from unittest.mock import AsyncMock, patch

from src.api.health import VERSION, health_check, readiness_check


class TestHealthCheck:
    async def test_returns_healthy(self):
        """Liveness check always returns healthy with timestamp and version."""
        result = await health_check()
        assert result["status"] == "healthy"
        assert result["version"] == VERSION == "1.0.0"
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None


class TestReadinessCheck:
    def _redis(self, ping=None):
        redis = AsyncMock()
        redis.ping = ping or AsyncMock(return_value=True)
        return redis

    async def test_all_healthy_returns_ready(self):
        mock_db = AsyncMock()
        with patch("src.utils.dedup.get_redis", new_callable=AsyncMock, return_value=self._redis()):
            response = await readiness_check(db=mock_db)

        body = json.loads(response.body)
        assert response.status_code == 200
        assert body["status"] == "ready"
        assert body["checks"] == {"database": True, "redis": True}
        assert body["pending_background_tasks"] == 0

    async def test_db_failure_returns_degraded(self):
        mock_db = AsyncMock()
        mock_db.execute = AsyncMock(side_effect=Exception("connection refused"))
        with patch("src.utils.dedup.get_redis", new_callable=AsyncMock, return_value=self._redis()):
            response = await readiness_check(db=mock_db)

        body = json.loads(response.body)
        assert response.status_code == 503
        assert body["status"] == "degraded"
        assert body["checks"] == {"database": False, "redis": True}

    async def test_redis_failure_returns_degraded(self):
        """Wizard and OTP state live in Redis, so Redis down means not ready."""
        redis = self._redis(ping=AsyncMock(side_effect=ConnectionError("redis down")))
        with patch("src.utils.dedup.get_redis", new_callable=AsyncMock, return_value=redis):
            response = await readiness_check(db=AsyncMock())

        assert response.status_code == 503
        assert json.loads(response.body)["checks"]["redis"] is False

    async def test_reports_pending_durable_tasks(self):
        with (
            patch("src.utils.dedup.get_redis", new_callable=AsyncMock, return_value=self._redis()),
            patch("src.api.health.durable_task_count", return_value=2),
        ):
            response = await readiness_check(db=AsyncMock())

        assert json.loads(response.body)["pending_background_tasks"] == 2
