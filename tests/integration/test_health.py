"""Integration tests for health and root endpoints."""

from unittest.mock import AsyncMock, patch

import pytest


@pytest.mark.integration
class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": "1.0.0"}

    async def test_root(self, client):
        response = await client.get("/")

        assert response.json()["name"] == "Not At Home API"


@pytest.mark.integration
class TestReadiness:
    async def test_ready_without_redis(self, client):
        with (
            patch("notathome.routers.health.ping_database", AsyncMock(return_value=True)),
            patch("notathome.routers.health.ping_redis", AsyncMock(return_value=False)),
        ):
            response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ready",
            "database": True,
            "redis": False,
            "realtime": "local",
        }

    async def test_store_outage_is_503(self, client):
        with (
            patch("notathome.routers.health.ping_database", AsyncMock(return_value=False)),
            patch("notathome.routers.health.ping_redis", AsyncMock(return_value=True)),
        ):
            response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "unavailable"
