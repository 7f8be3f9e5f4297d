"""
Unit tests for the stats HTTP API.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from track_gateway.server import TrackGatewayServer
from track_gateway.session import Session
from track_gateway.stats_api import StatsServer, create_app


@pytest.fixture
def gateway(gateway_env):
    server = TrackGatewayServer(gateway_env)
    known = Session("10.0.0.5:40123")
    _ = known.identify("865585040014007", "GL33CG")
    _ = known.record_frame()
    asyncio.run(server.registry.try_insert(known.connection_id, known))
    asyncio.run(server.registry.try_insert("10.0.0.6:5000", Session("10.0.0.6:5000")))
    return server


@pytest.fixture
def client(gateway):
    return TestClient(create_app(gateway))


class TestStatsApi:
    """Tests for the stats API routes"""

    def test_healthz(self, client):
        """Test the liveness route"""
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_stats(self, client):
        """Test that /api/stats mirrors the server stats"""
        data = client.get("/api/stats").json()

        assert data["total_connections"] == 2
        assert data["identified_devices"] == 1
        assert data["max_connections"] == 10
        assert "uptime" in data

    def test_sessions(self, client):
        """Test the live session listing"""
        data = client.get("/api/sessions").json()

        by_id = {item["connection_id"]: item for item in data}
        assert set(by_id) == {"10.0.0.5:40123", "10.0.0.6:5000"}
        assert by_id["10.0.0.5:40123"]["device_id"] == "865585040014007"
        assert by_id["10.0.0.5:40123"]["state"] == "active"
        assert by_id["10.0.0.6:5000"]["device_id"] is None

    def test_single_session(self, client):
        """Test lookup of one session by connection id"""
        response = client.get("/api/sessions/10.0.0.5:40123")

        assert response.status_code == 200
        assert response.json()["message_count"] == 1

    def test_unknown_session(self, client):
        """Test that an unknown connection id is a 404"""
        response = client.get("/api/sessions/1.1.1.1:1")

        assert response.status_code == 404

    def test_cors_header(self, client):
        """Test that browser dashboards may read the API"""
        response = client.get("/api/stats", headers={"Origin": "http://dashboard.local"})

        assert response.headers["access-control-allow-origin"] == "*"


class TestStatsServer:
    """Tests for the uvicorn wrapper"""

    @pytest.mark.asyncio
    async def test_stop_signals_uvicorn(self, gateway_env):
        """Test that stop() asks uvicorn to exit"""
        stats_server = StatsServer(TrackGatewayServer(gateway_env), host="127.0.0.1", port=0)
        stats_server.uvi_server.serve = AsyncMock()

        await stats_server.start()
        await stats_server.stop()

        stats_server.uvi_server.serve.assert_awaited_once()
        assert stats_server.uvi_server.should_exit is True
        assert stats_server.running is False
