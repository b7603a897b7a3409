# Copyright (c) 2025 SDTD Monitor contributors
#
# This file is part of SDTD Monitor.
#
# SDTD Monitor is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact the SDTD Monitor maintainers
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial


import pytest
from unittest.mock import Mock
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from health import HealthCheckServer


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def health_server():
    """Create a HealthCheckServer instance."""
    return HealthCheckServer()


def status_source(last_error=None):
    return lambda: {
        "main": {
            "running": True,
            "last_poll": "2025-01-01T00:00:00+00:00",
            "last_success": None if last_error else "2025-01-01T00:00:00+00:00",
            "last_error": last_error,
            "player_count": None if last_error else 3,
        }
    }


# ============================================================================
# Initialization
# ============================================================================

class TestHealthCheckServerInit:
    """Test HealthCheckServer initialization."""

    def test_init_default_params(self):
        server = HealthCheckServer()

        assert server.host == "0.0.0.0"
        assert server.port == 8080
        assert isinstance(server.app, web.Application)
        assert server.runner is None
        assert server.site is None

    def test_init_custom_host_port(self):
        server = HealthCheckServer(host="127.0.0.1", port=9000)

        assert server.host == "127.0.0.1"
        assert server.port == 9000


# ============================================================================
# Endpoints
# ============================================================================

class TestHealthEndpoint:
    """Test /health and / responses."""

    @pytest.mark.asyncio
    async def test_healthy_without_servers(self, health_server):
        async with TestClient(TestServer(health_server.app)) as client:
            resp = await client.get('/health')
            data = await resp.json()

        assert resp.status == 200
        assert data == {"status": "healthy", "service": "sdtd-monitor", "servers": {}}

    @pytest.mark.asyncio
    async def test_reports_server_status(self):
        server = HealthCheckServer(status_source=status_source())

        async with TestClient(TestServer(server.app)) as client:
            resp = await client.get('/health')
            data = await resp.json()

        assert data["status"] == "healthy"
        assert data["servers"]["main"]["player_count"] == 3

    @pytest.mark.asyncio
    async def test_failed_poll_is_degraded_but_200(self):
        server = HealthCheckServer(status_source=status_source("Connection refused"))

        async with TestClient(TestServer(server.app)) as client:
            resp = await client.get('/health')
            data = await resp.json()

        assert resp.status == 200
        assert data["status"] == "degraded"
        assert data["servers"]["main"]["last_error"] == "Connection refused"

    @pytest.mark.asyncio
    async def test_root_lists_endpoints(self, health_server):
        resp = await health_server.root_handler(Mock(spec=web.Request))

        assert resp.status == 200
        assert resp.content_type == 'application/json'

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        server = HealthCheckServer(host="127.0.0.1", port=0)

        await server.start()
        assert server.runner is not None
        assert server.site is not None
        await server.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, health_server):
        await health_server.stop()
