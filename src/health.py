

"""
Health check HTTP server for container orchestration.

Provides /health with the outcome of the last console poll per server.
"""
from typing import Any, Callable, Dict, Optional

from aiohttp import web
import structlog

logger = structlog.get_logger()

SERVICE_NAME = "sdtd-monitor"

StatusSource = Callable[[], Dict[str, Dict[str, Any]]]


class HealthCheckServer:
    """Small HTTP server exposing poll health."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        status_source: Optional[StatusSource] = None,
    ):
        """
        Initialize health check server.

        Args:
            host: Host to bind to (default: 0.0.0.0)
            port: Port to bind to (default: 8080)
            status_source: Returns {server_tag: collector status dict}
        """
        self.host = host
        self.port = port
        self.status_source = status_source
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Configure HTTP routes."""
        self.app.router.add_get("/health", self.health_handler)
        self.app.router.add_get("/", self.root_handler)

    def _servers(self) -> Dict[str, Dict[str, Any]]:
        if self.status_source is None:
            return {}
        return self.status_source()

    async def health_handler(self, request: web.Request) -> web.Response:
        """
        Health check endpoint.

        The process is healthy while it is serving; a server whose last poll
        failed is reported as "degraded" but still answers 200 so the
        container is not restarted for a game server outage.
        """
        servers = self._servers()
        degraded = any(info.get("last_error") for info in servers.values())
        return web.json_response({
            "status": "degraded" if degraded else "healthy",
            "service": SERVICE_NAME,
            "servers": servers,
        })

    async def root_handler(self, request: web.Request) -> web.Response:
        return web.json_response({
            "service": SERVICE_NAME,
            "endpoints": {
                "health": "/health"
            }
        })

    async def start(self) -> None:
        """Start the health check server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(
            self.runner,
            self.host,
            self.port
        )
        await self.site.start()

        logger.info(
            "health_server_started",
            host=self.host,
            port=self.port
        )

    async def stop(self) -> None:
        """Stop the health check server."""
        if self.site is not None:
            await self.site.stop()

        if self.runner is not None:
            await self.runner.cleanup()

        logger.info("health_server_stopped")
