"""
Metrics endpoint for Prometheus scraping.

Serves ``/metrics`` from the engine's registry and a ``/health`` summary of
the last refresh cycle over a small aiohttp server.
"""

import logging
from typing import Callable, Dict, Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .engine_metrics import EngineMetrics


class MetricsEndpoint:
    """
    Metrics endpoint handler for Prometheus scraping.
    """

    def __init__(self, metrics: EngineMetrics,
                 health_provider: Optional[Callable[[], Dict[str, object]]] = None):
        """
        Initialize metrics endpoint.

        Args:
            metrics: Engine metrics whose registry is exposed
            health_provider: Callable returning the health payload
        """
        self.metrics = metrics
        self.health_provider = health_provider
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self._runner: Optional[web.AppRunner] = None

    def render(self) -> bytes:
        """Metrics in the Prometheus text format."""
        return generate_latest(self.metrics.registry)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(
            body=self.render(),
            headers={
                'Content-Type': CONTENT_TYPE_LATEST,
                'Cache-Control': 'no-cache, no-store, must-revalidate'
            }
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        payload = self.health_provider() if self.health_provider else {}
        return web.json_response({'status': 'ok', **payload})

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/metrics', self.handle_metrics)
        app.router.add_get('/health', self.handle_health)
        return app

    async def start(self, host: str, port: int) -> None:
        """Start serving on ``host:port``."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        self.logger.info(f"Metrics endpoint listening on {host}:{port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self.logger.info("Metrics endpoint stopped")
