"""
Health and metrics HTTP server.

Exposes:
- GET /health: JSON connection status
- GET /metrics: Prometheus-compatible metrics
"""

from __future__ import annotations

from aiohttp import web

from .machine import ConnectionState, ConnectionStateMachine
from .metrics import MetricsCollector


class HealthServer:
    """Lightweight HTTP server for health checks and metrics."""

    def __init__(
        self,
        machine: ConnectionStateMachine,
        host: str = "127.0.0.1",
        port: int = 9091,
        metrics: MetricsCollector | None = None,
    ):
        self._machine = machine
        self._host = host
        self._port = port
        self._metrics = metrics or MetricsCollector()
        self._runner: web.AppRunner | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/metrics", self._metrics_handler)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        state = self._machine.state
        if state is ConnectionState.AUTHENTICATED:
            status = "healthy"
        elif state is ConnectionState.FAILED:
            status = "failed"
        else:
            status = "degraded"
        body = {
            "status": status,
            "state": state.value,
            "attempt": self._machine.attempt,
            "last_close_code": self._machine.last_close_code,
            "failure_reason": self._machine.failure_reason,
        }
        return web.json_response(body, status=503 if status == "failed" else 200)

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(
            text=self._metrics.to_prometheus(),
            content_type="text/plain",
        )
