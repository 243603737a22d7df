"""
HTTP monitoring endpoint for the watcher.

GET /metrics  Prometheus exposition of the pipeline registry
GET /healthz  orchestrator status; 503 while shutting down or after a
              failed run, so a supervisor can restart or alert
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import orjson
from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

if TYPE_CHECKING:
    from prometheus_client.registry import CollectorRegistry

logger = logging.getLogger(__name__)

StatusFn = Callable[[], Mapping[str, Any]]


def health_problems(status: Mapping[str, Any]) -> list[str]:
    """Reasons the watcher should be reported unhealthy (empty when healthy)."""
    problems: list[str] = []
    if status.get("shutdown_requested"):
        problems.append("shutting down")
    if status.get("last_run_status") == "failed":
        problems.append(f"last run failed: {status.get('last_error') or 'unknown error'}")
    return problems


class MonitoringServer:
    """aiohttp site exposing the pipeline registry and watcher health."""

    def __init__(
        self,
        registry: CollectorRegistry,
        status_fn: StatusFn | None = None,
        host: str = "0.0.0.0",
        port: int = 9090,
    ) -> None:
        self._registry = registry
        self._status_fn = status_fn
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/metrics", self._metrics)
        app.router.add_get("/healthz", self._healthz)
        return app

    async def _metrics(self, request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(self._registry),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )

    async def _healthz(self, request: web.Request) -> web.Response:
        status = dict(self._status_fn()) if self._status_fn is not None else {}
        problems = health_problems(status)
        status["healthy"] = not problems
        if problems:
            status["problems"] = problems
        return web.Response(
            body=orjson.dumps(status, default=str),
            status=503 if problems else 200,
            content_type="application/json",
        )

    async def start(self) -> None:
        if self._runner is not None:
            return
        runner = web.AppRunner(self.build_app(), access_log=None)
        await runner.setup()
        try:
            await web.TCPSite(runner, self._host, self._port).start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        logger.info("Monitoring endpoint listening", extra={"port": self._port})

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Monitoring endpoint stopped")
