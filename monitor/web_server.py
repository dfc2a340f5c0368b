"""HTTP surface for inspecting health/stats and triggering a cycle."""

import logging

from aiohttp import web

import config
from monitor.health import HealthReporter
from monitor.scheduler import CycleScheduler

logger = logging.getLogger(__name__)


class MonitorWebServer:
    def __init__(self, scheduler: CycleScheduler, health: HealthReporter) -> None:
        self.scheduler = scheduler
        self.health = health
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._handle_root)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/stats", self._handle_stats)
        app.router.add_post("/trigger", self._handle_trigger)
        return app

    async def start(self, host: str | None = None, port: int | None = None) -> None:
        bind_host = host or config.WEB_HOST
        bind_port = int(port or config.WEB_PORT)
        self.runner = web.AppRunner(self.build_app())
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, bind_host, bind_port)
        await self.site.start()
        logger.info("Monitor HTTP server listening on %s:%s", bind_host, bind_port)

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()
            self.runner = None

    async def _handle_root(self, request: web.Request) -> web.Response:
        return web.json_response({"message": config.SERVICE_NAME, "version": config.SERVICE_VERSION})

    async def _handle_health(self, request: web.Request) -> web.Response:
        status = await self.health.check()
        return web.json_response(status.to_dict())

    async def _handle_stats(self, request: web.Request) -> web.Response:
        orchestrator = self.scheduler.orchestrator
        body = orchestrator.current_stats().to_dict()
        body["running"] = self.scheduler.is_running
        body["tracker"] = orchestrator.tracker.snapshot()
        body["provider_http"] = orchestrator.provider.runtime_stats()
        return web.json_response(body)

    async def _handle_trigger(self, request: web.Request) -> web.Response:
        try:
            result = await self.scheduler.trigger_manual()
        except Exception as exc:
            logger.exception("Manual trigger failed")
            return web.json_response({"success": False, "message": "Failed to trigger manual cycle", "error": str(exc)}, status=500)
        body = {"success": result.success, "message": result.message}
        if result.stats is not None:
            body["stats"] = result.stats.to_dict()
        return web.json_response(body)
