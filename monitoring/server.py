"""
============================================================================
INTERNET MONITOR - WEB SERVER
============================================================================
aiohttp server for the dashboard: the WebSocket subscriber endpoint plus a
thin JSON API over the MonitoringEngine.

Routes
------
    GET    /health                             liveness + engine stats
    GET    /ws                                 WebSocket (snapshot, then deltas)
    GET    /api/status                         monitoring flag, current speed
    GET    /api/settings                       current settings
    POST   /api/settings                       partial update (400 if invalid)
    POST   /api/test                           manual speed test (429 if capped)
    POST   /api/ping                           manual ping {"host": "..."}
    GET    /api/next-test                      next scheduled speed test
    GET    /api/history                        ?limit=&offset=&paginated=
    DELETE /api/history                        clear speed-test history
    GET    /api/monthly-usage                  bytes used vs. data cap
    GET    /api/live-monitoring-history/{addr} ?timeRange=15m|30m|1h|6h|24h|7d
    POST   /api/test-notification              sample notification

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import json
import time
from typing import Optional

from aiohttp import WSMsgType, web

from config.settings import Settings, get_settings
from exceptions import ConfigurationError, InternetMonitorException
from monitoring.monitor import MonitoringEngine
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("WebServer")


# ============================================================================
# WEBSOCKET TRANSPORT
# ============================================================================

class WebSocketTransport:
    """Adapts an aiohttp ``WebSocketResponse`` to the subscriber protocol."""

    def __init__(self, ws: web.WebSocketResponse):
        self.ws = ws

    @property
    def is_open(self) -> bool:
        return not self.ws.closed

    async def send(self, text: str) -> None:
        await self.ws.send_str(text)


# ============================================================================
# WEB SERVER
# ============================================================================

class WebServer:
    """
    Attributes
    ----------
    _app : aiohttp.web.Application
    _runner : aiohttp.web.AppRunner
    _site : aiohttp.web.TCPSite
    _start_time : float          — epoch seconds when the server started
    _request_count : int         — total requests served
    """

    def __init__(self, engine: MonitoringEngine, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.engine = engine
        self._host = self.settings.web.host
        self._port = self.settings.web.port
        self._app = self.build_app()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._start_time: float = 0.0
        self._request_count: int = 0

    @property
    def app(self) -> web.Application:
        return self._app

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[self._error_middleware])
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/ws", self._handle_ws)
        app.router.add_get("/api/status", self._handle_status)
        app.router.add_get("/api/settings", self._handle_get_settings)
        app.router.add_post("/api/settings", self._handle_post_settings)
        app.router.add_post("/api/test", self._handle_speed_test)
        app.router.add_post("/api/ping", self._handle_ping)
        app.router.add_get("/api/next-test", self._handle_next_test)
        app.router.add_get("/api/history", self._handle_get_history)
        app.router.add_delete("/api/history", self._handle_clear_history)
        app.router.add_get("/api/monthly-usage", self._handle_monthly_usage)
        app.router.add_get(
            "/api/live-monitoring-history/{address}", self._handle_live_history
        )
        app.router.add_post("/api/test-notification", self._handle_test_notification)
        return app

    async def start(self) -> None:
        """Bind and start serving."""
        self._start_time = time.time()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        logger.info(f"✓ WebServer listening on {self._host}:{self._port}")

    async def stop(self) -> None:
        """Gracefully shut down the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        logger.info("✓ WebServer stopped")

    # ------------------------------------------------------------------
    # MIDDLEWARE
    # ------------------------------------------------------------------

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler):
        self._request_count += 1
        try:
            return await handler(request)
        except InternetMonitorException as e:
            if e.http_status >= 500:
                logger.error(f"{request.method} {request.path} failed: {e.log_format()}")
            else:
                logger.info(f"{request.method} {request.path} -> {e.http_status}: {e.message}")
            return web.json_response(e.to_response(), status=e.http_status)

    # ------------------------------------------------------------------
    # ROUTE HANDLERS
    # ------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /health — detailed health JSON."""
        uptime_seconds = time.time() - self._start_time if self._start_time else 0
        return web.json_response({
            "status": "healthy",
            "uptime_seconds": round(uptime_seconds, 1),
            "uptime_human": TimeHelper.seconds_to_human_readable(int(uptime_seconds)),
            "requests_served": self._request_count,
            "timestamp": TimeHelper.get_utc_now().isoformat(),
            "app_name": self.settings.app_name,
            "app_version": self.settings.app_version,
            "engine": self.engine.get_stats(),
        })

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        """GET /ws — subscriber connection."""
        ws = web.WebSocketResponse(heartbeat=self.settings.web.heartbeat)
        await ws.prepare(request)

        transport = WebSocketTransport(ws)
        await self.engine.subscribe(transport)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.warning(f"WebSocket error: {ws.exception()}")
        finally:
            self.engine.hub.unsubscribe(transport)
        return ws

    async def _handle_status(self, request: web.Request) -> web.Response:
        state = self.engine.state
        return web.json_response({
            "isMonitoring": state.is_monitoring,
            "currentSpeed": state.current_speed,
            "connectionLost": state.connection_lost,
            "liveMonitoring": state.live_to_dict(),
        })

    async def _handle_get_settings(self, request: web.Request) -> web.Response:
        return web.json_response(self.engine.state.settings.to_wire())

    async def _handle_post_settings(self, request: web.Request) -> web.Response:
        try:
            patch = await request.json()
        except json.JSONDecodeError:
            raise ConfigurationError("Request body is not valid JSON")
        if not isinstance(patch, dict):
            raise ConfigurationError("Settings must be a JSON object")

        updated = await self.engine.update_settings(patch)
        return web.json_response({"success": True, "settings": updated.to_wire()})

    async def _handle_speed_test(self, request: web.Request) -> web.Response:
        result = await self.engine.run_bandwidth_test()
        return web.json_response(result.to_dict())

    async def _handle_ping(self, request: web.Request) -> web.Response:
        host = None
        if request.can_read_body:
            try:
                body = await request.json()
            except json.JSONDecodeError:
                raise ConfigurationError("Request body is not valid JSON")
            if isinstance(body, dict):
                host = body.get("host")
        return web.json_response(await self.engine.ping(host))

    async def _handle_next_test(self, request: web.Request) -> web.Response:
        next_run = self.engine.scheduler.next_bandwidth_run
        return web.json_response({
            "nextTest": next_run.isoformat() if next_run else None,
            "interval": self.engine.state.settings.test_interval,
        })

    async def _handle_get_history(self, request: web.Request) -> web.Response:
        query = request.query
        try:
            limit = int(query.get("limit", 50))
            offset = int(query.get("offset", 0))
        except ValueError:
            raise ConfigurationError("limit and offset must be integers")
        paginated = "offset" in query or query.get("paginated") == "true"
        return web.json_response(await self.engine.history_page(limit, offset, paginated))

    async def _handle_clear_history(self, request: web.Request) -> web.Response:
        deleted = await self.engine.clear_history()
        return web.json_response({"success": True, "deleted": deleted})

    async def _handle_monthly_usage(self, request: web.Request) -> web.Response:
        return web.json_response(await self.engine.monthly_usage())

    async def _handle_live_history(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        time_range = request.query.get("timeRange", "1h")
        return web.json_response({"history": await self.engine.live_history(address, time_range)})

    async def _handle_test_notification(self, request: web.Request) -> web.Response:
        logger.info("Test notification requested")
        return web.json_response(await self.engine.send_test_notification())
