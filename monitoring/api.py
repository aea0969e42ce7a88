"""
Monitor API Endpoints.

============================================================
PURPOSE
============================================================
HTTP API over stored metrics and alerts.

PRINCIPLES:
- ALL endpoints are READ-ONLY
- Unknown hosts or resources read as empty data, not 404
- Alert events are pushed on /ws/alerts

============================================================
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from aiohttp import web

from core.exceptions import ValidationError

from .alerts.manager import AlertManager
from .notifications.stream import AlertStreamHub
from .recorder import MetricsReader


logger = logging.getLogger(__name__)


# ============================================================
# JSON ENCODER
# ============================================================

class MonitorEncoder(json.JSONEncoder):
    """JSON encoder for API payloads."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    return web.Response(
        text=json.dumps(data, cls=MonitorEncoder),
        status=status,
        content_type="application/json",
    )


def ok(data: Any) -> web.Response:
    return json_response({"status": "ok", "data": data})


def error(message: str, status: int) -> web.Response:
    return json_response({"status": "error", "error": message}, status=status)


# ============================================================
# API HANDLERS
# ============================================================

SERVER_DOMAINS = ("system", "storage", "network", "docker", "rtsp")


class MonitorAPI:
    """Request handlers. Store reads run in worker threads."""

    def __init__(
        self,
        reader: MetricsReader,
        alert_manager: Optional[AlertManager] = None,
        stream: Optional[AlertStreamHub] = None,
    ):
        self._reader = reader
        self._alert_manager = alert_manager
        self._stream = stream

    async def _call(self, func, *args):
        return await asyncio.to_thread(func, *args)

    def _bad_request(self, request: web.Request, e: ValidationError) -> web.Response:
        logger.debug(f"Rejected {request.path}: {e.message}")
        return error(e.message, 400)

    async def list_servers(self, request: web.Request) -> web.Response:
        """GET /api/metrics/servers"""
        return ok(await self._call(self._reader.list_hosts))

    async def get_server(self, request: web.Request) -> web.Response:
        """
        GET /api/metrics/server/{host_id}

        Current snapshot of every domain for one host.
        """
        host_id = request.match_info["host_id"]
        try:
            data = {}
            for domain in SERVER_DOMAINS:
                data[domain] = await self._call(self._reader.query_domain, host_id, domain)
            data["info"] = await self._call(self._reader.query_current, host_id, "server", "info")
        except ValidationError as e:
            return self._bad_request(request, e)
        return ok(data)

    async def get_domain(self, request: web.Request) -> web.Response:
        """GET /api/metrics/{host_id}/{domain}"""
        host_id = request.match_info["host_id"]
        domain = request.match_info["domain"]
        try:
            data = await self._call(self._reader.query_domain, host_id, domain)
        except ValidationError as e:
            return self._bad_request(request, e)
        return ok(data)

    async def get_history(self, request: web.Request) -> web.Response:
        """
        GET /api/metrics/{host_id}/{domain}/{resource}/history

        Optional ?field= selects a per-field series.
        """
        host_id = request.match_info["host_id"]
        domain = request.match_info["domain"]
        resource = request.match_info["resource"]
        field = request.query.get("field") or None
        try:
            samples = await self._call(self._reader.query_history, host_id, domain, resource, field)
        except ValidationError as e:
            return self._bad_request(request, e)
        return ok([s.to_dict() for s in samples])

    async def get_active_alerts(self, request: web.Request) -> web.Response:
        """GET /api/alerts/active"""
        return ok(await self._call(self._reader.list_active_alerts))

    async def get_alert_history(self, request: web.Request) -> web.Response:
        """GET /api/alerts/history/{source}"""
        source = request.match_info["source"]
        try:
            records = await self._call(self._reader.list_alert_history_records, source)
        except ValidationError as e:
            return self._bad_request(request, e)
        return ok(records)

    async def get_alert_summary(self, request: web.Request) -> web.Response:
        """GET /api/alerts/summary"""
        if self._alert_manager is not None:
            return ok(await self._call(self._alert_manager.get_alert_summary))
        by_level = await self._call(self._reader.alert_summary)
        return ok({"active_count": sum(by_level.values()), "by_level": by_level})

    async def health(self, request: web.Request) -> web.Response:
        """GET /health"""
        return json_response({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "host-monitor",
            "stream_clients": self._stream.client_count if self._stream else 0,
        })


# ============================================================
# APPLICATION FACTORY
# ============================================================

def create_app(
    reader: MetricsReader,
    alert_manager: Optional[AlertManager] = None,
    stream: Optional[AlertStreamHub] = None,
) -> web.Application:
    """aiohttp application with all routes configured."""
    api = MonitorAPI(reader, alert_manager, stream)
    app = web.Application()

    app.router.add_get("/health", api.health)
    app.router.add_get("/api/metrics/servers", api.list_servers)
    app.router.add_get("/api/metrics/server/{host_id}", api.get_server)
    app.router.add_get("/api/metrics/{host_id}/{domain}", api.get_domain)
    app.router.add_get("/api/metrics/{host_id}/{domain}/{resource}/history", api.get_history)
    app.router.add_get("/api/alerts/active", api.get_active_alerts)
    app.router.add_get("/api/alerts/history/{source}", api.get_alert_history)
    app.router.add_get("/api/alerts/summary", api.get_alert_summary)
    if stream is not None:
        app.router.add_get("/ws/alerts", stream.handle)

    return app


__all__ = ["MonitorAPI", "MonitorEncoder", "create_app", "json_response"]
