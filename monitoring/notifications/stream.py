"""
Alert Stream Hub.

Pushes every alert event to connected websocket clients as JSON
({"event": "CREATED" | "RESOLVED", "alert": {...}}).
"""

import asyncio
import json
import logging
from typing import Optional, Set

from aiohttp import WSMsgType, web

from ..models import AlertEvent
from .base import NotificationSink


logger = logging.getLogger(__name__)


class AlertStreamHub(NotificationSink):
    """Websocket broadcast sink. publish() is safe from any thread once bound."""

    def __init__(self):
        self._clients: Set[web.WebSocketResponse] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcasts: Set[asyncio.Task] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def publish(self, event: AlertEvent) -> None:
        if self._loop is None or not self._clients:
            return
        payload = json.dumps(event.to_dict())
        self._loop.call_soon_threadsafe(self._schedule_broadcast, payload)

    def _schedule_broadcast(self, payload: str) -> None:
        task = asyncio.ensure_future(self.broadcast(payload))
        self._broadcasts.add(task)
        task.add_done_callback(self._broadcast_done)

    def _broadcast_done(self, task: asyncio.Task) -> None:
        self._broadcasts.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Alert stream broadcast failed: {error}")

    async def broadcast(self, payload: str) -> int:
        """Send payload to every client, dropping the ones that fail."""
        sent = 0
        for ws in list(self._clients):
            if ws.closed:
                self._clients.discard(ws)
                continue
            try:
                await ws.send_str(payload)
                sent += 1
            except (ConnectionResetError, RuntimeError) as e:
                logger.debug(f"Dropping alert stream client: {e}")
                self._clients.discard(ws)
            except Exception as e:
                logger.warning(f"Dropping alert stream client after send error: {e}")
                self._clients.discard(ws)
        return sent

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        """
        GET /ws/alerts

        Client messages are ignored; the socket is push-only.
        """
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._clients.add(ws)
        logger.info(f"Alert stream client connected ({len(self._clients)} total)")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.warning(f"Alert stream client error: {ws.exception()}")
                    break
        finally:
            self._clients.discard(ws)
            logger.info(f"Alert stream client disconnected ({len(self._clients)} total)")
        return ws

    async def close(self) -> None:
        for task in list(self._broadcasts):
            task.cancel()
        for ws in list(self._clients):
            await ws.close()
        self._clients.clear()


__all__ = ["AlertStreamHub"]
