"""
Telegram Notification Sink.

============================================================
PURPOSE
============================================================
Forward alert lifecycle events to Telegram chats.

PRINCIPLES:
- Notification-only, no bot commands
- publish() only enqueues; a drain task on the event loop
  does the HTTP calls
- Rate limited per minute and per hour
- Delivery failures are logged, never raised to the store

============================================================
"""

import asyncio
import html
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import aiohttp

from ..models import AlertEvent, AlertEventKind, AlertLevel, AlertRecord
from .base import NotificationSink


logger = logging.getLogger(__name__)


# ============================================================
# MESSAGE FORMATTER
# ============================================================

class TelegramFormatter:
    """Formats alert events as Telegram HTML."""

    LEVEL_ICONS = {
        AlertLevel.INFO: "ℹ️",
        AlertLevel.WARNING: "⚠️",
        AlertLevel.ERROR: "❌",
        AlertLevel.CRITICAL: "🚨",
    }

    @classmethod
    def format_event(cls, event: AlertEvent, host_name: str = "") -> str:
        record = event.record
        if event.kind == AlertEventKind.CREATED:
            icon = cls.LEVEL_ICONS.get(record.level, "📌")
            title = f"{icon} <b>{html.escape(record.type.value)}</b>"
            time_str = record.created_at.strftime("%Y-%m-%d %H:%M:%S UTC")
        else:
            title = f"✅ <b>Resolved: {html.escape(record.type.value)}</b>"
            resolved = record.resolved_at or record.created_at
            time_str = resolved.strftime("%Y-%m-%d %H:%M:%S UTC")

        lines = [
            title,
            "",
            html.escape(record.message),
            "",
            f"🏷 <code>[{record.level.value}]</code> {html.escape(record.source)}",
        ]
        if host_name:
            lines.append(f"🖥 {html.escape(host_name)}")
        lines.append(f"🕐 {time_str}")
        return "\n".join(lines)

    @classmethod
    def format_summary(cls, records: List[AlertRecord]) -> str:
        if not records:
            return "✅ No active alerts"

        lines = ["<b>📋 Active Alerts</b>", ""]
        for level in AlertLevel:
            count = sum(1 for r in records if r.level == level)
            if count:
                lines.append(f"{cls.LEVEL_ICONS[level]} {level.value}: {count}")
        lines.append("")
        lines.append(f"Total Active: {len(records)}")
        return "\n".join(lines)


# ============================================================
# RATE LIMITER
# ============================================================

class TelegramRateLimiter:
    """Sliding minute and hour windows."""

    def __init__(self, max_per_minute: int = 20, max_per_hour: int = 100):
        self._max_per_minute = max_per_minute
        self._max_per_hour = max_per_hour
        self._minute_window: List[datetime] = []
        self._hour_window: List[datetime] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> bool:
        """Try to take a send slot."""
        async with self._lock:
            now = datetime.now(timezone.utc)
            minute_ago = now - timedelta(minutes=1)
            hour_ago = now - timedelta(hours=1)

            self._minute_window = [t for t in self._minute_window if t > minute_ago]
            self._hour_window = [t for t in self._hour_window if t > hour_ago]

            if len(self._minute_window) >= self._max_per_minute:
                return False
            if len(self._hour_window) >= self._max_per_hour:
                return False

            self._minute_window.append(now)
            self._hour_window.append(now)
            return True


# ============================================================
# TELEGRAM NOTIFIER
# ============================================================

_LEVEL_ORDER = {
    AlertLevel.INFO: 0,
    AlertLevel.WARNING: 1,
    AlertLevel.ERROR: 2,
    AlertLevel.CRITICAL: 3,
}


class TelegramNotifier(NotificationSink):
    """
    Sends alert events to Telegram.

    publish() may be called from any thread once start() has
    bound the notifier to a running loop.
    """

    BASE_URL = "https://api.telegram.org/bot"

    def __init__(
        self,
        bot_token: str,
        chat_ids: List[str],
        host_name: str = "",
        rate_limiter: Optional[TelegramRateLimiter] = None,
        min_level: AlertLevel = AlertLevel.WARNING,
        queue_size: int = 500,
        request_timeout: float = 10.0,
    ):
        """
        Initialize Telegram notifier.

        Args:
            bot_token: Telegram bot token
            chat_ids: Chats to send to
            host_name: Shown in every message
            min_level: Events below this level are dropped
        """
        self._bot_token = bot_token
        self._chat_ids = [c for c in chat_ids if c]
        self._host_name = host_name
        self._rate_limiter = rate_limiter or TelegramRateLimiter()
        self._min_level = min_level
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._enabled = bool(self._bot_token and self._chat_ids)

        if not self._enabled:
            logger.warning("TelegramNotifier not configured, check TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID")

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def start(self) -> None:
        if self._task is not None or not self._enabled:
            return
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._drain())
        logger.info(f"TelegramNotifier started with {len(self._chat_ids)} chat(s)")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._loop = None

    # ------------------------------------------------------------
    # Sink
    # ------------------------------------------------------------

    def publish(self, event: AlertEvent) -> None:
        if not self._enabled or self._loop is None:
            return
        if _LEVEL_ORDER[event.record.level] < _LEVEL_ORDER[self._min_level]:
            return
        self._loop.call_soon_threadsafe(self._enqueue, event)

    def _enqueue(self, event: AlertEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Telegram queue full, dropping {event.kind.value} {event.record.dedupe_key}")

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.send_event(event)
            except Exception as e:
                logger.error(f"Error sending Telegram notification: {e}")
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def send_event(self, event: AlertEvent) -> bool:
        message = TelegramFormatter.format_event(event, self._host_name)
        return await self._send_to_all(message)

    async def send_summary(self, records: List[AlertRecord]) -> bool:
        return await self._send_to_all(TelegramFormatter.format_summary(records))

    async def _send_to_all(self, message: str) -> bool:
        if not await self._rate_limiter.acquire():
            logger.warning("Telegram rate limit reached, message not sent")
            return False

        success = True
        for chat_id in self._chat_ids:
            if not await self._send_message(chat_id, message):
                success = False
        return success

    async def _send_message(self, chat_id: str, message: str) -> bool:
        try:
            session = await self._get_session()
            url = f"{self.BASE_URL}{self._bot_token}/sendMessage"
            payload = {
                "chat_id": chat_id,
                "text": message,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            }
            async with session.post(url, json=payload) as response:
                if response.status == 200:
                    return True
                body = await response.text()
                logger.error(f"Telegram API error: {response.status} - {body}")
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error sending Telegram message: {e}")
            return False


__all__ = ["TelegramFormatter", "TelegramRateLimiter", "TelegramNotifier"]
