"""
Tests for notification sinks.
"""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from monitoring.models import AlertEvent, AlertEventKind, AlertLevel, AlertRecord, AlertType
from monitoring.notifications import (
    AlertStreamHub,
    FanoutSink,
    LoggingSink,
    TelegramFormatter,
    TelegramNotifier,
    TelegramRateLimiter,
)


def make_record(level=AlertLevel.WARNING, active=True):
    return AlertRecord(
        id="a1",
        dedupe_key="HIGH_CPU_USAGE",
        message="System CPU usage is high: 91.20%",
        level=level,
        type=AlertType.HIGH_CPU_USAGE,
        source="SYSTEM",
        created_at=datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc),
        active=active,
        resolved_at=None if active else datetime(2025, 1, 1, 12, 5, tzinfo=timezone.utc),
    )


@pytest.fixture
def created_event():
    return AlertEvent(AlertEventKind.CREATED, make_record())


# ============================================================
# BASE SINKS
# ============================================================

class TestFanoutSink:
    """Tests for FanoutSink."""

    def test_delivers_to_every_sink(self, created_event):
        """Test that each subscriber receives the event."""
        first, second = MagicMock(), MagicMock()
        FanoutSink([first, second]).publish(created_event)
        first.publish.assert_called_once_with(created_event)
        second.publish.assert_called_once_with(created_event)

    def test_failing_sink_is_isolated(self, created_event):
        """Test that one failing subscriber does not block the rest."""
        broken, healthy = MagicMock(), MagicMock()
        broken.publish.side_effect = RuntimeError("down")
        FanoutSink([broken, healthy]).publish(created_event)
        healthy.publish.assert_called_once_with(created_event)

    def test_add_remove(self, created_event):
        """Test subscriber management."""
        fanout = FanoutSink()
        sink = MagicMock()
        fanout.add(sink)
        fanout.remove(sink)
        fanout.publish(created_event)
        sink.publish.assert_not_called()

    def test_logging_sink(self, created_event, caplog):
        """Test that created events log at the alert level."""
        with caplog.at_level("INFO"):
            LoggingSink().publish(created_event)
        assert any(r.levelname == "WARNING" and "HIGH_CPU_USAGE" in r.getMessage() for r in caplog.records)


# ============================================================
# TELEGRAM
# ============================================================

class TestTelegramFormatter:
    """Tests for TelegramFormatter."""

    def test_created(self, created_event):
        """Test the created alert layout."""
        text = TelegramFormatter.format_event(created_event, host_name="edge-01")
        assert "HIGH_CPU_USAGE" in text
        assert "91.20%" in text
        assert "[WARNING]" in text
        assert "edge-01" in text
        assert "2025-01-01 12:00:00 UTC" in text

    def test_resolved(self):
        """Test the resolved layout uses the resolution time."""
        event = AlertEvent(AlertEventKind.RESOLVED, make_record(active=False))
        text = TelegramFormatter.format_event(event)
        assert text.startswith("✅")
        assert "12:05:00" in text

    def test_escapes_html(self):
        """Test that messages are HTML escaped."""
        record = make_record()
        record.message = "<script>"
        text = TelegramFormatter.format_event(AlertEvent(AlertEventKind.CREATED, record))
        assert "&lt;script&gt;" in text

    def test_summary(self):
        """Test the summary counts."""
        text = TelegramFormatter.format_summary([make_record(), make_record(AlertLevel.ERROR)])
        assert "Total Active: 2" in text
        assert TelegramFormatter.format_summary([]) == "✅ No active alerts"


class TestTelegramRateLimiter:
    """Tests for TelegramRateLimiter."""

    @pytest.mark.asyncio
    async def test_minute_limit(self):
        """Test that the per-minute cap is enforced."""
        limiter = TelegramRateLimiter(max_per_minute=2, max_per_hour=10)
        assert await limiter.acquire()
        assert await limiter.acquire()
        assert not await limiter.acquire()


class TestTelegramNotifier:
    """Tests for TelegramNotifier."""

    def test_disabled_without_credentials(self):
        """Test that missing token or chat disables the notifier."""
        assert not TelegramNotifier(bot_token="", chat_ids=["1"]).enabled
        assert not TelegramNotifier(bot_token="t", chat_ids=[""]).enabled

    @pytest.mark.asyncio
    async def test_publish_from_thread_is_sent(self, created_event):
        """Test that events published from a worker thread reach send_event."""
        notifier = TelegramNotifier(bot_token="t", chat_ids=["1"])
        notifier.send_event = AsyncMock(return_value=True)
        await notifier.start()
        try:
            await asyncio.to_thread(notifier.publish, created_event)
            for _ in range(50):
                if notifier.send_event.await_count:
                    break
                await asyncio.sleep(0.01)
            notifier.send_event.assert_awaited_once_with(created_event)
        finally:
            await notifier.stop()

    @pytest.mark.asyncio
    async def test_min_level_filters(self):
        """Test that events below min_level are dropped."""
        notifier = TelegramNotifier(bot_token="t", chat_ids=["1"], min_level=AlertLevel.ERROR)
        notifier.send_event = AsyncMock(return_value=True)
        await notifier.start()
        try:
            notifier.publish(AlertEvent(AlertEventKind.CREATED, make_record(AlertLevel.WARNING)))
            await asyncio.sleep(0.05)
            notifier.send_event.assert_not_awaited()
        finally:
            await notifier.stop()

    @pytest.mark.asyncio
    async def test_send_to_all_chats(self, created_event):
        """Test that every chat receives the message."""
        notifier = TelegramNotifier(bot_token="t", chat_ids=["1", "2"])
        notifier._send_message = AsyncMock(return_value=True)
        assert await notifier.send_event(created_event)
        assert [c.args[0] for c in notifier._send_message.await_args_list] == ["1", "2"]


# ============================================================
# WEBSOCKET STREAM
# ============================================================

class TestAlertStreamHub:
    """Tests for AlertStreamHub."""

    @pytest.mark.asyncio
    async def test_broadcast_drops_failed_clients(self):
        """Test that broken clients are removed."""
        hub = AlertStreamHub()
        good = MagicMock(closed=False, send_str=AsyncMock())
        bad = MagicMock(closed=False, send_str=AsyncMock(side_effect=ConnectionResetError()))
        hub._clients.update({good, bad})

        assert await hub.broadcast("{}") == 1
        assert hub.client_count == 1

    @pytest.mark.asyncio
    async def test_publish_sends_json(self, created_event):
        """Test that publish schedules a JSON broadcast."""
        hub = AlertStreamHub()
        hub.bind(asyncio.get_running_loop())
        client = MagicMock(closed=False, send_str=AsyncMock())
        hub._clients.add(client)

        hub.publish(created_event)
        for _ in range(50):
            if client.send_str.await_count:
                break
            await asyncio.sleep(0.01)

        payload = json.loads(client.send_str.await_args.args[0])
        assert payload["event"] == "CREATED"
        assert payload["alert"]["dedupe_key"] == "HIGH_CPU_USAGE"

    @pytest.mark.asyncio
    async def test_send_error_is_contained(self):
        """Test that an unexpected send error neither leaks nor stops the broadcast."""
        loop = asyncio.get_running_loop()
        unhandled = []
        loop.set_exception_handler(lambda _, context: unhandled.append(context["message"]))
        hub = AlertStreamHub()
        good = MagicMock(closed=False, send_str=AsyncMock())
        bad = MagicMock(closed=False, send_str=AsyncMock(side_effect=ValueError("bad frame")))
        hub._clients.update({good, bad})

        try:
            hub._schedule_broadcast("{}")
            assert len(hub._broadcasts) == 1
            await asyncio.gather(*hub._broadcasts)
            await asyncio.sleep(0)
        finally:
            loop.set_exception_handler(None)

        assert hub._broadcasts == set()
        assert hub.client_count == 1
        good.send_str.assert_awaited_once_with("{}")
        assert unhandled == []
