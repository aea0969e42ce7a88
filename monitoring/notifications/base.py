"""
Notification Sinks.

============================================================
PURPOSE
============================================================
Receivers of alert lifecycle events.

publish() is synchronous and called after the alert store has
committed the mutation. A sink that fails must not affect the
store or other sinks.

============================================================
"""

from abc import ABC, abstractmethod
from typing import List, Optional
import logging

from ..models import AlertEvent, AlertEventKind, AlertLevel


logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Receives CREATED and RESOLVED alert events."""

    @abstractmethod
    def publish(self, event: AlertEvent) -> None:
        pass


class LoggingSink(NotificationSink):
    """Writes each event to the log."""

    _LEVELS = {
        AlertLevel.INFO: logging.INFO,
        AlertLevel.WARNING: logging.WARNING,
        AlertLevel.ERROR: logging.ERROR,
        AlertLevel.CRITICAL: logging.CRITICAL,
    }

    def publish(self, event: AlertEvent) -> None:
        record = event.record
        if event.kind == AlertEventKind.CREATED:
            logger.log(
                self._LEVELS[record.level],
                f"Alert created: {record.message} [{record.level.value}] ({record.dedupe_key})",
            )
        else:
            logger.info(f"Alert resolved: {record.message} ({record.dedupe_key})")


class FanoutSink(NotificationSink):
    """
    Delivers every event to each subscriber in turn.

    A subscriber that raises is logged and skipped.
    """

    def __init__(self, sinks: Optional[List[NotificationSink]] = None):
        self._sinks: List[NotificationSink] = list(sinks or [])

    @property
    def sinks(self) -> List[NotificationSink]:
        return list(self._sinks)

    def add(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def remove(self, sink: NotificationSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def publish(self, event: AlertEvent) -> None:
        for sink in self._sinks:
            try:
                sink.publish(event)
            except Exception as e:
                logger.error(f"Notification sink {type(sink).__name__} failed: {e}")


__all__ = ["NotificationSink", "LoggingSink", "FanoutSink"]
