"""
Notifications Package.

Sinks for alert lifecycle events.
"""

from .base import FanoutSink, LoggingSink, NotificationSink
from .stream import AlertStreamHub
from .telegram import (
    TelegramFormatter,
    TelegramNotifier,
    TelegramRateLimiter,
)


__all__ = [
    "NotificationSink",
    "LoggingSink",
    "FanoutSink",
    "AlertStreamHub",
    "TelegramFormatter",
    "TelegramRateLimiter",
    "TelegramNotifier",
]
