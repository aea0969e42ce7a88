"""
Core Module Package.

Infrastructure shared by storage and monitoring:
- clock: testable time source
- exceptions: error hierarchy
- constants: key-space names and defaults
"""

from core.clock import ClockFactory, ClockProtocol, MockClock, SystemClock
from core.exceptions import (
    BackendUnavailable,
    CollectionError,
    ConfigurationError,
    MonitoringException,
    NotFound,
    ValidationError,
)

__all__ = [
    "ClockFactory",
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "BackendUnavailable",
    "CollectionError",
    "ConfigurationError",
    "MonitoringException",
    "NotFound",
    "ValidationError",
]
