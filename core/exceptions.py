"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Exception hierarchy for the host monitor.

- Separates caller mistakes from transient backend trouble
- Carries context for structured logging
- Nothing here is fatal to the running process

============================================================
EXCEPTION HIERARCHY
============================================================
MonitoringException (base)
├── ValidationError        caller passed malformed input
├── BackendUnavailable     storage backend unreachable (transient)
├── NotFound               key or record does not exist
├── ConfigurationError     invalid settings at startup
└── CollectionError        one resource failed during acquisition

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# BASE EXCEPTION
# ============================================================

class MonitoringException(Exception):
    """
    Base exception for all monitor errors.

    All exceptions carry:
    - severity: how loudly to log it
    - context: key/value details for debugging
    - transient: whether retrying on the next cycle may succeed
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_transient: bool = False

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.transient = self.default_transient
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "transient": self.transient,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_log_format(self) -> str:
        """Single-line representation for log messages."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if ctx_str:
            line = f"{line} | {ctx_str}"
        return line


# ============================================================
# CALLER ERRORS
# ============================================================

class ValidationError(MonitoringException):
    """Malformed key component, sample or rule definition."""

    default_severity = Severity.LOW

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if field_name:
            context["field"] = field_name
        if value is not None:
            context["value"] = str(value)[:100]
        super().__init__(message, context=context, **kwargs)


class NotFound(MonitoringException):
    """Requested key or alert record does not exist."""

    default_severity = Severity.LOW

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if key:
            context["key"] = key
        super().__init__(message, context=context, **kwargs)


# ============================================================
# RUNTIME ERRORS
# ============================================================

class BackendUnavailable(MonitoringException):
    """Storage backend could not be reached. Retry on the next cycle."""

    default_severity = Severity.HIGH
    default_transient = True

    def __init__(self, message: str, backend: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if backend:
            context["backend"] = backend
        super().__init__(message, context=context, **kwargs)


class CollectionError(MonitoringException):
    """A collector failed to read one resource."""

    default_transient = True

    def __init__(
        self,
        message: str,
        collector: Optional[str] = None,
        resource: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if collector:
            context["collector"] = collector
        if resource:
            context["resource"] = resource
        super().__init__(message, context=context, **kwargs)


class ConfigurationError(MonitoringException):
    """Invalid configuration detected at startup."""

    default_severity = Severity.CRITICAL

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]
        super().__init__(message, context=context, **kwargs)


__all__ = [
    "Severity",
    "MonitoringException",
    "ValidationError",
    "NotFound",
    "BackendUnavailable",
    "CollectionError",
    "ConfigurationError",
]
