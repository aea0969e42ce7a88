"""
Host Monitoring Package.

============================================================
PURPOSE
============================================================
Collects host health signals, records them in bounded storage,
evaluates alert rules, and serves everything read-only.

PRINCIPLES:
1. READ-ONLY toward the host - collectors only observe
2. BOUNDED - every series and history list is capped
3. DETERMINISTIC - explicit threshold rules, no predictions
4. RESILIENT - one failing collector never stops the others

Subpackages:
- collectors: system, storage, network, docker, rtsp
- alerts: rules and the evaluation cycle
- notifications: logging, telegram and websocket sinks

============================================================
"""

from .models import (
    AlertEvent,
    AlertEventKind,
    AlertLevel,
    AlertRecord,
    AlertType,
    CollectionResult,
    MetricSample,
    MetricSnapshot,
)


__all__ = [
    "AlertEvent",
    "AlertEventKind",
    "AlertLevel",
    "AlertRecord",
    "AlertType",
    "CollectionResult",
    "MetricSample",
    "MetricSnapshot",
]
