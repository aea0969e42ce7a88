"""
Monitoring Models.

============================================================
PURPOSE
============================================================
Value types shared by collectors, the alert lifecycle and the
read API.

- AlertRecord: one raised alert, kept after resolution
- AlertEvent: what notification sinks receive
- CollectionResult: what one collector cycle produced,
  including per-resource failures

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from core.clock import from_iso8601, to_iso8601


# ============================================================
# ALERT ENUMS
# ============================================================

class AlertLevel(Enum):
    """Alert severity."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AlertType(Enum):
    """Cause of an alert."""

    RTSP_STREAM_DOWN = "RTSP_STREAM_DOWN"
    CAMERA_DISCONNECTED = "CAMERA_DISCONNECTED"
    DOCKER_CONTAINER_DOWN = "DOCKER_CONTAINER_DOWN"
    HIGH_CPU_USAGE = "HIGH_CPU_USAGE"
    HIGH_MEMORY_USAGE = "HIGH_MEMORY_USAGE"
    DISK_SPACE_LOW = "DISK_SPACE_LOW"
    NETWORK_BANDWIDTH_HIGH = "NETWORK_BANDWIDTH_HIGH"
    STORAGE_ERROR = "STORAGE_ERROR"
    S3_BUCKET_ERROR = "S3_BUCKET_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class AlertEventKind(Enum):
    CREATED = "CREATED"
    RESOLVED = "RESOLVED"


# ============================================================
# ALERT RECORD
# ============================================================

@dataclass
class AlertRecord:
    """
    A raised alert.

    Created on the first fire for a dedupe key with no active
    record. On resolution active flips to False and resolved_at
    is set. Records are never deleted.
    """

    id: str
    dedupe_key: str
    message: str
    level: AlertLevel
    type: AlertType
    source: str
    created_at: datetime
    active: bool = True
    resolved_at: Optional[datetime] = None

    def to_mapping(self) -> Dict[str, str]:
        """Flat string mapping for hash storage."""
        return {
            "id": self.id,
            "dedupe_key": self.dedupe_key,
            "message": self.message,
            "level": self.level.value,
            "type": self.type.value,
            "source": self.source,
            "created_at": to_iso8601(self.created_at),
            "active": "true" if self.active else "false",
            "resolved_at": to_iso8601(self.resolved_at) if self.resolved_at else "",
        }

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> "AlertRecord":
        resolved_at = mapping.get("resolved_at") or None
        return cls(
            id=mapping["id"],
            dedupe_key=mapping["dedupe_key"],
            message=mapping.get("message", ""),
            level=AlertLevel(mapping["level"]),
            type=AlertType(mapping["type"]),
            source=mapping.get("source", ""),
            created_at=from_iso8601(mapping["created_at"]),
            active=mapping.get("active") == "true",
            resolved_at=from_iso8601(resolved_at) if resolved_at else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation."""
        data: Dict[str, Any] = self.to_mapping()
        data["active"] = self.active
        data["resolved_at"] = data["resolved_at"] or None
        return data


@dataclass(frozen=True)
class AlertEvent:
    """Lifecycle event delivered to notification sinks."""

    kind: AlertEventKind
    record: AlertRecord

    def to_dict(self) -> Dict[str, Any]:
        return {"event": self.kind.value, "alert": self.record.to_dict()}


# ============================================================
# COLLECTION RESULTS
# ============================================================

@dataclass
class MetricSnapshot:
    """Latest field values for one resource."""

    domain: str
    resource: str
    fields: Dict[str, Any]


@dataclass
class MetricSample:
    """
    One numeric observation for a resource's history.

    field=None targets the resource's primary series.
    """

    domain: str
    resource: str
    value: float
    timestamp: float
    field: Optional[str] = None


@dataclass
class CollectionResult:
    """Outcome of one collector cycle."""

    collector: str
    snapshots: List[MetricSnapshot] = field(default_factory=list)
    samples: List[MetricSample] = field(default_factory=list)
    errors: List[Tuple[str, BaseException]] = field(default_factory=list)

    def add_snapshot(self, domain: str, resource: str, fields: Dict[str, Any]) -> None:
        self.snapshots.append(MetricSnapshot(domain, resource, fields))

    def add_sample(
        self,
        domain: str,
        resource: str,
        value: float,
        timestamp: float,
        field: Optional[str] = None,
    ) -> None:
        self.samples.append(MetricSample(domain, resource, value, timestamp, field))

    def add_error(self, resource: str, error: BaseException) -> None:
        self.errors.append((resource, error))

    @property
    def ok(self) -> bool:
        return not self.errors


__all__ = [
    "AlertLevel",
    "AlertType",
    "AlertEventKind",
    "AlertRecord",
    "AlertEvent",
    "MetricSnapshot",
    "MetricSample",
    "CollectionResult",
]
