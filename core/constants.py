"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
Shared names and defaults for keys, retention and thresholds.

- Domains and key kinds used in every storage key
- Retention and history caps
- Default alert thresholds and collection intervals

============================================================
"""

from enum import Enum


# ============================================================
# KEY SPACE
# ============================================================

class Domain(str, Enum):
    """Category of metric. Forms the second key component."""

    SYSTEM = "system"
    STORAGE = "storage"
    NETWORK = "network"
    DOCKER = "docker"
    RTSP = "rtsp"
    SERVER = "server"


class KeyKind(str, Enum):
    """Whether a key holds the latest snapshot or a bounded series."""

    CURRENT = "current"
    HISTORY = "history"


KEY_SEPARATOR = ":"
GLOB_CHARACTERS = frozenset("*?[]")

ALERT_RECORD_PREFIX = "alert:record:"
ALERT_DEDUPE_PREFIX = "alert:active:"
ACTIVE_ALERTS_KEY = "active_alerts"
ALERT_HISTORY_PREFIX = "alert_history:"


# ============================================================
# RETENTION
# ============================================================

DEFAULT_MAX_RECORDS = 3
DEFAULT_ALERT_HISTORY_CAP = 100


# ============================================================
# THRESHOLDS (percent)
# ============================================================

DEFAULT_CPU_THRESHOLD = 80.0
DEFAULT_MEMORY_THRESHOLD = 85.0
DEFAULT_DISK_THRESHOLD = 90.0


# ============================================================
# SCHEDULE (seconds)
# ============================================================

DEFAULT_SYSTEM_INTERVAL = 10.0
DEFAULT_STORAGE_INTERVAL = 60.0
DEFAULT_DOCKER_INTERVAL = 30.0
DEFAULT_RTSP_INTERVAL = 60.0
DEFAULT_ALERT_INTERVAL = 15.0


# ============================================================
# FAILURE REPORTING
# ============================================================

FAILURE_LOG_FIRST_N = 3
FAILURE_LOG_EVERY_N = 10
