"""
Monitor Configuration.

============================================================
PURPOSE
============================================================
All runtime settings, loaded from the environment (and a .env
file when present).

from_env() never raises on bad values it can still parse;
validate() returns every problem found so startup can report
them together.

============================================================
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import os
import socket

from dotenv import load_dotenv

from core.constants import (
    DEFAULT_ALERT_HISTORY_CAP,
    DEFAULT_ALERT_INTERVAL,
    DEFAULT_CPU_THRESHOLD,
    DEFAULT_DISK_THRESHOLD,
    DEFAULT_DOCKER_INTERVAL,
    DEFAULT_MAX_RECORDS,
    DEFAULT_MEMORY_THRESHOLD,
    DEFAULT_RTSP_INTERVAL,
    DEFAULT_STORAGE_INTERVAL,
    DEFAULT_SYSTEM_INTERVAL,
    GLOB_CHARACTERS,
    KEY_SEPARATOR,
)
from core.exceptions import ConfigurationError
from storage.keys import HostIdentity


VALID_BACKENDS = ("memory", "redis")
VALID_LOG_FORMATS = ("json", "text")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return cast(default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number", config_key=name, actual_value=raw)


def parse_rtsp_streams(raw: str) -> Dict[str, str]:
    """Parse "name=url,name=url" into an ordered mapping."""
    streams: Dict[str, str] = {}
    for item in (raw or "").split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, url = item.partition("=")
        if not sep or not name.strip() or not url.strip():
            raise ConfigurationError(
                "RTSP_STREAMS entries must look like name=url",
                config_key="RTSP_STREAMS",
                actual_value=item,
            )
        streams[name.strip()] = url.strip()
    return streams


@dataclass
class MonitorConfig:
    """Monitor settings."""

    # Host identity
    server_identity: str = field(default_factory=socket.gethostname)
    server_display_name: Optional[str] = None
    server_location: str = "unknown"

    # Storage
    storage_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_timeout_seconds: float = 5.0
    max_records: int = DEFAULT_MAX_RECORDS
    alert_history_cap: int = DEFAULT_ALERT_HISTORY_CAP

    # Thresholds (percent)
    cpu_threshold: float = DEFAULT_CPU_THRESHOLD
    memory_threshold: float = DEFAULT_MEMORY_THRESHOLD
    disk_threshold: float = DEFAULT_DISK_THRESHOLD

    # Schedule (seconds)
    system_interval: float = DEFAULT_SYSTEM_INTERVAL
    storage_interval: float = DEFAULT_STORAGE_INTERVAL
    docker_interval: float = DEFAULT_DOCKER_INTERVAL
    rtsp_interval: float = DEFAULT_RTSP_INTERVAL
    alert_interval: float = DEFAULT_ALERT_INTERVAL

    # Collectors
    docker_enabled: bool = True
    rtsp_streams: Dict[str, str] = field(default_factory=dict)
    rtsp_connect_timeout: float = 5.0

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "MonitorConfig":
        """Load configuration from environment variables."""
        if dotenv:
            load_dotenv()

        hostname = socket.gethostname()
        return cls(
            server_identity=os.getenv("SERVER_IDENTITY", hostname),
            server_display_name=os.getenv("SERVER_DISPLAY_NAME") or None,
            server_location=os.getenv("SERVER_LOCATION", "unknown"),
            storage_backend=os.getenv("STORAGE_BACKEND", "memory").lower(),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            redis_timeout_seconds=_env_number("REDIS_TIMEOUT_SECONDS", 5.0),
            max_records=_env_number("METRICS_MAX_RECORDS", DEFAULT_MAX_RECORDS, int),
            alert_history_cap=_env_number("ALERT_HISTORY_CAP", DEFAULT_ALERT_HISTORY_CAP, int),
            cpu_threshold=_env_number("CPU_USAGE_THRESHOLD", DEFAULT_CPU_THRESHOLD),
            memory_threshold=_env_number("MEMORY_USAGE_THRESHOLD", DEFAULT_MEMORY_THRESHOLD),
            disk_threshold=_env_number("DISK_USAGE_THRESHOLD", DEFAULT_DISK_THRESHOLD),
            system_interval=_env_number("SCHEDULE_SYSTEM_SECONDS", DEFAULT_SYSTEM_INTERVAL),
            storage_interval=_env_number("SCHEDULE_STORAGE_SECONDS", DEFAULT_STORAGE_INTERVAL),
            docker_interval=_env_number("SCHEDULE_DOCKER_SECONDS", DEFAULT_DOCKER_INTERVAL),
            rtsp_interval=_env_number("SCHEDULE_RTSP_SECONDS", DEFAULT_RTSP_INTERVAL),
            alert_interval=_env_number("SCHEDULE_ALERTS_SECONDS", DEFAULT_ALERT_INTERVAL),
            docker_enabled=_env_bool("DOCKER_ENABLED", "true"),
            rtsp_streams=parse_rtsp_streams(os.getenv("RTSP_STREAMS", "")),
            rtsp_connect_timeout=_env_number("RTSP_CONNECT_TIMEOUT_SECONDS", 5.0),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=_env_number("API_PORT", 8080, int),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID", ""),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.server_identity:
            errors.append("server_identity must not be empty")
        elif KEY_SEPARATOR in self.server_identity or GLOB_CHARACTERS.intersection(
            self.server_identity
        ):
            errors.append("server_identity must not contain ':' or glob characters")

        if self.storage_backend not in VALID_BACKENDS:
            errors.append(f"storage_backend must be one of {', '.join(VALID_BACKENDS)}")
        if self.storage_backend == "redis" and not self.redis_url:
            errors.append("redis_url required for redis backend")

        if self.max_records < 1:
            errors.append("max_records must be at least 1")
        if self.alert_history_cap < 1:
            errors.append("alert_history_cap must be at least 1")

        for name in ("cpu_threshold", "memory_threshold", "disk_threshold"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                errors.append(f"{name} must be between 0 and 100")

        for name in (
            "system_interval",
            "storage_interval",
            "docker_interval",
            "rtsp_interval",
            "alert_interval",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")

        if self.rtsp_connect_timeout <= 0:
            errors.append("rtsp_connect_timeout must be positive")
        if not 0 < self.api_port < 65536:
            errors.append("api_port must be between 1 and 65535")
        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(f"log_format must be one of {', '.join(VALID_LOG_FORMATS)}")

        return errors

    def ensure_valid(self) -> "MonitorConfig":
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                "Invalid configuration: " + "; ".join(errors),
                context={"errors": errors},
            )
        return self

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    def host_identity(self) -> HostIdentity:
        return HostIdentity(
            id=self.server_identity,
            display_name=self.server_display_name,
            location=self.server_location,
        )


__all__ = ["MonitorConfig", "parse_rtsp_streams"]
