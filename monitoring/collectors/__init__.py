"""
Collectors Package.

Read-only signal acquisition, one collector per domain.
"""

from .base import Collector
from .docker import DockerCollector
from .network import NetworkCollector
from .rtsp import RtspCollector
from .storage import StorageCollector
from .system import SystemCollector


__all__ = [
    "Collector",
    "DockerCollector",
    "NetworkCollector",
    "RtspCollector",
    "StorageCollector",
    "SystemCollector",
]
