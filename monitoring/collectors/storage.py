"""
Storage Collector.

One snapshot and one usage sample per mounted filesystem.
Only absolute mount points with a non-zero size are reported;
the resource id is the mount point with "/" replaced by "_".
"""

import asyncio
import logging
from typing import Optional

import psutil

from core.clock import ClockProtocol
from core.constants import Domain
from core.exceptions import CollectionError

from ..models import CollectionResult
from .base import Collector, GB, clock_or_default, fmt2, percent


logger = logging.getLogger(__name__)


def disk_resource(mount_point: str) -> str:
    return mount_point.replace("/", "_")


class StorageCollector(Collector):
    """Collects per-filesystem usage."""

    name = "storage"
    domain = Domain.STORAGE.value

    def __init__(self, clock: Optional[ClockProtocol] = None):
        self._clock = clock_or_default(clock)

    async def collect(self) -> CollectionResult:
        return await asyncio.to_thread(self._collect)

    def _collect(self) -> CollectionResult:
        result = CollectionResult(collector=self.name)
        timestamp = self._clock.timestamp_ms()

        try:
            partitions = psutil.disk_partitions(all=False)
        except (psutil.Error, OSError) as e:
            result.add_error("partitions", CollectionError(str(e), collector=self.name, cause=e))
            return result

        seen = set()
        for part in partitions:
            mount = part.mountpoint
            if not mount.startswith("/") or mount in seen:
                continue
            seen.add(mount)
            resource = disk_resource(mount)

            try:
                usage = psutil.disk_usage(mount)
            except (psutil.Error, OSError) as e:
                result.add_error(
                    resource,
                    CollectionError(str(e), collector=self.name, resource=resource, cause=e),
                )
                continue
            if usage.total == 0:
                continue

            used = usage.total - usage.free
            usage_percent = percent(used, usage.total)
            result.add_snapshot(self.domain, resource, {
                "mount_point": mount,
                "name": part.device,
                "filesystem": part.fstype,
                "total_gb": fmt2(usage.total / GB),
                "used_gb": fmt2(used / GB),
                "free_gb": fmt2(usage.free / GB),
                "usage_percent": fmt2(usage_percent),
            })
            result.add_sample(self.domain, resource, round(usage_percent, 2), timestamp)

        logger.debug(f"Collected storage metrics for {len(result.snapshots)} filesystems")
        return result


__all__ = ["StorageCollector", "disk_resource"]
