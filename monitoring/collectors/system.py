"""
System Collector.

CPU, memory, process counts and host information via psutil.

CPU usage is measured between two ticks of this collector: the
previous psutil.cpu_times() reading is kept on the instance.
"""

import asyncio
import logging
import platform
import socket
from typing import Any, Dict, Optional

import psutil

from core.clock import ClockProtocol
from core.constants import Domain
from core.exceptions import CollectionError
from storage.keys import HostIdentity

from ..models import CollectionResult
from .base import Collector, MB, clock_or_default, fmt2, percent


logger = logging.getLogger(__name__)


def _busy_and_total(times) -> tuple:
    total = sum(times)
    idle = getattr(times, "idle", 0.0) + getattr(times, "iowait", 0.0)
    return total - idle, total


class SystemCollector(Collector):
    """Collects CPU, memory, processes and server info."""

    name = "system"
    domain = Domain.SYSTEM.value

    def __init__(self, host: HostIdentity, clock: Optional[ClockProtocol] = None):
        self._host = host
        self._clock = clock_or_default(clock)
        self._prev_cpu_times = psutil.cpu_times()

    async def collect(self) -> CollectionResult:
        return await asyncio.to_thread(self._collect)

    def _collect(self) -> CollectionResult:
        result = CollectionResult(collector=self.name)
        timestamp = self._clock.timestamp_ms()

        sections = (
            ("cpu", self._cpu_metrics),
            ("memory", self._memory_metrics),
            ("processes", self._process_metrics),
        )
        for resource, read in sections:
            try:
                fields = read()
            except (psutil.Error, OSError) as e:
                result.add_error(
                    resource,
                    CollectionError(str(e), collector=self.name, resource=resource, cause=e),
                )
                continue
            result.add_snapshot(self.domain, resource, fields)
            if resource in ("cpu", "memory"):
                result.add_sample(self.domain, resource, float(fields["usage_percent"]), timestamp)

        try:
            result.add_snapshot(Domain.SERVER.value, "info", self._server_info())
        except (psutil.Error, OSError) as e:
            result.add_error("info", CollectionError(str(e), collector=self.name, resource="info", cause=e))

        logger.debug(f"Collected system metrics ({len(result.errors)} errors)")
        return result

    def _cpu_metrics(self) -> Dict[str, Any]:
        current = psutil.cpu_times()
        prev_busy, prev_total = _busy_and_total(self._prev_cpu_times)
        busy, total = _busy_and_total(current)
        self._prev_cpu_times = current

        usage = percent(max(0.0, busy - prev_busy), total - prev_total)
        metrics: Dict[str, Any] = {
            "cores": psutil.cpu_count(logical=True) or 0,
            "usage_percent": fmt2(min(usage, 100.0)),
        }
        try:
            load_1m, load_5m, load_15m = psutil.getloadavg()
        except (AttributeError, OSError):
            return metrics
        metrics.update(load_avg_1m=load_1m, load_avg_5m=load_5m, load_avg_15m=load_15m)
        return metrics

    def _memory_metrics(self) -> Dict[str, Any]:
        memory = psutil.virtual_memory()
        used = memory.total - memory.available
        return {
            "total_mb": int(memory.total / MB),
            "used_mb": int(used / MB),
            "free_mb": int(memory.available / MB),
            "usage_percent": fmt2(percent(used, memory.total)),
        }

    def _process_metrics(self) -> Dict[str, Any]:
        count = 0
        threads = 0
        for proc in psutil.process_iter(["num_threads"]):
            count += 1
            threads += proc.info.get("num_threads") or 0
        return {"count": count, "threads": threads}

    def _server_info(self) -> Dict[str, Any]:
        info = dict(self._host.to_dict())
        info.update({
            "os_name": f"{platform.system()} {platform.release()}",
            "hostname": socket.gethostname(),
            "boot_time": int(psutil.boot_time()),
        })
        return info


__all__ = ["SystemCollector"]
