"""
Docker Collector.

Reads container state from the docker CLI:

    docker ps -a --format {{.ID}}|{{.Names}}|{{.Image}}|{{.Status}}
    docker stats <id> --no-stream --format {{.CPUPerc}}|{{.MemUsage}}|...

Stats are only read for running containers. When the docker
binary is missing the collector disables itself after logging once.
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional, Tuple

from core.clock import ClockProtocol
from core.constants import Domain
from core.exceptions import CollectionError

from ..models import CollectionResult
from .base import Collector, clock_or_default


logger = logging.getLogger(__name__)

PS_FORMAT = "{{.ID}}|{{.Names}}|{{.Image}}|{{.Status}}"
STATS_FORMAT = "{{.CPUPerc}}|{{.MemUsage}}|{{.MemPerc}}|{{.NetIO}}|{{.BlockIO}}|{{.PIDs}}"

_PAIR = re.compile(r"(\d+(?:\.\d+)?)([A-Za-z]+)\s*/\s*(\d+(?:\.\d+)?)([A-Za-z]+)")


# ============================================================
# PARSING
# ============================================================

def simple_status(status: str) -> str:
    text = status.strip().lower()
    if text.startswith("up"):
        return "running"
    if text.startswith("exited"):
        return "stopped"
    return "unknown"


def parse_container_line(line: str) -> Optional[Dict[str, str]]:
    parts = line.split("|")
    if len(parts) < 4:
        return None
    status = parts[3].strip()
    return {
        "id": parts[0].strip(),
        "name": parts[1].strip(),
        "image": parts[2].strip(),
        "status": status,
        "simple_status": simple_status(status),
    }


def _split_pair(text: str) -> Optional[Tuple[str, str]]:
    match = _PAIR.search(text)
    if not match:
        return None
    return match.group(1) + match.group(2), match.group(3) + match.group(4)


def parse_stats_line(line: str) -> Dict[str, str]:
    parts = [p.strip() for p in line.split("|")]
    if len(parts) < 6:
        return {}

    stats = {
        "cpu_percent": parts[0].replace("%", ""),
        "memory_usage": parts[1],
        "memory_percent": parts[2].replace("%", ""),
        "net_io": parts[3],
        "block_io": parts[4],
        "pids": parts[5],
    }
    for source, names in (
        (parts[1], ("memory_used", "memory_limit")),
        (parts[3], ("net_input", "net_output")),
        (parts[4], ("block_read", "block_write")),
    ):
        pair = _split_pair(source)
        if pair:
            stats[names[0]], stats[names[1]] = pair
    return stats


# ============================================================
# COLLECTOR
# ============================================================

class DockerCollector(Collector):
    """Collects container status and resource usage."""

    name = "docker"
    domain = Domain.DOCKER.value

    def __init__(
        self,
        enabled: bool = True,
        command_timeout: float = 15.0,
        clock: Optional[ClockProtocol] = None,
    ):
        self._enabled = enabled
        self._available = True
        self._timeout = command_timeout
        self._clock = clock_or_default(clock)

    @property
    def enabled(self) -> bool:
        return self._enabled and self._available

    async def _run(self, *args: str) -> List[str]:
        """Run a docker command and return its stdout lines."""
        proc = await asyncio.create_subprocess_exec(
            "docker",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise CollectionError(f"docker {args[0]} timed out", collector=self.name)

        if proc.returncode != 0:
            logger.warning(
                f"docker {args[0]} exited with {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
        return [line for line in stdout.decode(errors="replace").splitlines() if line.strip()]

    async def collect(self) -> CollectionResult:
        result = CollectionResult(collector=self.name)
        if not self.enabled:
            return result

        try:
            lines = await self._run("ps", "-a", "--format", PS_FORMAT)
        except FileNotFoundError:
            self._available = False
            logger.warning("docker binary not found, disabling docker collector")
            return result
        except (CollectionError, OSError) as e:
            result.add_error("containers", e)
            return result

        timestamp = self._clock.timestamp_ms()
        containers = [c for c in (parse_container_line(line) for line in lines) if c]
        for container in containers:
            container_id = container["id"]
            result.add_snapshot(self.domain, container_id, container)
            if container["simple_status"] != "running":
                logger.debug(f"Skipping stats for {container['name']}: {container['status']}")
                continue

            try:
                stats_lines = await self._run(
                    "stats", container_id, "--no-stream", "--format", STATS_FORMAT
                )
            except (CollectionError, OSError) as e:
                result.add_error(container_id, e)
                continue

            stats = parse_stats_line(stats_lines[0]) if stats_lines else {}
            if not stats:
                logger.warning(f"No stats returned for container {container_id}")
                continue

            result.add_snapshot(self.domain, f"stats:{container_id}", stats)
            for field, key in (("cpu", "cpu_percent"), ("memory", "memory_percent")):
                try:
                    value = float(stats[key])
                except (KeyError, ValueError):
                    logger.warning(f"Invalid {key} for container {container_id}: {stats.get(key)}")
                    continue
                result.add_sample(self.domain, container_id, value, timestamp, field=field)

        logger.debug(f"Collected docker metrics for {len(containers)} containers")
        return result


__all__ = ["DockerCollector", "parse_container_line", "parse_stats_line", "simple_status"]
