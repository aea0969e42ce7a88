"""
RTSP Collector.

Checks each configured stream by sending an RTSP OPTIONS request
and expecting a 200 reply within the connect timeout.

Fields per stream: stream_name, stream_url, status
(connected / disconnected), active, error_message,
consecutive_failures, last_checked. History sample is 1.0 when
connected, 0.0 otherwise.
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

from core.clock import ClockProtocol
from core.constants import Domain

from ..models import CollectionResult
from .base import Collector, clock_or_default


logger = logging.getLogger(__name__)

DEFAULT_RTSP_PORT = 554


async def probe_rtsp(url: str, timeout: float) -> Tuple[bool, str]:
    """
    Send OPTIONS to an RTSP server.

    Returns (ok, error_message).
    """
    parts = urlsplit(url)
    if parts.scheme.lower() not in ("rtsp", "rtsps") or not parts.hostname:
        return False, f"invalid RTSP url: {url}"

    port = parts.port or DEFAULT_RTSP_PORT
    writer = None
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(parts.hostname, port, ssl=parts.scheme.lower() == "rtsps"),
            timeout=timeout,
        )
        request = (
            f"OPTIONS {url} RTSP/1.0\r\n"
            "CSeq: 1\r\n"
            "User-Agent: host-monitor\r\n"
            "\r\n"
        )
        writer.write(request.encode())
        await writer.drain()
        status_line = await asyncio.wait_for(reader.readline(), timeout=timeout)
    except asyncio.TimeoutError:
        return False, f"timed out after {timeout:g}s"
    except OSError as e:
        return False, str(e) or type(e).__name__
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    text = status_line.decode(errors="replace").strip()
    fields = text.split(" ", 2)
    if len(fields) >= 2 and fields[0].startswith("RTSP/") and fields[1] == "200":
        return True, ""
    return False, f"unexpected reply: {text or '<empty>'}"


class RtspCollector(Collector):
    """Collects liveness of configured RTSP streams."""

    name = "rtsp"
    domain = Domain.RTSP.value

    def __init__(
        self,
        streams: Dict[str, str],
        connect_timeout: float = 5.0,
        clock: Optional[ClockProtocol] = None,
        probe=probe_rtsp,
    ):
        self._streams = dict(streams)
        self._timeout = connect_timeout
        self._clock = clock_or_default(clock)
        self._probe = probe
        self._failures: Dict[str, int] = {}

    @property
    def enabled(self) -> bool:
        return bool(self._streams)

    def consecutive_failures(self, stream_name: str) -> int:
        return self._failures.get(stream_name, 0)

    async def _check(self, name: str, url: str) -> Tuple[str, bool, str]:
        ok, error = await self._probe(url, self._timeout)
        return name, ok, error

    async def collect(self) -> CollectionResult:
        result = CollectionResult(collector=self.name)
        if not self._streams:
            return result

        checks = await asyncio.gather(
            *(self._check(name, url) for name, url in self._streams.items())
        )
        timestamp = self._clock.timestamp_ms()

        for name, ok, error in checks:
            if ok:
                self._failures[name] = 0
            else:
                self._failures[name] = self._failures.get(name, 0) + 1
                logger.debug(f"RTSP stream {name} unreachable: {error}")

            result.add_snapshot(self.domain, name, {
                "stream_name": name,
                "stream_url": self._streams[name],
                "status": "connected" if ok else "disconnected",
                "active": ok,
                "error_message": error,
                "consecutive_failures": self._failures[name],
                "last_checked": int(timestamp),
            })
            result.add_sample(self.domain, name, 1.0 if ok else 0.0, timestamp)

        return result


__all__ = ["RtspCollector", "probe_rtsp"]
