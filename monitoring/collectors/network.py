"""
Network Collector.

Per-interface counters and transfer rates, plus an "overall"
snapshot. Rates are computed against the byte counters this
collector saw on its previous tick; a counter that went
backwards (interface reset) yields a rate of zero.
"""

import asyncio
import logging
import socket
from typing import Dict, Optional, Tuple

import psutil

from core.clock import ClockProtocol
from core.constants import Domain
from core.exceptions import CollectionError

from ..models import CollectionResult
from .base import Collector, MB, clock_or_default, fmt2


logger = logging.getLogger(__name__)

OVERALL_RESOURCE = "overall"


def _addresses(addrs) -> Tuple[str, str]:
    ipv4 = []
    mac = ""
    for addr in addrs or []:
        if addr.family == socket.AF_INET:
            ipv4.append(addr.address)
        elif addr.family == getattr(psutil, "AF_LINK", None):
            mac = addr.address
    return ", ".join(ipv4), mac


class NetworkCollector(Collector):
    """Collects interface counters and rates."""

    name = "network"
    domain = Domain.NETWORK.value

    def __init__(self, clock: Optional[ClockProtocol] = None):
        self._clock = clock_or_default(clock)
        self._prev_timestamp: Optional[float] = None
        self._prev_bytes: Dict[str, Tuple[int, int]] = {}

    async def collect(self) -> CollectionResult:
        return await asyncio.to_thread(self._collect)

    def rate_kbps(self, interface: str, received: int, sent: int, elapsed: float) -> Tuple[float, float]:
        """Rates in KB/s since the previous tick, then remember these counters."""
        previous = self._prev_bytes.get(interface)
        self._prev_bytes[interface] = (received, sent)
        if previous is None or elapsed <= 0:
            return 0.0, 0.0
        recv_rate = max(0, received - previous[0]) / elapsed / 1024.0
        sent_rate = max(0, sent - previous[1]) / elapsed / 1024.0
        return recv_rate, sent_rate

    def _collect(self) -> CollectionResult:
        result = CollectionResult(collector=self.name)
        timestamp = self._clock.timestamp_ms()
        elapsed = 0.0
        if self._prev_timestamp is not None:
            elapsed = (timestamp - self._prev_timestamp) / 1000.0

        try:
            counters = psutil.net_io_counters(pernic=True)
            stats = psutil.net_if_stats()
            addrs = psutil.net_if_addrs()
        except (psutil.Error, OSError) as e:
            result.add_error("interfaces", CollectionError(str(e), collector=self.name, cause=e))
            return result

        total_received = 0
        total_sent = 0
        for interface, io in sorted(counters.items()):
            total_received += io.bytes_recv
            total_sent += io.bytes_sent
            recv_rate, sent_rate = self.rate_kbps(interface, io.bytes_recv, io.bytes_sent, elapsed)

            if_stats = stats.get(interface)
            ip_address, mac = _addresses(addrs.get(interface))
            result.add_snapshot(self.domain, interface, {
                "name": interface,
                "status": "UP" if if_stats and if_stats.isup else "DOWN",
                "ip_address": ip_address,
                "mac": mac,
                "mtu": if_stats.mtu if if_stats else 0,
                "received_mb": fmt2(io.bytes_recv / MB),
                "sent_mb": fmt2(io.bytes_sent / MB),
                "packets_received": io.packets_recv,
                "packets_sent": io.packets_sent,
                "in_errors": io.errin,
                "out_errors": io.errout,
                "received_rate_kbps": fmt2(recv_rate),
                "sent_rate_kbps": fmt2(sent_rate),
            })
            result.add_sample(self.domain, interface, round(recv_rate, 2), timestamp, field="received")
            result.add_sample(self.domain, interface, round(sent_rate, 2), timestamp, field="sent")

        result.add_snapshot(self.domain, OVERALL_RESOURCE, {
            "total_received_mb": int(total_received / MB),
            "total_sent_mb": int(total_sent / MB),
            "interface_count": len(counters),
        })

        self._prev_timestamp = timestamp
        logger.debug(f"Collected network metrics for {len(counters)} interfaces")
        return result


__all__ = ["NetworkCollector"]
