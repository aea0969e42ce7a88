"""
Monitoring Collectors - Interface.

============================================================
PURPOSE
============================================================
A collector reads one domain of signals from the local host
and returns a CollectionResult.

PRINCIPLES:
- No shared base state; each collector owns whatever it needs
  from the previous tick (cpu times, byte counters, failures)
- A failure on one resource is added to result.errors and the
  remaining resources are still collected
- Collectors never write to storage themselves

============================================================
"""

from abc import ABC, abstractmethod
from typing import Optional

from core.clock import ClockFactory, ClockProtocol

from ..models import CollectionResult


class Collector(ABC):
    """Interface every collector implements."""

    name: str = "collector"
    domain: str = ""

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def collect(self) -> CollectionResult:
        """Read the domain once."""
        pass


def clock_or_default(clock: Optional[ClockProtocol]) -> ClockProtocol:
    return clock or ClockFactory.get_clock()


def percent(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return part / whole * 100.0


def fmt2(value: float) -> str:
    return f"{value:.2f}"


MB = 1024.0 * 1024.0
GB = MB * 1024.0


__all__ = ["Collector", "clock_or_default", "percent", "fmt2", "MB", "GB"]
