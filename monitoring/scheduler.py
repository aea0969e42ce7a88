"""
Monitor Scheduler.

============================================================
PURPOSE
============================================================
Runs every collector and the alert cycle on its own cadence.

PRINCIPLES:
- One asyncio task per collector plus one for alerts
- Store writes run in worker threads, so tasks genuinely share
  the stores concurrently
- An exception fails that cycle only; the loop keeps going
- Repeated failures are logged through a FailureReporter

============================================================
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from .alerts.manager import AlertManager, EvaluationResult
from .collectors.base import Collector
from .failures import FailureReporter
from .recorder import MetricsRecorder


logger = logging.getLogger(__name__)


Action = Callable[[], Awaitable[object]]


# ============================================================
# PERIODIC TASK
# ============================================================

class PeriodicTask:
    """Calls an async action every interval seconds until stopped."""

    def __init__(
        self,
        name: str,
        interval: float,
        action: Action,
        failures: Optional[FailureReporter] = None,
    ):
        self._name = name
        self._interval = interval
        self._action = action
        self._failures = failures or FailureReporter(f"task {name}", logger)
        self._task: Optional[asyncio.Task] = None
        self._runs = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def runs(self) -> int:
        return self._runs

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        """Run the action one time. Returns False if it raised."""
        self._runs += 1
        try:
            await self._action()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failures.failure(self._name, e)
            return False
        self._failures.success(self._name)
        return True

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            await self.run_once()
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self._interval - elapsed))

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"monitor-{self._name}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


# ============================================================
# MONITOR SCHEDULER
# ============================================================

class MonitorScheduler:
    """Owns the collector and alert tasks."""

    def __init__(
        self,
        recorder: MetricsRecorder,
        alert_manager: Optional[AlertManager] = None,
        alert_interval: float = 15.0,
    ):
        self._recorder = recorder
        self._alert_manager = alert_manager
        self._alert_interval = alert_interval
        self._collectors: Dict[str, Collector] = {}
        self._intervals: Dict[str, float] = {}
        self._tasks: List[PeriodicTask] = []
        self._running = False

    @property
    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks)

    @property
    def running(self) -> bool:
        return self._running

    def add_collector(self, collector: Collector, interval: float) -> None:
        if collector.name in self._collectors:
            raise ValueError(f"collector {collector.name} already registered")
        self._collectors[collector.name] = collector
        self._intervals[collector.name] = interval

    async def collect_and_record(self, collector: Collector) -> int:
        """One collection cycle: acquire, then persist in a worker thread."""
        if not collector.enabled:
            return 0
        result = await collector.collect()
        for resource, error in result.errors:
            logger.warning(f"{collector.name}: failed to collect {resource}: {error}")
        return await asyncio.to_thread(self._recorder.apply, result)

    async def evaluate_alerts(self) -> Optional[EvaluationResult]:
        if self._alert_manager is None:
            return None
        return await asyncio.to_thread(self._alert_manager.run_cycle)

    def _build_tasks(self) -> List[PeriodicTask]:
        tasks = []
        for name, collector in self._collectors.items():
            if not collector.enabled:
                logger.info(f"Collector {name} disabled")
                continue
            tasks.append(PeriodicTask(
                name,
                self._intervals[name],
                lambda c=collector: self.collect_and_record(c),
            ))
        if self._alert_manager is not None:
            tasks.append(PeriodicTask("alerts", self._alert_interval, self.evaluate_alerts))
        return tasks

    async def start(self) -> None:
        if self._running:
            return
        self._tasks = self._build_tasks()
        for task in self._tasks:
            task.start()
        self._running = True
        logger.info(f"Monitor scheduler started with {len(self._tasks)} tasks")

    async def stop(self) -> None:
        if not self._running:
            return
        await asyncio.gather(*(task.stop() for task in self._tasks))
        self._running = False
        logger.info("Monitor scheduler stopped")

    async def run_once(self) -> Optional[EvaluationResult]:
        """Collect every enabled domain once, then evaluate alerts once."""
        tasks = [
            PeriodicTask(name, self._intervals[name], lambda c=collector: self.collect_and_record(c))
            for name, collector in self._collectors.items()
            if collector.enabled
        ]
        await asyncio.gather(*(task.run_once() for task in tasks))
        return await self.evaluate_alerts()


__all__ = ["PeriodicTask", "MonitorScheduler"]
