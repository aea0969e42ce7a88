"""
Alert Manager.

============================================================
PURPOSE
============================================================
Runs one alert cycle: read current values, evaluate rules,
apply each transition to the alert store.

PRINCIPLES:
- Each dedupe key is applied independently
- A failure on one key is recorded and reported, never aborts
  the rest of the cycle
- A cycle that cannot read current values fails alone; the
  next cycle starts fresh

============================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import BackendUnavailable
from storage.alert_store import AlertStore
from storage.current_values import CurrentValueTable

from ..failures import FailureReporter
from ..models import AlertRecord
from .rules import AlertRuleEngine, Clear, Fire


logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    """Outcome of one alert cycle."""

    fired: List[AlertRecord] = field(default_factory=list)
    resolved: List[AlertRecord] = field(default_factory=list)
    failures: List[Tuple[str, BaseException]] = field(default_factory=list)
    transitions: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transitions": self.transitions,
            "fired": [r.dedupe_key for r in self.fired],
            "resolved": [r.dedupe_key for r in self.resolved],
            "failures": {key: str(error) for key, error in self.failures},
        }


class AlertManager:
    """
    Applies rule engine transitions to the alert store.

    Synchronous; the scheduler runs it in a worker thread.
    """

    def __init__(
        self,
        engine: AlertRuleEngine,
        store: AlertStore,
        current_values: CurrentValueTable,
        failures: Optional[FailureReporter] = None,
    ):
        self._engine = engine
        self._store = store
        self._current = current_values
        self._failures = failures or FailureReporter("alerts", logger)

    @property
    def store(self) -> AlertStore:
        return self._store

    @property
    def engine(self) -> AlertRuleEngine:
        return self._engine

    def read_current_values(self) -> Dict[str, Dict[str, Dict[str, str]]]:
        """Snapshot of every domain the rules need."""
        return {domain: self._current.snapshot(domain) for domain in self._engine.domains()}

    def run_cycle(self) -> EvaluationResult:
        """Evaluate once and apply the resulting transitions."""
        result = EvaluationResult()

        try:
            values = self.read_current_values()
        except BackendUnavailable as e:
            self._failures.failure("read_current_values", e)
            result.failures.append(("read_current_values", e))
            return result
        self._failures.success("read_current_values")

        transitions = self._engine.evaluate(values)
        result.transitions = len(transitions)

        for transition in transitions:
            try:
                if isinstance(transition, Fire):
                    record, created = self._store.fire_with_status(
                        transition.dedupe_key,
                        transition.message,
                        transition.level,
                        transition.alert_type,
                        transition.source,
                    )
                    if created:
                        result.fired.append(record)
                elif isinstance(transition, Clear):
                    record = self._store.resolve(transition.dedupe_key)
                    if record is not None:
                        result.resolved.append(record)
            except Exception as e:
                result.failures.append((transition.dedupe_key, e))
                self._failures.failure(f"apply {transition.dedupe_key}", e)
            else:
                self._failures.success(f"apply {transition.dedupe_key}")

        if result.fired or result.resolved:
            logger.info(
                f"Alert cycle: {len(result.fired)} created, "
                f"{len(result.resolved)} resolved, {len(result.failures)} failed"
            )
        return result

    def get_alert_summary(self) -> Dict[str, Any]:
        """Active alert counts by level."""
        by_level = self._store.summary()
        return {
            "active_count": sum(by_level.values()),
            "by_level": by_level,
        }


__all__ = ["AlertManager", "EvaluationResult"]
