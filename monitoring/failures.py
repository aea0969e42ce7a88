"""
Rate-limited failure reporting.

A collector or store that fails every cycle would otherwise flood the
log. For each named operation:

- the first 3 consecutive failures are logged at ERROR
- the 3rd also announces that further failures are suppressed
- after that, every 10th consecutive failure is logged
- the first success after a failure streak logs a recovery at INFO
"""

from typing import Dict, Optional
import logging
import threading

from core.constants import FAILURE_LOG_EVERY_N, FAILURE_LOG_FIRST_N


logger = logging.getLogger(__name__)


class FailureReporter:
    """Counts consecutive failures per operation and decides what to log."""

    def __init__(
        self,
        name: str,
        log: Optional[logging.Logger] = None,
        first_n: int = FAILURE_LOG_FIRST_N,
        every_n: int = FAILURE_LOG_EVERY_N,
    ):
        self._name = name
        self._log = log or logger
        self._first_n = first_n
        self._every_n = every_n
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def failure_count(self, operation: str) -> int:
        with self._lock:
            return self._counts.get(operation, 0)

    def failure(self, operation: str, error: BaseException) -> bool:
        """
        Record one failure.

        Returns True if it was logged.
        """
        with self._lock:
            count = self._counts.get(operation, 0) + 1
            self._counts[operation] = count

        if count <= self._first_n:
            self._log.error(f"{self._name}: {operation} failed: {error}")
            if count == self._first_n:
                self._log.warning(
                    f"{self._name}: {operation} failed {count} times in a row, "
                    f"logging every {self._every_n}th failure from now on"
                )
            return True

        if count % self._every_n == 0:
            self._log.error(
                f"{self._name}: {operation} still failing ({count} consecutive): {error}"
            )
            return True
        return False

    def success(self, operation: str) -> None:
        """Record a success, logging recovery after a failure streak."""
        with self._lock:
            count = self._counts.pop(operation, 0)
        if count:
            self._log.info(f"{self._name}: {operation} recovered after {count} failures")


__all__ = ["FailureReporter"]
