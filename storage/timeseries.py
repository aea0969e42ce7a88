"""
Storage - Bounded Time Series.

============================================================
PURPOSE
============================================================
Append-only series capped at max_records samples per key.

- append() adds a sample and trims in the same atomic unit
- Trimming evicts the smallest timestamp first; equal
  timestamps evict the earliest append first
- Out-of-order appends are allowed, trimming sorts by time
- Unknown keys read as empty, never as an error

============================================================
"""

from dataclasses import dataclass
from typing import Any, Dict, List
import math

from core.constants import DEFAULT_MAX_RECORDS
from core.exceptions import ValidationError
from storage.backends import StorageBackend


@dataclass(frozen=True)
class Sample:
    """One observation. timestamp is epoch milliseconds."""

    timestamp: float
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "value": self.value}


class TimeSeriesStore:
    """Bounded per-key time series over a storage backend."""

    def __init__(self, backend: StorageBackend, max_records: int = DEFAULT_MAX_RECORDS):
        if not isinstance(max_records, int) or max_records < 1:
            raise ValidationError(
                "max_records must be a positive integer",
                field_name="max_records",
                value=max_records,
            )
        self._backend = backend
        self._max_records = max_records

    @property
    def max_records(self) -> int:
        return self._max_records

    def append(self, key: str, timestamp: float, value: float) -> None:
        """
        Append one sample and trim the series to max_records.

        Raises:
            ValidationError: empty key or non-finite timestamp/value
            BackendUnavailable: backend unreachable
        """
        _check_key(key)
        timestamp = _finite("timestamp", timestamp)
        value = _finite("value", value)
        self._backend.series_append(key, timestamp, value, self._max_records)

    def query(self, key: str, descending: bool = True) -> List[Sample]:
        """All retained samples, newest first unless descending=False."""
        _check_key(key)
        return [
            Sample(timestamp=ts, value=value)
            for ts, value in self._backend.series_range(key, descending=descending)
        ]

    def size(self, key: str) -> int:
        _check_key(key)
        return self._backend.series_size(key)


def _check_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        raise ValidationError("series key must be a non-empty string", field_name="key", value=key)


def _finite(name: str, number: float) -> float:
    try:
        number = float(number)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number", field_name=name, value=number)
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be finite", field_name=name, value=number)
    return number


__all__ = ["Sample", "TimeSeriesStore"]
