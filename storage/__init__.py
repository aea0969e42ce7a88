"""
Storage Package.

Bounded, host-namespaced persistence for metrics and alerts.

Modules:
- keys: key namespace and host identity
- backends: memory and redis backends
- timeseries: bounded per-key time series
- current_values: latest snapshot per resource
- alert_store: deduplicated alert lifecycle
"""

from storage.backends import MemoryBackend, RedisBackend, StorageBackend, create_backend
from storage.current_values import CurrentValueTable
from storage.keys import HostIdentity, KeyNamespace
from storage.timeseries import Sample, TimeSeriesStore

__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "RedisBackend",
    "create_backend",
    "CurrentValueTable",
    "HostIdentity",
    "KeyNamespace",
    "Sample",
    "TimeSeriesStore",
]
