"""
Metrics Write and Read Paths.

============================================================
PURPOSE
============================================================
MetricsRecorder: how collectors' output reaches storage.
MetricsReader: how the API and operators read it back.

Series naming:
- field=None     -> <host>:<domain>:history:<resource>
- field="x"      -> <host>:<domain>:history:<resource>:x

A backend outage never escapes either path. Writes are dropped
and reads return empty results; both are reported through a
rate-limited FailureReporter.

============================================================
"""

from typing import Any, Dict, List, Mapping, Optional
import logging
import threading

from core.constants import DEFAULT_MAX_RECORDS, Domain, KeyKind
from core.exceptions import BackendUnavailable, ValidationError
from storage.alert_store import AlertStore
from storage.backends import StorageBackend
from storage.current_values import CurrentValueTable
from storage.keys import DomainLike, HostIdentity, KeyNamespace
from storage.timeseries import Sample, TimeSeriesStore

from .failures import FailureReporter
from .models import AlertRecord, CollectionResult


logger = logging.getLogger(__name__)

HOST_INFO_RESOURCE = "info"


def series_name(resource: str, field: Optional[str] = None) -> str:
    """
    History resource for a per-field series: <resource>:<field>.

    The field may not contain ":", so it is always the text after the
    last ":". A resource literally named "<resource>:<field>" with no
    field maps to the same series; collectors never name a resource
    that way because the field series would shadow it.
    """
    if field is None:
        return resource
    if not field or ":" in field:
        raise ValidationError("invalid series field", field_name="field", value=field)
    return f"{resource}:{field}"


class _Namespaces:
    """Caches a KeyNamespace per host id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_host: Dict[str, KeyNamespace] = {}

    def get(self, host_id: str) -> KeyNamespace:
        with self._lock:
            namespace = self._by_host.get(host_id)
            if namespace is None:
                namespace = KeyNamespace(HostIdentity(id=host_id))
                self._by_host[host_id] = namespace
            return namespace


# ============================================================
# WRITE PATH
# ============================================================

class MetricsRecorder:
    """Writes samples and snapshots for the local host."""

    def __init__(
        self,
        host: HostIdentity,
        backend: StorageBackend,
        max_records: int = DEFAULT_MAX_RECORDS,
        failures: Optional[FailureReporter] = None,
    ):
        self._host = host
        self._backend = backend
        self._series = TimeSeriesStore(backend, max_records)
        self._namespaces = _Namespaces()
        self._failures = failures or FailureReporter("recorder", logger)

    @property
    def host(self) -> HostIdentity:
        return self._host

    def record_sample(
        self,
        host_id: str,
        domain: DomainLike,
        resource: str,
        field: Optional[str],
        value: float,
        timestamp: float,
    ) -> bool:
        """
        Append one sample to a bounded series.

        Returns False if the backend was unavailable.

        Raises:
            ValidationError: malformed key component or sample
        """
        namespace = self._namespaces.get(host_id)
        key = namespace.format_key(domain, series_name(resource, field), KeyKind.HISTORY)
        try:
            self._series.append(key, timestamp, value)
        except BackendUnavailable as e:
            self._failures.failure("record_sample", e)
            return False
        self._failures.success("record_sample")
        return True

    def record_snapshot(
        self,
        host_id: str,
        domain: DomainLike,
        resource: str,
        fields: Mapping[str, Any],
    ) -> bool:
        """Replace the current snapshot of one resource."""
        table = CurrentValueTable(self._namespaces.get(host_id), self._backend)
        try:
            table.set(domain, resource, fields)
        except BackendUnavailable as e:
            self._failures.failure("record_snapshot", e)
            return False
        self._failures.success("record_snapshot")
        return True

    def record_host_info(self, extra: Optional[Mapping[str, Any]] = None) -> bool:
        fields: Dict[str, Any] = dict(self._host.to_dict())
        fields.update(extra or {})
        return self.record_snapshot(self._host.id, Domain.SERVER, HOST_INFO_RESOURCE, fields)

    def apply(self, result: CollectionResult) -> int:
        """
        Persist one collector cycle for the local host.

        Each write stands alone; a rejected snapshot or sample is
        logged and the rest still land. Returns writes that succeeded.
        """
        written = 0
        for snapshot in result.snapshots:
            try:
                if self.record_snapshot(
                    self._host.id, snapshot.domain, snapshot.resource, snapshot.fields
                ):
                    written += 1
            except ValidationError as e:
                logger.warning(f"{result.collector}: dropped snapshot {snapshot.resource}: {e}")

        for sample in result.samples:
            try:
                if self.record_sample(
                    self._host.id,
                    sample.domain,
                    sample.resource,
                    sample.field,
                    sample.value,
                    sample.timestamp,
                ):
                    written += 1
            except ValidationError as e:
                logger.warning(f"{result.collector}: dropped sample {sample.resource}: {e}")

        logger.debug(
            f"{result.collector}: wrote {written} entries "
            f"({len(result.snapshots)} snapshots, {len(result.samples)} samples)"
        )
        return written


# ============================================================
# READ PATH
# ============================================================

class MetricsReader:
    """Read-only access to any host's metrics and to alerts."""

    def __init__(
        self,
        backend: StorageBackend,
        alert_store: Optional[AlertStore] = None,
        failures: Optional[FailureReporter] = None,
    ):
        self._backend = backend
        self._series = TimeSeriesStore(backend, DEFAULT_MAX_RECORDS)
        self._alerts = alert_store
        self._namespaces = _Namespaces()
        self._failures = failures or FailureReporter("reader", logger)

    def _table(self, host_id: str) -> CurrentValueTable:
        return CurrentValueTable(self._namespaces.get(host_id), self._backend)

    def query_history(
        self,
        host_id: str,
        domain: DomainLike,
        resource: str,
        field: Optional[str] = None,
    ) -> List[Sample]:
        """Retained samples, newest first."""
        key = self._namespaces.get(host_id).format_key(
            domain, series_name(resource, field), KeyKind.HISTORY
        )
        try:
            samples = self._series.query(key)
        except BackendUnavailable as e:
            self._failures.failure("query_history", e)
            return []
        self._failures.success("query_history")
        return samples

    def query_current(
        self, host_id: str, domain: DomainLike, resource: str
    ) -> Optional[Dict[str, str]]:
        try:
            fields = self._table(host_id).get(domain, resource)
        except BackendUnavailable as e:
            self._failures.failure("query_current", e)
            return None
        self._failures.success("query_current")
        return fields

    def query_domain(self, host_id: str, domain: DomainLike) -> Dict[str, Dict[str, str]]:
        """Every current snapshot of a domain, keyed by resource."""
        try:
            snapshot = self._table(host_id).snapshot(domain)
        except BackendUnavailable as e:
            self._failures.failure("query_domain", e)
            return {}
        self._failures.success("query_domain")
        return snapshot

    def list_resources(self, host_id: str, domain: DomainLike) -> List[str]:
        try:
            resources = self._table(host_id).list_resources(domain)
        except BackendUnavailable as e:
            self._failures.failure("list_resources", e)
            return []
        self._failures.success("list_resources")
        return sorted(resources)

    def list_hosts(self) -> List[Dict[str, str]]:
        """Hosts that have published their identity."""
        pattern = f"*:{Domain.SERVER.value}:{KeyKind.CURRENT.value}:{HOST_INFO_RESOURCE}"
        hosts = []
        try:
            for key in self._backend.keys(pattern):
                info = self._backend.hash_get(key)
                if info:
                    hosts.append(info)
        except BackendUnavailable as e:
            self._failures.failure("list_hosts", e)
            return []
        self._failures.success("list_hosts")
        return sorted(hosts, key=lambda h: h.get("id", ""))

    def list_active_alerts(self) -> List[AlertRecord]:
        if self._alerts is None:
            return []
        try:
            records = self._alerts.list_active()
        except BackendUnavailable as e:
            self._failures.failure("list_active_alerts", e)
            return []
        self._failures.success("list_active_alerts")
        return records

    def list_alert_history(self, source: str) -> List[str]:
        """Alert ids raised by source, newest first."""
        if self._alerts is None:
            return []
        try:
            alert_ids = self._alerts.list_history(source)
        except BackendUnavailable as e:
            self._failures.failure("list_alert_history", e)
            return []
        self._failures.success("list_alert_history")
        return alert_ids

    def list_alert_history_records(self, source: str) -> List[AlertRecord]:
        if self._alerts is None:
            return []
        try:
            records = self._alerts.list_history_records(source)
        except BackendUnavailable as e:
            self._failures.failure("list_alert_history_records", e)
            return []
        self._failures.success("list_alert_history_records")
        return records

    def alert_summary(self) -> Dict[str, int]:
        if self._alerts is None:
            return {}
        try:
            return self._alerts.summary()
        except BackendUnavailable as e:
            self._failures.failure("alert_summary", e)
            return {}


__all__ = ["MetricsRecorder", "MetricsReader", "series_name"]
