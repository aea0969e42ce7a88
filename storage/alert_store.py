"""
Storage - Alert Store.

============================================================
PURPOSE
============================================================
Durable alert lifecycle with deduplication.

Per dedupe key:

    Cleared --fire--> Active --resolve--> Cleared

fire() while Active and resolve() while Cleared are no-ops.

============================================================
LAYOUT
============================================================
alert:record:<id>          hash, the AlertRecord (never deleted)
alert:active:<dedupeKey>   id of the active record, only while active
active_alerts              set of active dedupe keys
alert_history:<source>     list of ids, newest first, capped

The check-then-act of fire/resolve runs under the backend lock
for the dedupe key, and each transition commits in one
write_batch(). Events are published after the lock is
released; a failing sink never undoes a committed change.

============================================================
"""

from typing import Dict, List, Optional, Tuple
import logging
import uuid

from core.clock import ClockFactory, ClockProtocol
from core.constants import DEFAULT_ALERT_HISTORY_CAP
from core.exceptions import ValidationError
from monitoring.models import AlertEvent, AlertEventKind, AlertLevel, AlertRecord, AlertType
from monitoring.notifications.base import NotificationSink
from storage.backends import StorageBackend, Write
from storage.keys import (
    active_alerts_key,
    alert_dedupe_key,
    alert_history_key,
    alert_record_key,
)


logger = logging.getLogger(__name__)


class AlertStore:
    """Active alert set, alert records and per-source history."""

    def __init__(
        self,
        backend: StorageBackend,
        sink: Optional[NotificationSink] = None,
        history_cap: int = DEFAULT_ALERT_HISTORY_CAP,
        clock: Optional[ClockProtocol] = None,
    ):
        if not isinstance(history_cap, int) or history_cap < 1:
            raise ValidationError(
                "history_cap must be a positive integer",
                field_name="history_cap",
                value=history_cap,
            )
        self._backend = backend
        self._sink = sink
        self._history_cap = history_cap
        self._clock = clock

    def _now(self):
        return (self._clock or ClockFactory.get_clock()).now()

    # ============================================================
    # MUTATIONS
    # ============================================================

    def fire(
        self,
        dedupe_key: str,
        message: str,
        level: AlertLevel,
        alert_type: AlertType,
        source: str,
    ) -> AlertRecord:
        """
        Raise an alert unless one is already active for dedupe_key.

        Returns the active record, new or existing.
        """
        record, _ = self.fire_with_status(dedupe_key, message, level, alert_type, source)
        return record

    def fire_with_status(
        self,
        dedupe_key: str,
        message: str,
        level: AlertLevel,
        alert_type: AlertType,
        source: str,
    ) -> Tuple[AlertRecord, bool]:
        """Like fire(), also telling whether a new record was created."""
        pointer = alert_dedupe_key(dedupe_key)
        history = alert_history_key(source)

        with self._backend.lock(pointer):
            existing = self._active_record(pointer)
            if existing is not None:
                # idempotent; restores an index entry lost to a failed write
                self._backend.set_add(active_alerts_key(), dedupe_key)
                return existing, False

            record = AlertRecord(
                id=str(uuid.uuid4()),
                dedupe_key=dedupe_key,
                message=message,
                level=level,
                type=alert_type,
                source=source,
                created_at=self._now(),
            )
            # pointer last: a batch cut short leaves the key cleared
            self._backend.write_batch([
                Write("hash_replace", alert_record_key(record.id), (record.to_mapping(),)),
                Write("set_add", active_alerts_key(), (dedupe_key,)),
                Write("list_push_capped", history, (record.id, self._history_cap)),
                Write("set", pointer, (record.id,)),
            ])

        logger.debug(f"Alert created: {message} [{level.value}] ({dedupe_key})")
        self._publish(AlertEvent(AlertEventKind.CREATED, record))
        return record, True

    def resolve(self, dedupe_key: str) -> Optional[AlertRecord]:
        """
        Resolve the active alert for dedupe_key.

        Returns the resolved record, or None when nothing was active.
        """
        pointer = alert_dedupe_key(dedupe_key)

        with self._backend.lock(pointer):
            record = self._active_record(pointer)
            if record is None:
                self._backend.set_remove(active_alerts_key(), dedupe_key)
                return None

            record.active = False
            record.resolved_at = self._now()
            self._backend.write_batch([
                Write("hash_replace", alert_record_key(record.id), (record.to_mapping(),)),
                Write("set_remove", active_alerts_key(), (dedupe_key,)),
                Write("delete", pointer),
            ])

        logger.debug(f"Alert resolved: {record.message} ({dedupe_key})")
        self._publish(AlertEvent(AlertEventKind.RESOLVED, record))
        return record

    def _active_record(self, pointer: str, repair: bool = True) -> Optional[AlertRecord]:
        alert_id = self._backend.get(pointer)
        if not alert_id:
            return None
        record = self.get(alert_id)
        if record is None or not record.active:
            if repair:
                # stale pointer left behind by an interrupted resolve
                self._backend.delete(pointer)
            return None
        return record

    def _publish(self, event: AlertEvent) -> None:
        if self._sink is None:
            return
        try:
            self._sink.publish(event)
        except Exception as e:
            logger.error(
                f"Failed to publish {event.kind.value} for {event.record.dedupe_key}: {e}"
            )

    # ============================================================
    # QUERIES
    # ============================================================

    def get(self, alert_id: str) -> Optional[AlertRecord]:
        mapping = self._backend.hash_get(alert_record_key(alert_id))
        if not mapping:
            return None
        return AlertRecord.from_mapping(mapping)

    def is_active(self, dedupe_key: str) -> bool:
        return self._active_record(alert_dedupe_key(dedupe_key), repair=False) is not None

    def list_active(self) -> List[AlertRecord]:
        """Active alerts, newest first."""
        records = []
        for dedupe_key in self._backend.set_members(active_alerts_key()):
            record = self._active_record(alert_dedupe_key(dedupe_key), repair=False)
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def list_history(self, source: str) -> List[str]:
        """Alert ids raised by source, newest first."""
        return self._backend.list_range(alert_history_key(source))

    def list_history_records(self, source: str) -> List[AlertRecord]:
        records = []
        for alert_id in self.list_history(source):
            record = self.get(alert_id)
            if record is not None:
                records.append(record)
        return records

    def summary(self) -> Dict[str, int]:
        """Count of active alerts per level."""
        counts = {level.value: 0 for level in AlertLevel}
        for record in self.list_active():
            counts[record.level.value] += 1
        return counts


__all__ = ["AlertStore"]
