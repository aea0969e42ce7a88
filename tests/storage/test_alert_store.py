"""
Tests for the alert store lifecycle.
"""

import threading
from unittest.mock import MagicMock

import pytest

from core.exceptions import BackendUnavailable, ValidationError
from monitoring.models import AlertEventKind, AlertLevel, AlertType
from storage.alert_store import AlertStore
from storage.backends import MemoryBackend


@pytest.fixture
def sink():
    return MagicMock()


@pytest.fixture
def store(backend, sink, clock):
    return AlertStore(backend, sink=sink, history_cap=100, clock=clock)


def fire_cpu(store, message="System CPU usage is high: 85%"):
    return store.fire_with_status(
        "HIGH_CPU_USAGE", message, AlertLevel.WARNING, AlertType.HIGH_CPU_USAGE, "SYSTEM"
    )


class FlakyIndexBackend(MemoryBackend):
    """Memory backend whose first active-set write fails."""

    def __init__(self):
        super().__init__()
        self.failures_left = 1

    def set_add(self, key, member):
        if self.failures_left:
            self.failures_left -= 1
            raise BackendUnavailable("connection lost", backend="memory")
        super().set_add(key, member)


class TestFire:
    """Tests for AlertStore.fire."""

    def test_creates_record(self, store, sink, clock):
        """Test that the first fire creates an active record."""
        record, created = fire_cpu(store)

        assert created is True
        assert record.active is True
        assert record.created_at == clock.now()
        assert store.is_active("HIGH_CPU_USAGE")
        assert store.get(record.id) == record
        assert store.list_history("SYSTEM") == [record.id]

        event = sink.publish.call_args[0][0]
        assert event.kind == AlertEventKind.CREATED
        assert event.record.id == record.id

    def test_second_fire_is_noop(self, store, sink):
        """Test that firing an active key returns the same record."""
        first, _ = fire_cpu(store)
        second, created = fire_cpu(store, message="different")

        assert created is False
        assert second.id == first.id
        assert second.message == first.message
        assert len(store.list_active()) == 1
        assert store.list_history("SYSTEM") == [first.id]
        assert sink.publish.call_count == 1

    def test_fire_returns_record(self, store):
        """Test the plain fire() shortcut."""
        record = store.fire("K", "msg", AlertLevel.ERROR, AlertType.SYSTEM_ERROR, "SYSTEM")
        assert record.dedupe_key == "K"

    def test_concurrent_fires_create_one_record(self, store):
        """Test that racing fires on one key create a single record."""
        results = []

        def worker():
            results.append(fire_cpu(store))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for _, created in results if created) == 1
        assert len({record.id for record, _ in results}) == 1
        assert len(store.list_history("SYSTEM")) == 1

    def test_transitions_not_logged_at_info(self, store, caplog):
        """Test that the store leaves INFO lifecycle lines to the logging sink."""
        with caplog.at_level("INFO", logger="storage.alert_store"):
            fire_cpu(store)
            store.resolve("HIGH_CPU_USAGE")
        assert [r for r in caplog.records if r.name == "storage.alert_store"] == []


class TestResolve:
    """Tests for AlertStore.resolve."""

    def test_resolve_active(self, store, sink, clock):
        """Test that resolve marks the record and clears the key."""
        record, _ = fire_cpu(store)
        clock.advance(60)

        resolved = store.resolve("HIGH_CPU_USAGE")

        assert resolved.id == record.id
        assert resolved.active is False
        assert resolved.resolved_at == clock.now()
        assert not store.is_active("HIGH_CPU_USAGE")
        assert store.list_active() == []
        assert store.get(record.id).active is False
        assert sink.publish.call_args[0][0].kind == AlertEventKind.RESOLVED

        history = store.list_history_records("SYSTEM")
        assert [r.id for r in history] == [record.id]
        assert history[0].active is False
        assert history[0].resolved_at is not None

    def test_resolve_inactive_is_noop(self, store, sink):
        """Test that resolving a cleared key does nothing."""
        assert store.resolve("HIGH_CPU_USAGE") is None
        sink.publish.assert_not_called()

    def test_double_resolve(self, store, sink):
        """Test that the second resolve is a no-op."""
        fire_cpu(store)
        store.resolve("HIGH_CPU_USAGE")
        assert store.resolve("HIGH_CPU_USAGE") is None
        assert sink.publish.call_count == 2

    def test_refire_after_resolve_creates_new_record(self, store):
        """Test that a resolved key can fire again with a new id."""
        first, _ = fire_cpu(store)
        store.resolve("HIGH_CPU_USAGE")
        second, created = fire_cpu(store)

        assert created is True
        assert second.id != first.id
        assert store.list_history("SYSTEM") == [second.id, first.id]


class TestHistory:
    """Tests for capped per-source history."""

    def test_history_cap(self, backend):
        """Test that history keeps only the newest entries."""
        store = AlertStore(backend, history_cap=3)
        ids = []
        for i in range(5):
            record = store.fire(f"K{i}", "m", AlertLevel.INFO, AlertType.SYSTEM_ERROR, "SYSTEM")
            ids.append(record.id)

        assert store.list_history("SYSTEM") == list(reversed(ids))[:3]
        # records outlive their history entry
        assert store.get(ids[0]) is not None

    def test_history_per_source(self, store):
        """Test that sources have separate histories."""
        fire_cpu(store)
        store.fire("DISK_SPACE_LOW__", "m", AlertLevel.WARNING, AlertType.DISK_SPACE_LOW, "STORAGE")
        assert len(store.list_history("SYSTEM")) == 1
        assert [r.dedupe_key for r in store.list_history_records("STORAGE")] == ["DISK_SPACE_LOW__"]

    def test_invalid_cap(self, backend):
        """Test that the cap must be positive."""
        with pytest.raises(ValidationError):
            AlertStore(backend, history_cap=0)


class TestQueries:
    """Tests for list_active and summary."""

    def test_list_active_newest_first(self, store, clock):
        """Test ordering of active alerts."""
        fire_cpu(store)
        clock.advance(10)
        store.fire("HIGH_MEMORY_USAGE", "m", AlertLevel.WARNING, AlertType.HIGH_MEMORY_USAGE, "SYSTEM")
        assert [r.dedupe_key for r in store.list_active()] == ["HIGH_MEMORY_USAGE", "HIGH_CPU_USAGE"]

    def test_summary(self, store):
        """Test counts per level."""
        fire_cpu(store)
        store.fire("X", "m", AlertLevel.ERROR, AlertType.DOCKER_CONTAINER_DOWN, "DOCKER")
        summary = store.summary()
        assert summary["WARNING"] == 1
        assert summary["ERROR"] == 1
        assert summary["CRITICAL"] == 0

    def test_failing_sink_keeps_change(self, backend, clock):
        """Test that a sink error never rolls back the store."""
        sink = MagicMock()
        sink.publish.side_effect = RuntimeError("boom")
        store = AlertStore(backend, sink=sink, clock=clock)
        record, created = fire_cpu(store)
        assert created is True
        assert store.is_active("HIGH_CPU_USAGE")

    def test_stale_pointer_is_repaired(self, store, backend):
        """Test that a pointer to a resolved record does not block fire."""
        record, _ = fire_cpu(store)
        mapping = backend.hash_get(f"alert:record:{record.id}")
        mapping["active"] = "false"
        backend.hash_replace(f"alert:record:{record.id}", mapping)

        assert not store.is_active("HIGH_CPU_USAGE")
        new_record, created = fire_cpu(store)
        assert created is True
        assert new_record.id != record.id


class TestFailedWrites:
    """Tests for recovery after a backend error mid-transition."""

    def test_failed_fire_is_retried_next_cycle(self, sink, clock):
        """Test that a fire interrupted by a backend error is created on the next fire."""
        backend = FlakyIndexBackend()
        store = AlertStore(backend, sink=sink, clock=clock)

        with pytest.raises(BackendUnavailable):
            fire_cpu(store)
        assert not store.is_active("HIGH_CPU_USAGE")
        sink.publish.assert_not_called()

        record, created = fire_cpu(store)
        fire_cpu(store)

        assert created is True
        assert [r.dedupe_key for r in store.list_active()] == ["HIGH_CPU_USAGE"]
        assert sink.publish.call_count == 1
        assert sink.publish.call_args[0][0].record.id == record.id

    def test_fire_restores_lost_index_entry(self, store, backend):
        """Test that firing an active key puts it back in the active set."""
        fire_cpu(store)
        backend.set_remove("active_alerts", "HIGH_CPU_USAGE")
        assert store.list_active() == []

        _, created = fire_cpu(store)

        assert created is False
        assert [r.dedupe_key for r in store.list_active()] == ["HIGH_CPU_USAGE"]
