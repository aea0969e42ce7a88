"""
Tests for Alert Rules and the Alert Cycle.

============================================================
PURPOSE
============================================================
Rule evaluation is deterministic and the alert cycle applies
only real transitions.

TEST PRINCIPLES:
- Missing or unparseable values never fire or clear
- A breach fires once per dedupe key until it clears
- Per-resource rules keep one alert per resource

============================================================
"""

from unittest.mock import MagicMock

import pytest

from core.exceptions import BackendUnavailable, ValidationError
from monitoring.alerts import (
    AlertManager,
    AlertRuleEngine,
    Clear,
    Comparator,
    Fire,
    ThresholdRule,
    get_default_rules,
)
from monitoring.models import AlertEventKind, AlertLevel, AlertType
from storage.alert_store import AlertStore
from storage.current_values import CurrentValueTable


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def table(namespace, backend):
    return CurrentValueTable(namespace, backend)


@pytest.fixture
def sink():
    return MagicMock()


@pytest.fixture
def alert_store(backend, sink, clock):
    return AlertStore(backend, sink=sink, clock=clock)


@pytest.fixture
def manager(table, alert_store):
    return AlertManager(AlertRuleEngine(get_default_rules()), alert_store, table)


def cpu_rule(**overrides):
    params = dict(
        rule_id="HIGH_CPU_USAGE",
        domain="system",
        resource="cpu",
        field="usage_percent",
        comparator=Comparator.GT,
        threshold=80,
        level=AlertLevel.WARNING,
        alert_type=AlertType.HIGH_CPU_USAGE,
        message_template="System CPU usage is high: {value}%",
        source="SYSTEM",
    )
    params.update(overrides)
    return ThresholdRule(**params)


# ============================================================
# COMPARATOR TESTS
# ============================================================

class TestComparator:
    """Tests for Comparator.breaches."""

    @pytest.mark.parametrize("comparator,value,expected", [
        (Comparator.GT, "85", True),
        (Comparator.GT, "80", False),
        (Comparator.GE, "80", True),
        (Comparator.LT, "10.5", True),
        (Comparator.LE, "80.01", False),
    ])
    def test_numeric(self, comparator, value, expected):
        """Test numeric comparisons against 80."""
        assert comparator.breaches(value, 80.0) is expected

    @pytest.mark.parametrize("value", [None, "", "n/a", "nan"])
    def test_uncomparable(self, value):
        """Test that missing or unparseable values give None."""
        assert Comparator.GT.breaches(value, 80.0) is None

    def test_equality_ignores_case(self):
        """Test textual equality."""
        assert Comparator.EQ.breaches("Disconnected", "disconnected") is True
        assert Comparator.NE.breaches("running", "running") is False


# ============================================================
# RULE TESTS
# ============================================================

class TestThresholdRule:
    """Tests for ThresholdRule.evaluate."""

    def test_breach_fires(self):
        """Test that a breach produces Fire with a rendered message."""
        transitions = cpu_rule().evaluate({"system": {"cpu": {"usage_percent": "85.00"}}})
        assert transitions == [Fire(
            dedupe_key="HIGH_CPU_USAGE",
            message="System CPU usage is high: 85.00%",
            level=AlertLevel.WARNING,
            alert_type=AlertType.HIGH_CPU_USAGE,
            source="SYSTEM",
        )]

    def test_normal_clears(self):
        """Test that a normal value produces Clear."""
        transitions = cpu_rule().evaluate({"system": {"cpu": {"usage_percent": "50"}}})
        assert transitions == [Clear("HIGH_CPU_USAGE")]

    def test_missing_value_is_silent(self):
        """Test that absent resources and fields produce nothing."""
        rule = cpu_rule()
        assert rule.evaluate({}) == []
        assert rule.evaluate({"system": {"cpu": {"cores": "4"}}}) == []

    def test_per_resource_dedupe_keys(self):
        """Test one dedupe key per disk."""
        rule = get_default_rules(disk_threshold=90)[2]
        transitions = rule.evaluate({"storage": {
            "_": {"usage_percent": "95"},
            "_data": {"usage_percent": "10"},
        }})
        assert transitions[0].dedupe_key == "DISK_SPACE_LOW__"
        assert transitions[0].message == "Disk _ usage is high: 95%"
        assert transitions[1] == Clear("DISK_SPACE_LOW__data")

    def test_template_uses_snapshot_fields(self):
        """Test that docker messages read name and status."""
        rule = next(r for r in get_default_rules() if r.rule_id == "DOCKER_CONTAINER_DOWN")
        transitions = rule.evaluate({"docker": {"abc": {
            "name": "web",
            "status": "Exited (1) 2 minutes ago",
            "simple_status": "stopped",
        }}})
        assert transitions[0].message == (
            "Docker container web is not running (status: Exited (1) 2 minutes ago)"
        )

    def test_global_rule_needs_resource(self):
        """Test that a global rule without a resource is invalid."""
        with pytest.raises(ValidationError):
            cpu_rule(resource=None)

    def test_numeric_rule_needs_number(self):
        """Test that ordering comparators need numeric thresholds."""
        with pytest.raises(ValidationError):
            cpu_rule(threshold="high")


class TestAlertRuleEngine:
    """Tests for AlertRuleEngine."""

    def test_default_rule_ids(self):
        """Test the default rule table."""
        ids = [r.rule_id for r in AlertRuleEngine().rules]
        assert ids == [
            "HIGH_CPU_USAGE",
            "HIGH_MEMORY_USAGE",
            "DISK_SPACE_LOW",
            "DOCKER_CONTAINER_DOWN",
            "RTSP_STREAM_DOWN",
        ]

    def test_domains(self):
        """Test that only enabled rule domains are read."""
        engine = AlertRuleEngine([cpu_rule(), cpu_rule(rule_id="X", domain="rtsp", enabled=False)])
        assert engine.domains() == {"system"}

    def test_duplicate_ids_rejected(self):
        """Test that rule ids are unique."""
        with pytest.raises(ValidationError):
            AlertRuleEngine([cpu_rule(), cpu_rule()])

    def test_failing_rule_is_skipped(self):
        """Test that one broken rule does not stop the rest."""
        broken = cpu_rule(rule_id="BROKEN")
        broken.evaluate = MagicMock(side_effect=RuntimeError("bad"))
        engine = AlertRuleEngine([broken, cpu_rule()])
        transitions = engine.evaluate({"system": {"cpu": {"usage_percent": "90"}}})
        assert [t.dedupe_key for t in transitions] == ["HIGH_CPU_USAGE"]


# ============================================================
# ALERT CYCLE TESTS
# ============================================================

class TestAlertManager:
    """Tests for AlertManager.run_cycle."""

    def test_cpu_fire_hold_resolve(self, manager, table, sink):
        """Test 85, 85, 50: one CREATED, nothing, one RESOLVED."""
        table.set("system", "cpu", {"usage_percent": "85"})
        first = manager.run_cycle()
        assert [r.dedupe_key for r in first.fired] == ["HIGH_CPU_USAGE"]
        assert first.fired[0].level == AlertLevel.WARNING

        second = manager.run_cycle()
        assert second.fired == []
        assert second.resolved == []

        table.set("system", "cpu", {"usage_percent": "50"})
        third = manager.run_cycle()
        assert [r.dedupe_key for r in third.resolved] == ["HIGH_CPU_USAGE"]

        kinds = [call[0][0].kind for call in sink.publish.call_args_list]
        assert kinds == [AlertEventKind.CREATED, AlertEventKind.RESOLVED]

    def test_disks_alert_independently(self, manager, table, alert_store):
        """Test one alert per full disk."""
        table.set("storage", "_", {"usage_percent": "95"})
        table.set("storage", "_data", {"usage_percent": "97"})
        table.set("storage", "_home", {"usage_percent": "20"})

        result = manager.run_cycle()

        assert sorted(r.dedupe_key for r in result.fired) == [
            "DISK_SPACE_LOW__",
            "DISK_SPACE_LOW__data",
        ]
        assert len(alert_store.list_history("STORAGE")) == 2

    def test_vanished_resource_stays_active(self, manager, table, backend, namespace, alert_store):
        """Test that a resource that disappears is not cleared."""
        table.set("rtsp", "cam1", {"status": "disconnected"})
        manager.run_cycle()
        backend.delete(namespace.format_key("rtsp", "cam1", "current"))

        result = manager.run_cycle()
        assert result.resolved == []
        assert alert_store.is_active("RTSP_STREAM_DOWN_cam1")

    def test_backend_failure_fails_cycle(self, alert_store):
        """Test that an unreadable table yields a failed result."""
        table = MagicMock()
        table.snapshot.side_effect = BackendUnavailable("down")
        manager = AlertManager(AlertRuleEngine(), alert_store, table)

        result = manager.run_cycle()

        assert not result.ok
        assert result.failures[0][0] == "read_current_values"

    def test_store_failure_is_isolated(self, table):
        """Test that one failing transition does not block others."""
        store = MagicMock()
        store.fire_with_status.side_effect = BackendUnavailable("down")
        store.resolve.return_value = None
        manager = AlertManager(AlertRuleEngine(), store, table)
        table.set("system", "cpu", {"usage_percent": "99"})
        table.set("system", "memory", {"usage_percent": "10"})

        result = manager.run_cycle()

        assert [key for key, _ in result.failures] == ["HIGH_CPU_USAGE"]
        store.resolve.assert_called_once_with("HIGH_MEMORY_USAGE")

    def test_summary(self, manager, table):
        """Test active counts by level."""
        table.set("system", "cpu", {"usage_percent": "99"})
        table.set("docker", "abc", {"simple_status": "stopped", "name": "db", "status": "Exited"})
        manager.run_cycle()

        summary = manager.get_alert_summary()
        assert summary["active_count"] == 2
        assert summary["by_level"]["ERROR"] == 1
        assert summary["by_level"]["WARNING"] == 1
