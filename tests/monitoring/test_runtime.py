"""
Tests for the scheduler and the read API.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from monitoring.alerts import AlertManager, AlertRuleEngine
from monitoring.api import create_app
from monitoring.collectors.base import Collector
from monitoring.failures import FailureReporter
from monitoring.models import AlertLevel, AlertType, CollectionResult
from monitoring.notifications import AlertStreamHub
from monitoring.recorder import MetricsReader, MetricsRecorder
from monitoring.scheduler import MonitorScheduler, PeriodicTask
from storage.alert_store import AlertStore
from storage.current_values import CurrentValueTable


class FakeCollector(Collector):
    """Returns a fixed cpu reading."""

    name = "fake"
    domain = "system"

    def __init__(self, usage="85", fail=False, enabled=True):
        self.usage = usage
        self.fail = fail
        self._enabled = enabled
        self.calls = 0

    @property
    def enabled(self):
        return self._enabled

    async def collect(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("sensor gone")
        result = CollectionResult(collector=self.name)
        result.add_snapshot("system", "cpu", {"usage_percent": self.usage})
        result.add_sample("system", "cpu", float(self.usage), 1000.0 * self.calls)
        return result


@pytest.fixture
def alert_store(backend, clock):
    return AlertStore(backend, clock=clock)


@pytest.fixture
def recorder(host, backend):
    return MetricsRecorder(host, backend)


@pytest.fixture
def manager(namespace, backend, alert_store):
    return AlertManager(AlertRuleEngine(), alert_store, CurrentValueTable(namespace, backend))


# ============================================================
# SCHEDULER
# ============================================================

class TestPeriodicTask:
    """Tests for PeriodicTask."""

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_loop(self):
        """Test that a raising action keeps being scheduled."""
        calls = []

        async def action():
            calls.append(1)
            raise RuntimeError("boom")

        failures = FailureReporter("test", MagicMock())
        task = PeriodicTask("flaky", 0.01, action, failures)
        task.start()
        await asyncio.sleep(0.1)
        await task.stop()

        assert len(calls) >= 2
        assert failures.failure_count("flaky") == len(calls)
        assert not task.running

    @pytest.mark.asyncio
    async def test_run_once_reports_success(self):
        """Test the return value of run_once."""
        async def action():
            return None

        task = PeriodicTask("ok", 1.0, action)
        assert await task.run_once() is True
        assert task.runs == 1


class TestMonitorScheduler:
    """Tests for MonitorScheduler."""

    @pytest.mark.asyncio
    async def test_run_once_collects_then_alerts(self, recorder, manager, alert_store, backend):
        """Test that one cycle records and raises the cpu alert."""
        scheduler = MonitorScheduler(recorder, manager)
        scheduler.add_collector(FakeCollector("91"), 10)

        result = await scheduler.run_once()

        assert [r.dedupe_key for r in result.fired] == ["HIGH_CPU_USAGE"]
        assert alert_store.is_active("HIGH_CPU_USAGE")
        assert MetricsReader(backend).query_history("host-a", "system", "cpu")[0].value == 91.0

    @pytest.mark.asyncio
    async def test_failing_collector_is_isolated(self, recorder, manager):
        """Test that one failing collector does not stop the cycle."""
        scheduler = MonitorScheduler(recorder, manager)
        broken = FakeCollector(fail=True)
        broken.name = "broken"
        scheduler.add_collector(broken, 10)
        scheduler.add_collector(FakeCollector("95"), 10)

        result = await scheduler.run_once()

        assert broken.calls == 1
        assert [r.dedupe_key for r in result.fired] == ["HIGH_CPU_USAGE"]

    @pytest.mark.asyncio
    async def test_disabled_collectors_get_no_task(self, recorder, manager):
        """Test that disabled collectors are skipped."""
        scheduler = MonitorScheduler(recorder, manager, alert_interval=0.05)
        disabled = FakeCollector(enabled=False)
        scheduler.add_collector(disabled, 0.05)

        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert [t.name for t in scheduler.tasks] == ["alerts"]
        assert disabled.calls == 0
        assert not scheduler.running

    def test_duplicate_collector(self, recorder):
        """Test that collector names are unique."""
        scheduler = MonitorScheduler(recorder)
        scheduler.add_collector(FakeCollector(), 10)
        with pytest.raises(ValueError):
            scheduler.add_collector(FakeCollector(), 10)


# ============================================================
# API
# ============================================================

@pytest.fixture
def reader(backend, alert_store):
    return MetricsReader(backend, alert_store)


@pytest_asyncio.fixture
async def client(reader, manager):
    app = create_app(reader, manager, AlertStreamHub())
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


class TestMonitorAPI:
    """Tests for the read-only HTTP API."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        """Test the health endpoint."""
        resp = await client.get("/health")
        assert resp.status == 200
        assert (await resp.json())["status"] == "ok"

    @pytest.mark.asyncio
    async def test_servers_and_domain(self, client, recorder):
        """Test host listing and domain snapshots."""
        recorder.record_host_info()
        recorder.record_snapshot("host-a", "storage", "_", {"usage_percent": "42.00"})

        servers = await (await client.get("/api/metrics/servers")).json()
        assert [s["id"] for s in servers["data"]] == ["host-a"]

        domain = await (await client.get("/api/metrics/host-a/storage")).json()
        assert domain["data"] == {"_": {"usage_percent": "42.00"}}

        server = await (await client.get("/api/metrics/server/host-a")).json()
        assert server["data"]["info"]["display_name"] == "Host A"
        assert server["data"]["storage"]["_"]["usage_percent"] == "42.00"

    @pytest.mark.asyncio
    async def test_history(self, client, recorder):
        """Test history newest first, including per-field series."""
        for ts in (100, 200, 300, 400):
            recorder.record_sample("host-a", "system", "cpu", None, ts / 10, ts)
        recorder.record_sample("host-a", "network", "eth0", "sent", 5.0, 100)

        body = await (await client.get("/api/metrics/host-a/system/cpu/history")).json()
        assert body["data"] == [
            {"timestamp": 400.0, "value": 40.0},
            {"timestamp": 300.0, "value": 30.0},
            {"timestamp": 200.0, "value": 20.0},
        ]

        body = await (await client.get("/api/metrics/host-a/network/eth0/history?field=sent")).json()
        assert body["data"] == [{"timestamp": 100.0, "value": 5.0}]

    @pytest.mark.asyncio
    async def test_unknown_host_is_empty(self, client):
        """Test that unknown hosts read as empty data."""
        body = await (await client.get("/api/metrics/nobody/system")).json()
        assert body == {"status": "ok", "data": {}}

    @pytest.mark.asyncio
    async def test_invalid_host_is_bad_request(self, client):
        """Test that glob characters in the host id are rejected."""
        resp = await client.get("/api/metrics/ho*st/system")
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_alerts(self, client, alert_store):
        """Test active, history and summary endpoints."""
        alert_store.fire("HIGH_CPU_USAGE", "cpu high", AlertLevel.WARNING, AlertType.HIGH_CPU_USAGE, "SYSTEM")

        active = await (await client.get("/api/alerts/active")).json()
        assert active["data"][0]["dedupe_key"] == "HIGH_CPU_USAGE"
        assert active["data"][0]["active"] is True

        history = await (await client.get("/api/alerts/history/SYSTEM")).json()
        assert len(history["data"]) == 1

        summary = await (await client.get("/api/alerts/summary")).json()
        assert summary["data"]["active_count"] == 1
        assert summary["data"]["by_level"]["WARNING"] == 1
