"""
Shared fixtures.
"""

from datetime import datetime, timezone

import pytest

from core.clock import ClockFactory, MockClock
from storage.backends import MemoryBackend
from storage.keys import HostIdentity, KeyNamespace


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def host():
    return HostIdentity(id="host-a", display_name="Host A", location="rack-1")


@pytest.fixture
def namespace(host):
    return KeyNamespace(host)


@pytest.fixture
def clock():
    return MockClock(datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture(autouse=True)
def reset_clock():
    yield
    ClockFactory.reset()
