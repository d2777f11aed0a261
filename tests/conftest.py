"""Shared fixtures for the session manager test suite."""

import pytest

from src.domain.session.cache import SessionCache
from src.domain.session.manager import SessionLifecycleManager
from src.domain.session.storage.memory import InMemorySessionGateway


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return InMemorySessionGateway()


@pytest.fixture
def cache(clock):
    return SessionCache(ttl_seconds=900, clock=clock)


@pytest.fixture
def manager(gateway, cache):
    return SessionLifecycleManager(gateway, cache, max_active_sessions_per_user=5)
