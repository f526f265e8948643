"""Shared fixtures: an in-memory provider, a controllable clock and a gateway."""

from datetime import datetime, timedelta, timezone

import pytest

from notifygate import Gateway, InMemoryProvider, Settings


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return InMemoryProvider()


@pytest.fixture
def settings():
    return Settings(
        api_key="test-key",
        default_topic="alerts",
        pending_ttl_sec=60,
        sweep_interval_sec=0,
        provider_timeout_sec=0,
        provider_backoff_sec=0,
    )


@pytest.fixture
def gateway(provider, settings, clock):
    return Gateway(provider, settings, clock=clock)
