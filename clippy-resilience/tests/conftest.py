"""
Shared fixtures for clippy-resilience tests.
"""

import pytest


class FakeClock:
    """Millisecond clock advanced explicitly by tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def no_sleep(monkeypatch):
    """Record retry delays instead of sleeping."""
    delays = []

    async def fake_sleep(delay_ms, cancel_event=None):
        delays.append(delay_ms)

    monkeypatch.setattr("clippy_resilience.retry.policy.sleep_ms", fake_sleep)
    return delays
