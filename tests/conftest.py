"""
Shared fixtures for the TSDB test suite.
"""

import pytest


class FakeClock:
    """Settable wall clock for TTL and fragment-name tests."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A clock frozen at a fixed instant."""
    return FakeClock()
