import time

import pytest

from warden.core.backends.memory import InMemoryBackend
from warden.core.policy import RateLimitPolicy


class FakeClock:
    """Manually advanced time source for window tests."""

    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock: FakeClock) -> InMemoryBackend:
    """Create a fresh in-memory backend for each test."""
    return InMemoryBackend(clock=clock)


@pytest.fixture
def policy() -> RateLimitPolicy:
    return RateLimitPolicy.default()
