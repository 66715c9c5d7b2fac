"""Shared helpers for jvmdash tests."""

import pytest

from jvmdash.models import TelemetrySample


class FakeClock:
    """Settable epoch-millisecond clock."""

    def __init__(self, now: int = 10_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_sample(timestamp: int, **overrides) -> TelemetrySample:
    """Build a sample with plausible values for a healthy JVM."""
    values = {
        "heap_used": 256 * 1024 * 1024,
        "heap_max": 1024 * 1024 * 1024,
        "heap_usage": 0.25,
        "metaspace_used": 64 * 1024 * 1024,
        "metaspace_max": 256 * 1024 * 1024,
        "metaspace_usage": 0.25,
        "thread_count": 40,
        "cpu_usage": 0.1,
        "gc_count": 5,
        "gc_time": 120,
        "uptime": 60_000,
    }
    values.update(overrides)
    return TelemetrySample(timestamp=timestamp, **values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
