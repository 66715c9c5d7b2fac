"""Time-windowed sample buffer for jvmdash."""

import time
from collections import deque
from collections.abc import Callable, Iterable

from jvmdash.models import TelemetrySample

DEFAULT_WINDOW_MS = 3_600_000  # one hour


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class TimeWindowBuffer:
    """
    Ordered telemetry history for a single process.

    Samples are kept in arrival order, which is assumed to be
    non-decreasing by timestamp. Every append drops samples at or before
    ``now - window_ms``. There is no sweep timer, so a process that stops
    reporting keeps its last samples until the next append.
    """

    def __init__(
        self,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Initialize the buffer.

        Args:
            window_ms: Retention period in milliseconds.
            clock: Returns "now" in epoch milliseconds; used for eviction.
        """
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self._window_ms = window_ms
        self._clock = clock
        self._samples: deque[TelemetrySample] = deque()

    @property
    def window_ms(self) -> int:
        """Get the retention period."""
        return self._window_ms

    def __len__(self) -> int:
        return len(self._samples)

    def append(self, sample: TelemetrySample) -> None:
        """Append a sample and evict everything outside the window."""
        self._samples.append(sample)
        self._evict()

    def replace(self, samples: Iterable[TelemetrySample]) -> None:
        """Swap the contents for ``samples`` wholesale, with no merge."""
        self._samples = deque(samples)

    def all(self) -> list[TelemetrySample]:
        """Get the buffered samples, oldest first."""
        return list(self._samples)

    def latest(self) -> TelemetrySample | None:
        """Get the newest sample, if any."""
        return self._samples[-1] if self._samples else None

    def _evict(self) -> None:
        cutoff = self._clock() - self._window_ms
        samples = self._samples
        while samples and samples[0].timestamp <= cutoff:
            samples.popleft()
        # A late sample older than the cutoff never survives its own append
        if samples and samples[-1].timestamp <= cutoff:
            samples.pop()
