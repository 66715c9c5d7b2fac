"""Telemetry store: per-process history plus the selected process's live view."""

from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass
from enum import Enum

import structlog

from jvmdash.exceptions import DashboardError
from jvmdash.models import LiveSnapshot, ProcessId, TelemetrySample
from jvmdash.window import DEFAULT_WINDOW_MS, TimeWindowBuffer, now_ms

log = structlog.get_logger()

HistoryFetcher = Callable[[ProcessId, int], Awaitable[list[TelemetrySample]]]


class ChangeKind(Enum):
    """What changed in the store."""

    SAMPLE = "sample"  # a buffer grew
    SNAPSHOT = "snapshot"  # the live snapshot was overwritten
    SELECTION = "selection"  # the selected process changed
    BACKFILL = "backfill"  # the selected buffer was replaced from history
    ALERTS = "alerts"  # the alert list should be refreshed


@dataclass(slots=True, frozen=True)
class StoreChange:
    """Change notification delivered to store subscribers."""

    kind: ChangeKind
    process_id: ProcessId | None = None


Listener = Callable[[StoreChange], None]


class TelemetryStore:
    """
    Owns one TimeWindowBuffer per process and the live snapshot.

    Only one process is selected at a time. Samples for every process are
    buffered; only samples for the selected one touch the live snapshot.
    Subscribers are notified synchronously, in subscription order.
    """

    def __init__(
        self,
        fetch_history: HistoryFetcher | None = None,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Initialize the TelemetryStore.

        Args:
            fetch_history: Awaitable (process id, since ms) -> samples, used
                to backfill a buffer when its process is selected.
            window_ms: Retention period for every buffer.
            clock: Epoch-millisecond clock shared with the buffers.
        """
        self._fetch_history = fetch_history
        self._window_ms = window_ms
        self._clock = clock
        self._buffers: dict[ProcessId, TimeWindowBuffer] = {}
        self._selected: ProcessId | None = None
        self._live: LiveSnapshot | None = None
        self._listeners: list[Listener] = []

    @property
    def selected(self) -> ProcessId | None:
        """Get the selected process id."""
        return self._selected

    @property
    def live(self) -> LiveSnapshot | None:
        """Get the live snapshot of the selected process."""
        return self._live

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def buffer(self, process_id: ProcessId) -> TimeWindowBuffer:
        """Get the buffer for a process, creating it on first use."""
        buffer = self._buffers.get(process_id)
        if buffer is None:
            buffer = TimeWindowBuffer(self._window_ms, self._clock)
            self._buffers[process_id] = buffer
        return buffer

    def has_buffer(self, process_id: ProcessId) -> bool:
        return process_id in self._buffers

    def samples(self, process_id: ProcessId) -> list[TelemetrySample]:
        """Get the buffered samples of a process, oldest first."""
        buffer = self._buffers.get(process_id)
        return buffer.all() if buffer is not None else []

    def latest(self, process_id: ProcessId) -> TelemetrySample | None:
        buffer = self._buffers.get(process_id)
        return buffer.latest() if buffer is not None else None

    def known_processes(self) -> list[ProcessId]:
        """Get the ids of every process that has a buffer."""
        return list(self._buffers)

    def forget(self, process_ids: Collection[ProcessId]) -> None:
        """Drop the buffers of processes no longer in the known set."""
        for process_id in list(self._buffers):
            if process_id not in process_ids and process_id != self._selected:
                del self._buffers[process_id]

    def handle_metrics(self, process_id: ProcessId, sample: TelemetrySample) -> None:
        """Record a streamed sample."""
        self.buffer(process_id).append(sample)
        self._notify(StoreChange(ChangeKind.SAMPLE, process_id))
        if process_id == self._selected:
            self._live = LiveSnapshot.from_sample(process_id, sample)
            self._notify(StoreChange(ChangeKind.SNAPSHOT, process_id))

    def handle_alert(self) -> None:
        """Signal that the alert list is out of date."""
        self._notify(StoreChange(ChangeKind.ALERTS))

    async def select(self, process_id: ProcessId | None) -> bool:
        """
        Make ``process_id`` the live process and backfill its history.

        The live snapshot is cleared immediately. The history response is
        applied only if ``process_id`` is still selected when it arrives.

        Returns:
            True if the backfill was applied.
        """
        self._selected = process_id
        self._live = None
        self._notify(StoreChange(ChangeKind.SELECTION, process_id))
        if process_id is None or self._fetch_history is None:
            return False

        since = self._clock() - self._window_ms
        try:
            history = await self._fetch_history(process_id, since)
        except DashboardError as exc:
            log.warning("backfill_failed", process_id=process_id, error=str(exc))
            return False
        return self.apply_backfill(process_id, history)

    def apply_backfill(self, process_id: ProcessId, history: list[TelemetrySample]) -> bool:
        """Replace a buffer with fetched history unless the response is stale."""
        if process_id != self._selected:
            log.info(
                "backfill_discarded",
                process_id=process_id,
                selected=self._selected,
                samples=len(history),
            )
            return False
        self.buffer(process_id).replace(history)
        self._notify(StoreChange(ChangeKind.BACKFILL, process_id))
        return True

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                log.exception("store_listener_failed", kind=change.kind.value)
