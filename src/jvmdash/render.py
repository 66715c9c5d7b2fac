"""Projection of buffered telemetry into chart series."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

import structlog

from jvmdash.formatting import format_clock
from jvmdash.models import TelemetrySample
from jvmdash.store import ChangeKind, StoreChange, TelemetryStore

log = structlog.get_logger()


@dataclass(slots=True, frozen=True)
class ChartSpec:
    """Static description of one chart."""

    key: str
    label: str
    light_color: str
    dark_color: str

    def color(self, theme: str) -> str:
        return self.dark_color if theme == "dark" else self.light_color


CHARTS: tuple[ChartSpec, ...] = (
    ChartSpec("heap", "Heap %", "#3b82f6", "#60a5fa"),
    ChartSpec("cpu", "CPU %", "#ef4444", "#f87171"),
    ChartSpec("thread", "Threads", "#10b981", "#34d399"),
    ChartSpec("metaspace", "Metaspace %", "#a855f7", "#c084fc"),
)


class ChartHandle(Protocol):
    """A chart created by a sink."""

    def update(self, labels: Sequence[str], values: Sequence[float]) -> None: ...

    def destroy(self) -> None: ...


class ChartSink(Protocol):
    """Visualization backend that can create charts."""

    def create_chart(self, spec: ChartSpec, theme: str) -> ChartHandle: ...


@dataclass(slots=True, frozen=True)
class ChartSeries:
    """Parallel series projected from an ordered run of samples."""

    labels: list[str]
    heap: list[float]
    cpu: list[float]
    thread: list[float]
    metaspace: list[float]

    def values(self, key: str) -> list[float]:
        return getattr(self, key)


def project(
    samples: Sequence[TelemetrySample],
    label_format: Callable[[int], str] = format_clock,
) -> ChartSeries:
    """Project samples into heap %, CPU %, thread count and metaspace % series."""
    return ChartSeries(
        labels=[label_format(s.timestamp) for s in samples],
        heap=[(s.heap_usage or 0.0) * 100 for s in samples],
        cpu=[(s.cpu_usage or 0.0) * 100 for s in samples],
        thread=[float(s.thread_count or 0) for s in samples],
        metaspace=[(s.metaspace_usage or 0.0) * 100 for s in samples],
    )


class RenderSinkAdapter:
    """
    Owns the four telemetry charts and pushes series into them.

    Charts are acquired by ``open()`` and released by ``close()``;
    ``recreate()`` always releases the old charts before creating new
    ones. ``render()`` replaces chart data in place with no transition,
    so it is safe to call for every streamed sample.
    """

    def __init__(
        self,
        sink: ChartSink,
        label_format: Callable[[int], str] = format_clock,
    ) -> None:
        self._sink = sink
        self._label_format = label_format
        self._charts: dict[str, ChartHandle] = {}
        self._theme = "light"
        self._unsubscribe: Callable[[], None] | None = None
        self.renders = 0

    @property
    def is_open(self) -> bool:
        return bool(self._charts)

    @property
    def theme(self) -> str:
        return self._theme

    def __enter__(self) -> "RenderSinkAdapter":
        self.open(self._theme)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self, theme: str = "light") -> None:
        """Create the charts, if they do not exist yet."""
        if self._charts:
            return
        self._theme = theme
        try:
            for spec in CHARTS:
                self._charts[spec.key] = self._sink.create_chart(spec, theme)
        except Exception:
            self.close()
            raise

    def close(self) -> None:
        """Release every chart. Safe to call more than once."""
        charts, self._charts = self._charts, {}
        for key, chart in charts.items():
            try:
                chart.destroy()
            except Exception:
                log.exception("chart_destroy_failed", chart=key)

    def recreate(self, theme: str | None = None) -> None:
        """Release the current charts and create fresh ones."""
        self.close()
        self.open(theme or self._theme)

    def render(self, samples: Sequence[TelemetrySample]) -> None:
        """Push ``samples`` into the charts; empty input leaves them as they are."""
        if not samples or not self._charts:
            return
        series = project(samples, self._label_format)
        for key, chart in self._charts.items():
            chart.update(series.labels, series.values(key))
        self.renders += 1

    def attach(self, store: TelemetryStore) -> None:
        """Follow ``store``: re-render the selected buffer as it changes."""
        self.detach()

        def listener(change: StoreChange) -> None:
            if change.kind is ChangeKind.SELECTION:
                self.recreate()
            elif change.kind in (ChangeKind.SNAPSHOT, ChangeKind.BACKFILL):
                if change.process_id == store.selected:
                    self.render(store.samples(change.process_id))

        self._unsubscribe = store.subscribe(listener)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
