"""Threshold rules that turn the live snapshot into suggestions."""

from collections.abc import Callable, Mapping
from typing import Any

from jvmdash.formatting import format_duration, format_percent
from jvmdash.models import Level, Suggestion
from jvmdash.store import ChangeKind, StoreChange, TelemetryStore

ONE_HOUR_MS = 3_600_000
ONE_WEEK_MS = 604_800_000

HEAP_CRITICAL = 0.9
HEAP_WARNING = 0.8
HEAP_LOW = 0.5
METASPACE_WARNING = 0.85
GC_WARNING_COUNT = 100
GC_INFO_COUNT = 50
THREAD_WARNING_COUNT = 500
THREAD_INFO_COUNT = 200
CPU_CRITICAL = 0.9
CPU_WARNING = 0.8
RESTART_GC_COUNT = 200


class _Fields:
    """Zero-defaulting read access over a snapshot object or mapping."""

    __slots__ = ("_source",)

    def __init__(self, source: Any) -> None:
        self._source = source

    def __getattr__(self, name: str) -> float:
        source = self._source
        if source is None:
            return 0
        if isinstance(source, Mapping):
            value = source.get(name)
        else:
            value = getattr(source, name, None)
        if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        return value


def _heap(m: _Fields) -> Suggestion | None:
    usage = format_percent(m.heap_usage)
    if m.heap_usage >= HEAP_CRITICAL:
        return Suggestion(
            Level.CRITICAL,
            "Heap usage too high",
            f"Heap at {usage}; increase the heap size or reduce memory usage",
        )
    if m.heap_usage >= HEAP_WARNING:
        return Suggestion(
            Level.WARNING,
            "Heap usage elevated",
            f"Heap at {usage}; watch the memory growth trend",
        )
    if m.heap_usage < HEAP_LOW and m.heap_max > 0:
        return Suggestion(
            Level.INFO,
            "Heap usage low",
            f"Heap at {usage}; the heap could be reduced",
        )
    return None


def _metaspace(m: _Fields) -> Suggestion | None:
    if m.metaspace_usage >= METASPACE_WARNING:
        return Suggestion(
            Level.WARNING,
            "Metaspace usage elevated",
            f"Metaspace at {format_percent(m.metaspace_usage)}; too many classes may be loaded",
        )
    return None


def _gc_frequency(m: _Fields) -> Suggestion | None:
    if m.uptime <= ONE_HOUR_MS:
        return None
    if m.gc_count > GC_WARNING_COUNT:
        return Suggestion(
            Level.WARNING,
            "High GC frequency",
            f"{int(m.gc_count)} collections; reduce allocation or tune the GC",
        )
    if m.gc_count > GC_INFO_COUNT:
        return Suggestion(
            Level.INFO,
            "Moderate GC frequency",
            f"{int(m.gc_count)} collections; keep an eye on it",
        )
    return None


def _threads(m: _Fields) -> Suggestion | None:
    if m.thread_count > THREAD_WARNING_COUNT:
        return Suggestion(
            Level.WARNING,
            "Too many threads",
            f"{int(m.thread_count)} threads; check for a thread leak",
        )
    if m.thread_count > THREAD_INFO_COUNT:
        return Suggestion(
            Level.INFO,
            "Many threads",
            f"{int(m.thread_count)} threads; review thread pool sizing",
        )
    return None


def _cpu(m: _Fields) -> Suggestion | None:
    usage = format_percent(m.cpu_usage)
    if m.cpu_usage >= CPU_CRITICAL:
        return Suggestion(
            Level.CRITICAL,
            "CPU usage too high",
            f"CPU at {usage}; profile for hot methods",
        )
    if m.cpu_usage >= CPU_WARNING:
        return Suggestion(
            Level.WARNING,
            "CPU usage elevated",
            f"CPU at {usage}; keep an eye on it",
        )
    return None


def _long_uptime(m: _Fields) -> Suggestion | None:
    if m.uptime > ONE_WEEK_MS and m.gc_count > RESTART_GC_COUNT:
        return Suggestion(
            Level.INFO,
            "Consider restarting",
            f"Up for {format_duration(m.uptime)} with frequent GC; a restart may help",
        )
    return None


RULES: tuple[Callable[[_Fields], Suggestion | None], ...] = (
    _heap,
    _metaspace,
    _gc_frequency,
    _threads,
    _cpu,
    _long_uptime,
)


def evaluate(snapshot: Any) -> list[Suggestion]:
    """
    Run every rule against a snapshot, in rule order.

    ``snapshot`` may be a LiveSnapshot, a TelemetrySample, a mapping with
    the same snake_case field names, or None. Missing fields read as 0.
    """
    fields = _Fields(snapshot)
    suggestions = []
    for rule in RULES:
        suggestion = rule(fields)
        if suggestion is not None:
            suggestions.append(suggestion)
    return suggestions


class SuggestionFeed:
    """Keeps the current suggestion list in step with the store's live snapshot."""

    def __init__(self, on_change: Callable[[list[Suggestion]], None] | None = None) -> None:
        self._on_change = on_change
        self._suggestions: list[Suggestion] = []
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def suggestions(self) -> list[Suggestion]:
        return list(self._suggestions)

    def attach(self, store: TelemetryStore) -> None:
        """Subscribe to ``store`` and recompute on every snapshot change."""
        self.detach()

        def listener(change: StoreChange) -> None:
            if change.kind in (ChangeKind.SNAPSHOT, ChangeKind.SELECTION):
                self.update(store.live)

        self._unsubscribe = store.subscribe(listener)
        self.update(store.live)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def update(self, snapshot: Any) -> list[Suggestion]:
        self._suggestions = evaluate(snapshot)
        if self._on_change is not None:
            self._on_change(list(self._suggestions))
        return self.suggestions
