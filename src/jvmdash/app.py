"""jvmdash - Main Textual application."""

from collections.abc import Awaitable, Sequence
from enum import Enum

import structlog
from textual.app import App, ComposeResult, ScreenStackError
from textual.containers import Container, Horizontal, Vertical
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Label, Sparkline, Static
from textual.widgets.data_table import CellDoesNotExist

from jvmdash.api import DashboardApi
from jvmdash.config import DashboardConfig
from jvmdash.diagnostics import SuggestionFeed
from jvmdash.exceptions import DashboardError
from jvmdash.formatting import (
    format_bytes,
    format_cpu_time,
    format_duration,
    format_percent,
    usage_class,
)
from jvmdash.models import Alert, Level, LiveSnapshot, ProcessId, ProcessInfo, Suggestion, ThreadSample
from jvmdash.render import ChartSpec, RenderSinkAdapter
from jvmdash.store import ChangeKind, StoreChange, TelemetryStore
from jvmdash.stream import Connector, StreamClient, StreamState, aiohttp_connect
from jvmdash.threads import ThreadSnapshotFetcher, ThreadView

log = structlog.get_logger()

USAGE_COLORS = {"normal": "green", "warning": "yellow", "danger": "red"}
LEVEL_COLORS = {Level.INFO: "cyan", Level.WARNING: "yellow", Level.CRITICAL: "red"}
ALERT_COLORS = {"info": "cyan", "warning": "yellow", "critical": "red"}
COLUMNS = ("id", "app", "status", "heap", "threads", "host")


class SortKey(Enum):
    """Sort keys for the fleet table."""

    NAME = "name"
    HEAP = "heap"
    THREADS = "threads"
    STATUS = "status"


def colored_usage(usage: float | None) -> str:
    """Format a usage fraction with markup colour by severity."""
    color = USAGE_COLORS[usage_class(usage)]
    return f"[{color}]{format_percent(usage)}[/{color}]"


class LiveHeader(Static):
    """Header widget showing the selected process's live telemetry."""

    DEFAULT_CSS = """
    LiveHeader {
        height: auto;
        min-height: 4;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize LiveHeader."""
        super().__init__(*args, **kwargs)
        self._process_name: str | None = None
        self._snapshot: LiveSnapshot | None = None
        self._connection: StreamState = StreamState.CLOSED

    def compose(self) -> ComposeResult:
        """Compose the header layout."""
        yield Horizontal(
            Static(self._get_live_info(), id="live-info"),
            Static(self._get_connection_info(), id="connection-info"),
        )

    def show_process(self, name: str | None) -> None:
        """Switch to a newly selected process; its snapshot starts empty."""
        self._process_name = name
        self._snapshot = None
        self._refresh_display()

    def update_snapshot(self, snapshot: LiveSnapshot | None) -> None:
        self._snapshot = snapshot
        self._refresh_display()

    def set_connection(self, state: StreamState) -> None:
        self._connection = state
        self._refresh_display()

    def _refresh_display(self) -> None:
        """Refresh the display with current data."""
        try:
            self.query_one("#live-info", Static).update(self._get_live_info())
            self.query_one("#connection-info", Static).update(self._get_connection_info())
        except NoMatches:
            pass  # Widget not mounted yet

    def _get_connection_info(self) -> str:
        if self._connection is StreamState.OPEN:
            return "[green]● live[/green]"
        if self._connection is StreamState.CONNECTING:
            return "[yellow]● connecting[/yellow]"
        return "[red]● disconnected[/red]"

    def _get_live_info(self) -> str:
        if self._process_name is None:
            return "Select a process to see live telemetry"
        m = self._snapshot
        if m is None:
            return f"[b]{self._process_name}[/b]\nWaiting for telemetry..."
        return (
            f"[b]{self._process_name}[/b]  uptime {format_duration(m.uptime)}\n"
            f"Heap {colored_usage(m.heap_usage)} "
            f"{format_bytes(m.heap_used)}/{format_bytes(m.heap_max)}   "
            f"Metaspace {colored_usage(m.metaspace_usage)} "
            f"{format_bytes(m.metaspace_used)}/{format_bytes(m.metaspace_max)}\n"
            f"CPU {colored_usage(m.cpu_usage)}   Threads {m.thread_count}   "
            f"GC {m.gc_count} ({format_cpu_time(m.gc_time)})"
        )


class ChartBox(Vertical):
    """One labelled sparkline chart."""

    DEFAULT_CSS = """
    ChartBox {
        height: 5;
        width: 1fr;
        border: round $primary;
    }
    """

    def __init__(self, spec: ChartSpec, theme: str) -> None:
        super().__init__(classes=f"chart chart-{spec.key}")
        self.spec = spec
        self.border_title = spec.label
        self.styles.border = ("round", spec.color(theme))
        self._label = Label("-")
        self._sparkline = Sparkline([], summary_function=max)

    def compose(self) -> ComposeResult:
        yield self._label
        yield self._sparkline

    def update(self, labels: Sequence[str], values: Sequence[float]) -> None:
        self._sparkline.data = list(values)
        if values:
            self._label.update(f"{values[-1]:.1f} @ {labels[-1]}")

    def destroy(self) -> None:
        if self.is_attached:
            self.remove()


class SparklineSink:
    """Chart sink that mounts ChartBox widgets into a container."""

    def __init__(self, container: Container) -> None:
        self._container = container

    def create_chart(self, spec: ChartSpec, theme: str) -> ChartBox:
        chart = ChartBox(spec, theme)
        self._container.mount(chart)
        return chart


class FleetTable(Container):
    """Container for the monitored process table."""

    DEFAULT_CSS = """
    FleetTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize FleetTable."""
        super().__init__(*args, **kwargs)
        self._current_ids: set[ProcessId] = set()
        self._ids_by_key: dict[str, ProcessId] = {}
        self._order: list[ProcessId] = []
        self._sort_key: SortKey = SortKey.NAME
        self._processes: list[ProcessInfo] = []

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the fleet table."""
        yield DataTable(id="fleet-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#fleet-table", DataTable)
        table.cursor_type = "row"

        table.add_column("ID", key="id", width=6)
        table.add_column("APP", key="app", width=24)
        table.add_column("STATUS", key="status", width=9)
        table.add_column("HEAP%", key="heap", width=8)
        table.add_column("THR", key="threads", width=6)
        table.add_column("HOST", key="host")

    def update_processes(self, processes: list[ProcessInfo], store: TelemetryStore) -> None:
        """
        Replace the table contents with a fresh process list.

        Rows are updated in place while the order holds.
        """
        table = self.query_one("#fleet-table", DataTable)
        self._processes = list(processes)
        ordered = self._sort_processes(self._processes, store)
        new_order = [proc.id for proc in ordered]

        if new_order != self._order:
            # Membership or order changed: rebuild rather than shuffle rows
            table.clear()
            for proc in ordered:
                table.add_row(*self._cells(proc, store), key=str(proc.id))
        else:
            for proc in ordered:
                for column, value in zip(COLUMNS, self._cells(proc, store)):
                    try:
                        table.update_cell(str(proc.id), column, value)
                    except CellDoesNotExist:
                        pass  # Row may have been removed

        self._order = new_order
        self._current_ids = set(new_order)
        self._ids_by_key = {str(process_id): process_id for process_id in new_order}

    def update_latest(self, process_id: ProcessId, store: TelemetryStore) -> None:
        """Refresh the heap and thread cells of one row from its newest sample."""
        if process_id not in self._current_ids:
            return
        table = self.query_one("#fleet-table", DataTable)
        heap, threads = self._latest_cells(process_id, store)
        try:
            table.update_cell(str(process_id), "heap", heap)
            table.update_cell(str(process_id), "threads", threads)
        except CellDoesNotExist:
            pass

    def process_id_for(self, row_key: str) -> ProcessId | None:
        """Map a row key back to the server's process id, int or str."""
        return self._ids_by_key.get(row_key)

    def name_of(self, process_id: ProcessId) -> str:
        for proc in self._processes:
            if proc.id == process_id:
                return proc.app_name
        return f"App #{process_id}"

    def resort(self, store: TelemetryStore) -> None:
        self.update_processes(self._processes, store)

    def _sort_processes(self, processes: list[ProcessInfo], store: TelemetryStore) -> list[ProcessInfo]:
        def latest(proc: ProcessInfo):
            return store.latest(proc.id)

        key_func = {
            SortKey.NAME: lambda p: p.app_name.lower(),
            SortKey.HEAP: lambda p: -(latest(p).heap_usage if latest(p) else 0.0),
            SortKey.THREADS: lambda p: -(latest(p).thread_count if latest(p) else 0),
            SortKey.STATUS: lambda p: (not p.is_running, p.app_name.lower()),
        }
        return sorted(processes, key=key_func[self._sort_key])

    def _cells(self, proc: ProcessInfo, store: TelemetryStore) -> tuple[str, ...]:
        heap, threads = self._latest_cells(proc.id, store)
        status = "[green]running[/green]" if proc.is_running else f"[dim]{proc.status}[/dim]"
        host = f"{proc.host}:{proc.port}" if proc.host and proc.port else (proc.host or "-")
        return (str(proc.id), proc.app_name[:24], status, heap, threads, host)

    @staticmethod
    def _latest_cells(process_id: ProcessId, store: TelemetryStore) -> tuple[str, str]:
        latest = store.latest(process_id)
        if latest is None:
            return "-", "-"
        heap = format_percent(latest.heap_usage) if latest.heap_usage else "-"
        threads = str(latest.thread_count) if latest.thread_count else "-"
        return heap, threads


class SuggestionsPanel(Static):
    """Diagnostic suggestions for the selected process."""

    def show(self, suggestions: list[Suggestion]) -> None:
        if not suggestions:
            self.update("[dim]No suggestions[/dim]")
            return
        lines = []
        for suggestion in suggestions:
            color = LEVEL_COLORS[suggestion.level]
            lines.append(
                f"[{color}]{suggestion.level.value.upper():8}[/{color}] "
                f"[b]{suggestion.title}[/b]: {suggestion.description}"
            )
        self.update("\n".join(lines))


class AlertsPanel(Static):
    """Latest alerts, unacknowledged first."""

    def show(self, alerts: list[Alert], names: dict[ProcessId, str]) -> None:
        pending = [alert for alert in alerts if not alert.acknowledged]
        self.border_title = f"Alerts ({len(pending)} unacknowledged)"
        if not alerts:
            self.update("[dim]No alerts[/dim]")
            return
        lines = []
        for alert in (pending + [a for a in alerts if a.acknowledged])[:8]:
            color = ALERT_COLORS.get(alert.level, "white")
            app = names.get(alert.app_id, f"App #{alert.app_id}")
            mark = "✓" if alert.acknowledged else "!"
            lines.append(f"[{color}]{mark}[/{color}] {app}: {alert.message}")
        self.update("\n".join(lines))


class ThreadPanel(Container):
    """Top-CPU threads, deadlocks and the selected thread's stack."""

    DEFAULT_CSS = """
    ThreadPanel {
        height: 1fr;
        border: solid $secondary;
    }

    #thread-summary {
        height: auto;
    }

    #thread-stack {
        height: auto;
        max-height: 12;
    }
    """

    def compose(self) -> ComposeResult:
        yield Static("Press t to load threads", id="thread-summary")
        yield DataTable(id="thread-table")
        yield Static("", id="thread-stack")

    def on_mount(self) -> None:
        table = self.query_one("#thread-table", DataTable)
        table.cursor_type = "row"
        table.add_column("TID", key="tid", width=8)
        table.add_column("NAME", key="name", width=28)
        table.add_column("STATE", key="state", width=14)
        table.add_column("CPU", key="cpu", width=8)
        table.add_column("REL%", key="rel", width=6)

    def clear(self) -> None:
        self.query_one("#thread-table", DataTable).clear()
        self.query_one("#thread-summary", Static).update("Press t to load threads")
        self.query_one("#thread-stack", Static).update("")

    def show_view(self, view: ThreadView, fetcher: ThreadSnapshotFetcher) -> None:
        summary = (
            f"{view.total} threads: {view.runnable} runnable, {view.waiting} waiting, "
            f"{view.timed_waiting} timed waiting"
        )
        if view.deadlock_count:
            names = ", ".join(t.name or str(t.thread_id) for t in view.deadlocks.cycles)
            summary += f"\n[red]{view.deadlock_count} deadlocked: {names}[/red]"
        self.query_one("#thread-summary", Static).update(summary)

        table = self.query_one("#thread-table", DataTable)
        table.clear()
        for thread in view.threads:
            table.add_row(
                str(thread.thread_id),
                thread.name[:28],
                thread.state.value if thread.state else "?",
                format_cpu_time(thread.cpu_time_millis),
                f"{fetcher.cpu_percent(thread):.0f}",
                key=str(thread.thread_id),
            )
        self.query_one("#thread-stack", Static).update("")

    def show_stack(self, thread: ThreadSample) -> None:
        header = f"[b]{thread.name}[/b] ({thread.state.value if thread.state else '?'})"
        if thread.lock_name:
            header += f" waiting on {thread.lock_name}"
            if thread.lock_owner_name:
                header += f" held by {thread.lock_owner_name}"
        if thread.stack_trace is None:
            body = "[dim]stack trace unavailable[/dim]"
        elif not thread.stack_trace:
            body = "[dim]no frames[/dim]"
        else:
            body = "\n".join(f"  at {frame}" for frame in thread.stack_trace)
        self.query_one("#thread-stack", Static).update(f"{header}\n{body}")


class JvmDashApp(App):
    """Main jvmdash application."""

    TITLE = "jvmdash"
    SUB_TITLE = "JVM Fleet Dashboard"

    CSS = """
    Screen {
        layout: vertical;
    }

    #live-header {
        dock: top;
    }

    #live-info {
        width: 1fr;
    }

    #connection-info {
        width: 16;
        content-align: right top;
    }

    Horizontal {
        height: auto;
    }

    #charts {
        layout: horizontal;
        height: 5;
    }

    #body {
        height: 1fr;
    }

    #side {
        width: 2fr;
    }

    #suggestions, #alerts {
        height: auto;
        border: round $accent;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("t", "threads", "Threads"),
        ("a", "acknowledge", "Ack alert"),
        ("o", "offline", "Offline"),
        ("b", "heartbeat", "Heartbeat"),
        ("d", "toggle_theme", "Theme"),
        ("r", "reload", "Reload"),
        ("f", "toggle_running", "Running only"),
        ("f6", "sort", "Sort"),
    ]

    def __init__(
        self,
        config: DashboardConfig | None = None,
        api: DashboardApi | None = None,
        connect: Connector = aiohttp_connect,
    ) -> None:
        """
        Initialize the JvmDashApp.

        Args:
            config: Dashboard settings; defaults apply when omitted.
            api: HTTP client to use instead of one built from ``config``.
            connect: Stream connection factory.
        """
        super().__init__()
        self.config = config or DashboardConfig()
        self._api = api or DashboardApi(self.config.server_url, self.config.request_timeout)
        self._store = TelemetryStore(self._api.metrics_history, window_ms=self.config.window_ms)
        self._stream = StreamClient(
            self.config.stream_url,
            self._store.handle_metrics,
            self._store.handle_alert,
            reconnect_delay=self.config.reconnect_delay,
            connect=connect,
            on_state=self._on_stream_state,
        )
        self._charts: RenderSinkAdapter | None = None
        self._suggestions = SuggestionFeed(self._show_suggestions)
        self._threads = ThreadSnapshotFetcher(self._api)
        self._alerts: list[Alert] = []
        self._running_only = False
        self._color_theme = self.config.theme

    @property
    def store(self) -> TelemetryStore:
        return self._store

    @property
    def stream(self) -> StreamClient:
        return self._stream

    @property
    def charts(self) -> RenderSinkAdapter | None:
        return self._charts

    @property
    def color_theme(self) -> str:
        return self._color_theme

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield LiveHeader(id="live-header")
        yield Container(id="charts")
        with Horizontal(id="body"):
            yield FleetTable(id="fleet")
            with Vertical(id="side"):
                yield SuggestionsPanel(id="suggestions")
                yield AlertsPanel(id="alerts")
                yield ThreadPanel(id="threads")
        yield Footer()

    async def on_mount(self) -> None:
        """Open the API client, the charts and the stream."""
        self._apply_theme()
        await self._api.open()
        self._charts = RenderSinkAdapter(SparklineSink(self.query_one("#charts", Container)))
        self._charts.open(self._color_theme)
        self._charts.attach(self._store)
        self._suggestions.attach(self._store)
        self._store.subscribe(self._on_store_change)
        await self._stream.open()
        self.run_worker(self._reload(), group="reload", exclusive=True)

    async def on_unmount(self) -> None:
        """Release the stream, the charts and the HTTP client."""
        try:
            await self._stream.close()
        finally:
            try:
                self._suggestions.detach()
                if self._charts is not None:
                    self._charts.detach()
                    self._charts.close()
            finally:
                await self._api.close()

    # Store and stream callbacks

    def _on_stream_state(self, state: StreamState) -> None:
        self.sub_title = f"JVM Fleet Dashboard ({state.value})"
        try:
            self.query_one("#live-header", LiveHeader).set_connection(state)
        except (NoMatches, ScreenStackError):
            pass

    def _on_store_change(self, change: StoreChange) -> None:
        if change.kind is ChangeKind.SAMPLE:
            self.query_one("#fleet", FleetTable).update_latest(change.process_id, self._store)
        elif change.kind is ChangeKind.SNAPSHOT:
            self.query_one("#live-header", LiveHeader).update_snapshot(self._store.live)
        elif change.kind is ChangeKind.ALERTS:
            self.run_worker(self._load_alerts(), group="alerts", exclusive=True)

    def _show_suggestions(self, suggestions: list[Suggestion]) -> None:
        try:
            self.query_one("#suggestions", SuggestionsPanel).show(suggestions)
        except (NoMatches, ScreenStackError):
            pass

    # Loading

    async def _reload(self) -> None:
        await self._load_processes()
        await self._load_alerts()

    async def _load_processes(self) -> None:
        try:
            if self._running_only:
                processes = await self._api.list_running_processes()
            else:
                processes = await self._api.list_processes()
        except DashboardError as exc:
            log.warning("process_list_failed", error=str(exc))
            return
        self._store.forget({proc.id for proc in processes})
        self.query_one("#fleet", FleetTable).update_processes(processes, self._store)

    async def _load_alerts(self) -> None:
        try:
            self._alerts = await self._api.list_alerts()
        except DashboardError as exc:
            log.warning("alert_list_failed", error=str(exc))
            return
        fleet = self.query_one("#fleet", FleetTable)
        names = {alert.app_id: fleet.name_of(alert.app_id) for alert in self._alerts}
        self.query_one("#alerts", AlertsPanel).show(self._alerts, names)

    # Selection

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        """Select a process from the fleet table or a thread from the thread table."""
        row_key = event.row_key.value
        if row_key is None:
            return
        if event.data_table.id == "fleet-table":
            process_id = self.query_one("#fleet", FleetTable).process_id_for(row_key)
            if process_id is not None:
                self.run_worker(self.select_process(process_id), group="select")
        elif event.data_table.id == "thread-table":
            self.run_worker(self._select_thread(int(row_key)), group="thread-stack", exclusive=True)

    async def select_process(self, process_id: ProcessId) -> None:
        """Make a process live and backfill its charts."""
        name = self.query_one("#fleet", FleetTable).name_of(process_id)
        self.query_one("#live-header", LiveHeader).show_process(name)
        self._threads.clear()
        self.query_one("#threads", ThreadPanel).clear()
        await self._store.select(process_id)

    async def _select_thread(self, thread_id: int) -> None:
        thread = await self._threads.select_thread(thread_id)
        if thread is not None:
            self.query_one("#threads", ThreadPanel).show_stack(thread)

    # Actions

    def action_threads(self) -> None:
        """Load top threads and deadlocks for the selected process."""
        process_id = self._require_selection()
        if process_id is not None:
            self.run_worker(self._refresh_threads(process_id), group="threads", exclusive=True)

    async def _refresh_threads(self, process_id: ProcessId) -> None:
        view = await self._threads.refresh(process_id)
        if view is None:
            if self._store.selected == process_id:
                self.notify("Thread data unavailable", severity="warning")
            return
        self.query_one("#threads", ThreadPanel).show_view(view, self._threads)

    def action_acknowledge(self) -> None:
        """Acknowledge the oldest unacknowledged alert."""
        pending = [alert for alert in self._alerts if not alert.acknowledged]
        if not pending:
            self.notify("No alerts to acknowledge")
            return
        oldest = min(pending, key=lambda alert: alert.created_at or 0)
        self.run_worker(self._acknowledge(oldest.id))

    async def _acknowledge(self, alert_id: int) -> None:
        if await self._user_action("Acknowledge", self._api.acknowledge_alert(alert_id)):
            await self._load_alerts()

    def action_offline(self) -> None:
        """Mark the selected process offline."""
        process_id = self._require_selection()
        if process_id is not None:
            self.run_worker(self._lifecycle("Offline", self._api.offline_process(process_id)))

    def action_heartbeat(self) -> None:
        """Send a heartbeat for the selected process."""
        process_id = self._require_selection()
        if process_id is not None:
            self.run_worker(self._lifecycle("Heartbeat", self._api.heartbeat_process(process_id)))

    async def _lifecycle(self, label: str, call: Awaitable[None]) -> None:
        if await self._user_action(label, call):
            await self._load_processes()

    def action_toggle_theme(self) -> None:
        """Switch light/dark and rebuild the charts in the new colours."""
        self._color_theme = "light" if self._color_theme == "dark" else "dark"
        self._apply_theme()
        if self._charts is not None:
            self._charts.recreate(self._color_theme)
            if self._store.selected is not None:
                self._charts.render(self._store.samples(self._store.selected))

    @property
    def running_only(self) -> bool:
        return self._running_only

    def action_toggle_running(self) -> None:
        """Switch the fleet table between all processes and running ones."""
        self._running_only = not self._running_only
        self.notify("Showing running processes" if self._running_only else "Showing all processes")
        self.run_worker(self._load_processes(), group="reload", exclusive=True)

    def action_reload(self) -> None:
        self.run_worker(self._reload(), group="reload", exclusive=True)

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        fleet = self.query_one("#fleet", FleetTable)
        new_sort_key = fleet.cycle_sort()
        fleet.resort(self._store)
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    async def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        await self._stream.close()
        self.exit()

    # Helpers

    async def _user_action(self, label: str, call: Awaitable[None]) -> bool:
        try:
            await call
        except DashboardError as exc:
            log.warning("user_action_failed", action=label, error=str(exc))
            self.notify(f"{label} failed: {exc}", severity="error")
            return False
        self.notify(f"{label}: done")
        return True

    def _require_selection(self) -> ProcessId | None:
        if self._store.selected is None:
            self.notify("Select a process first", severity="warning")
        return self._store.selected

    def _apply_theme(self) -> None:
        self.theme = "textual-dark" if self._color_theme == "dark" else "textual-light"


def run_app(config: DashboardConfig | None = None) -> None:
    """Run the dashboard until the user quits."""
    app = JvmDashApp(config)
    app.run()
