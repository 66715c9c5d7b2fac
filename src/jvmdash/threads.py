"""On-demand thread and deadlock snapshots for the selected process."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from jvmdash.api import DashboardApi
from jvmdash.exceptions import DashboardError
from jvmdash.models import DeadlockReport, ProcessId, ThreadSample, ThreadState
from jvmdash.window import now_ms

log = structlog.get_logger()


@dataclass(slots=True)
class ThreadView:
    """One refresh worth of thread data. Replaced wholesale, never merged."""

    process_id: ProcessId
    threads: list[ThreadSample] = field(default_factory=list)
    deadlocks: DeadlockReport = field(default_factory=DeadlockReport)
    runnable: int = 0
    waiting: int = 0
    timed_waiting: int = 0
    fetched_at: int = 0

    @classmethod
    def build(
        cls,
        process_id: ProcessId,
        threads: list[ThreadSample],
        deadlocks: DeadlockReport,
        fetched_at: int,
    ) -> "ThreadView":
        """Build a view, counting thread states in a single pass."""
        view = cls(process_id, list(threads), deadlocks, fetched_at=fetched_at)
        for thread in view.threads:
            if thread.state is ThreadState.RUNNABLE:
                view.runnable += 1
            elif thread.state is ThreadState.WAITING:
                view.waiting += 1
            elif thread.state is ThreadState.TIMED_WAITING:
                view.timed_waiting += 1
        return view

    @property
    def total(self) -> int:
        return len(self.threads)

    @property
    def deadlock_count(self) -> int:
        return self.deadlocks.count

    def find(self, thread_id: int) -> ThreadSample | None:
        for thread in self.threads:
            if thread.thread_id == thread_id:
                return thread
        for thread in self.deadlocks.cycles:
            if thread.thread_id == thread_id:
                return thread
        return None

    def put(self, thread: ThreadSample) -> None:
        """Swap in an updated copy of a thread already in the top list."""
        for index, existing in enumerate(self.threads):
            if existing.thread_id == thread.thread_id:
                self.threads[index] = thread
                return


class ThreadSnapshotFetcher:
    """
    Pulls top-CPU threads and deadlocks on request.

    Each refresh replaces the whole view, which also throws away every
    stack trace fetched for the previous one. Stacks are fetched lazily
    when a thread without one is selected.
    """

    def __init__(self, api: DashboardApi, clock: Callable[[], int] = now_ms) -> None:
        self._api = api
        self._clock = clock
        self._target: ProcessId | None = None
        self._view: ThreadView | None = None
        self._selected: ThreadSample | None = None
        self.loading = False

    @property
    def view(self) -> ThreadView | None:
        return self._view

    @property
    def selected_thread(self) -> ThreadSample | None:
        return self._selected

    def clear(self) -> None:
        """Forget the current view, e.g. when the selected process changes."""
        self._target = None
        self._view = None
        self._selected = None

    async def refresh(self, process_id: ProcessId) -> ThreadView | None:
        """
        Fetch top threads and deadlocks for ``process_id``.

        Returns:
            The new view, or None if the fetch failed or was superseded by a
            refresh for another process.
        """
        self._target = process_id
        self.loading = True
        try:
            threads, deadlocks = await asyncio.gather(
                self._api.top_threads(process_id),
                self._api.deadlocks(process_id),
            )
        except DashboardError as exc:
            log.warning("thread_refresh_failed", process_id=process_id, error=str(exc))
            return None
        finally:
            if self._target == process_id:
                self.loading = False

        if self._target != process_id:
            log.info("thread_refresh_discarded", process_id=process_id, target=self._target)
            return None

        self._view = ThreadView.build(process_id, threads, deadlocks, self._clock())
        self._selected = None
        return self._view

    async def select_thread(self, thread_id: int) -> ThreadSample | None:
        """Select a thread, fetching its stack trace if the view lacks one."""
        view = self._view
        if view is None:
            return None
        thread = view.find(thread_id)
        if thread is None:
            return None
        self._selected = thread
        if thread.stack_trace:
            return thread

        try:
            data = await self._api.thread_stack(view.process_id, thread_id)
        except DashboardError as exc:
            log.warning("thread_stack_failed", thread_id=thread_id, error=str(exc))
            return thread
        if "error" in data:
            log.warning("thread_stack_unavailable", thread_id=thread_id, error=data["error"])
        if self._view is not view:
            return thread

        hydrated = thread.merged(data)
        view.put(hydrated)
        if self._selected is not None and self._selected.thread_id == thread_id:
            self._selected = hydrated
        return hydrated

    def cpu_percent(self, thread: ThreadSample) -> float:
        """CPU time of ``thread`` relative to the busiest thread, 0-100."""
        view = self._view
        if view is None or not view.threads:
            return 0.0
        top = view.threads[0].cpu_time_millis or 1
        return (thread.cpu_time_millis or 0) / top * 100
