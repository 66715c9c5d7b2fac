"""Tests for on-demand thread snapshots."""

import asyncio

import pytest

from jvmdash.exceptions import ApiError
from jvmdash.models import DeadlockReport, ThreadSample, ThreadState
from jvmdash.threads import ThreadSnapshotFetcher, ThreadView


def thread(tid, state="RUNNABLE", cpu=0, **extra):
    return ThreadSample.from_payload({"threadId": tid, "name": f"t{tid}", "state": state, "cpuTimeMillis": cpu, **extra})


class FakeThreadApi:
    """Stands in for DashboardApi's thread endpoints."""

    def __init__(self):
        self.threads = {}
        self.stacks = {}
        self.stack_calls = []
        self.fail = False
        self.gate = None

    async def top_threads(self, process_id):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ApiError(500, "agent unreachable")
        return list(self.threads.get(process_id, []))

    async def deadlocks(self, process_id):
        return DeadlockReport()

    async def thread_stack(self, process_id, thread_id):
        self.stack_calls.append((process_id, thread_id))
        return self.stacks.get(thread_id, {"error": "thread not found"})


class TestThreadView:
    """Tests for ThreadView."""

    def test_counts_states(self):
        """Test state counts are taken in one pass."""
        view = ThreadView.build(
            1,
            [thread(1), thread(2, "WAITING"), thread(3, "TIMED_WAITING"), thread(4), thread(5, "BLOCKED")],
            DeadlockReport(),
            fetched_at=0,
        )
        assert view.total == 5
        assert view.runnable == 2
        assert view.waiting == 1
        assert view.timed_waiting == 1
        assert view.deadlock_count == 0

    def test_find_searches_deadlocks(self):
        """Test find() also looks at deadlocked threads."""
        view = ThreadView.build(1, [thread(1)], DeadlockReport((thread(9, "BLOCKED"),), 1), fetched_at=0)
        assert view.find(9).state is ThreadState.BLOCKED
        assert view.find(42) is None


class TestThreadSnapshotFetcher:
    """Tests for ThreadSnapshotFetcher."""

    @pytest.mark.asyncio
    async def test_refresh_replaces_view(self):
        """Test each refresh replaces the view, dropping fetched stacks."""
        api = FakeThreadApi()
        api.threads[1] = [thread(1, cpu=500), thread(2, cpu=100)]
        api.stacks[2] = {"stackTrace": [{"className": "A", "methodName": "run", "lineNumber": "3"}]}
        fetcher = ThreadSnapshotFetcher(api, clock=lambda: 77)

        first = await fetcher.refresh(1)
        hydrated = await fetcher.select_thread(2)
        assert len(hydrated.stack_trace) == 1
        assert fetcher.view.find(2).stack_trace == hydrated.stack_trace

        second = await fetcher.refresh(1)
        assert second is not first
        assert second.fetched_at == 77
        assert second.find(2).stack_trace is None
        assert fetcher.selected_thread is None

    @pytest.mark.asyncio
    async def test_cached_stack_is_not_refetched(self):
        """Test a thread that already carries frames is returned as is."""
        api = FakeThreadApi()
        api.threads[1] = [thread(1, stackTrace=[{"className": "A", "methodName": "b"}])]
        fetcher = ThreadSnapshotFetcher(api)
        await fetcher.refresh(1)
        selected = await fetcher.select_thread(1)
        assert selected.thread_id == 1
        assert api.stack_calls == []
        assert fetcher.selected_thread is selected

    @pytest.mark.asyncio
    async def test_stack_error_response(self):
        """Test an agent error leaves the thread without frames."""
        api = FakeThreadApi()
        api.threads[1] = [thread(5)]
        fetcher = ThreadSnapshotFetcher(api)
        await fetcher.refresh(1)
        selected = await fetcher.select_thread(5)
        assert selected.stack_trace is None
        assert api.stack_calls == [(1, 5)]

    @pytest.mark.asyncio
    async def test_failed_refresh(self):
        """Test a failed refresh returns None and keeps no view."""
        api = FakeThreadApi()
        api.fail = True
        fetcher = ThreadSnapshotFetcher(api)
        assert await fetcher.refresh(1) is None
        assert fetcher.view is None
        assert not fetcher.loading

    @pytest.mark.asyncio
    async def test_superseded_refresh_is_discarded(self):
        """Test a slow refresh for one process is dropped once another was requested."""
        api = FakeThreadApi()
        api.threads[1] = [thread(1)]
        api.threads[2] = [thread(20), thread(21)]
        api.gate = asyncio.Event()
        fetcher = ThreadSnapshotFetcher(api)

        slow = asyncio.create_task(fetcher.refresh(1))
        fast = asyncio.create_task(fetcher.refresh(2))
        await asyncio.sleep(0)
        api.gate.set()

        assert await slow is None
        view = await fast
        assert view.process_id == 2
        assert fetcher.view is view

    @pytest.mark.asyncio
    async def test_cpu_percent_relative_to_top(self):
        """Test CPU share is relative to the busiest thread."""
        api = FakeThreadApi()
        api.threads[1] = [thread(1, cpu=400), thread(2, cpu=100)]
        fetcher = ThreadSnapshotFetcher(api)
        view = await fetcher.refresh(1)
        assert fetcher.cpu_percent(view.threads[0]) == 100.0
        assert fetcher.cpu_percent(view.threads[1]) == 25.0

    @pytest.mark.asyncio
    async def test_select_without_view(self):
        """Test selecting before any refresh returns None."""
        fetcher = ThreadSnapshotFetcher(FakeThreadApi())
        assert await fetcher.select_thread(1) is None
