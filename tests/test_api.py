"""Tests for the dashboard HTTP client."""

import json

import httpx
import pytest

from jvmdash.api import DashboardApi
from jvmdash.exceptions import ApiConnectionError, ApiError, ApiTimeoutError
from jvmdash.models import ProcessRegistration, ThreadState
from jvmdash.store import TelemetryStore


def make_api(handler) -> DashboardApi:
    return DashboardApi("http://dash.test/", transport=httpx.MockTransport(handler))


class TestDashboardApi:
    """Tests for DashboardApi."""

    @pytest.mark.asyncio
    async def test_requires_open(self):
        """Test requests before open() fail loudly."""
        api = make_api(lambda request: httpx.Response(200, json=[]))
        with pytest.raises(RuntimeError):
            await api.list_processes()

    @pytest.mark.asyncio
    async def test_list_processes(self):
        """Test the process list is decoded."""
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json=[{"id": 1, "appName": "orders", "status": "running"}])

        async with make_api(handler) as api:
            processes = await api.list_processes()
        assert seen == ["/api/apps"]
        assert processes[0].id == 1
        assert processes[0].app_name == "orders"

    @pytest.mark.asyncio
    async def test_metrics_history_sends_since(self):
        """Test history requests carry the since parameter."""
        seen = []

        def handler(request):
            seen.append(request.url)
            return httpx.Response(200, json=[{"timestamp": 5, "heapUsage": 0.3}])

        async with make_api(handler) as api:
            samples = await api.metrics_history(7, 1234)
        assert seen[0].path == "/api/metrics/7/history"
        assert seen[0].params["since"] == "1234"
        assert samples[0].heap_usage == 0.3

    @pytest.mark.asyncio
    async def test_register_returns_app_id(self):
        """Test registration posts the payload and returns the assigned id."""
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"appId": 12, "message": "ok"})

        async with make_api(handler) as api:
            process_id = await api.register_process(ProcessRegistration(app_name="orders", host="box"))
        assert process_id == 12
        assert bodies[0]["appName"] == "orders"

    @pytest.mark.asyncio
    async def test_register_without_app_id(self):
        """Test a register response without appId is an error."""
        async with make_api(lambda request: httpx.Response(200, json={})) as api:
            with pytest.raises(ApiError):
                await api.register_process(ProcessRegistration(app_name="x", host="y"))

    @pytest.mark.asyncio
    async def test_acknowledge_alert(self):
        """Test acknowledgement posts who acknowledged it."""
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"id": 3, "acknowledged": True})

        async with make_api(handler) as api:
            await api.acknowledge_alert(3)
        assert seen == [("POST", "/api/alerts/3/acknowledge", {"acknowledgedBy": "dashboard"})]

    @pytest.mark.asyncio
    async def test_threads_and_deadlocks(self):
        """Test thread endpoints decode into models."""

        def handler(request):
            if request.url.path.endswith("/threads/top"):
                return httpx.Response(
                    200, json={"threads": [{"threadId": 1, "name": "main", "state": "RUNNABLE"}]}
                )
            return httpx.Response(200, json={"deadlocks": [], "count": 0, "hasDeadlock": False})

        async with make_api(handler) as api:
            threads = await api.top_threads(4)
            report = await api.deadlocks(4)
        assert threads[0].state is ThreadState.RUNNABLE
        assert report.count == 0

    @pytest.mark.asyncio
    async def test_empty_body(self):
        """Test empty responses decode to None."""
        async with make_api(lambda request: httpx.Response(200)) as api:
            assert await api.request("POST", "/api/apps/1/heartbeat") is None

    @pytest.mark.asyncio
    async def test_error_status(self):
        """Test error statuses raise ApiError with the status code."""
        async with make_api(lambda request: httpx.Response(404, text="no such app")) as api:
            with pytest.raises(ApiError) as excinfo:
                await api.offline_process(99)
        assert excinfo.value.status_code == 404
        assert "no such app" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_unreadable_body(self):
        """Test non-JSON bodies raise ApiError."""
        async with make_api(lambda request: httpx.Response(200, text="<html>")) as api:
            with pytest.raises(ApiError):
                await api.list_alerts()

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test transport timeouts raise ApiTimeoutError."""

        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with make_api(handler) as api:
            with pytest.raises(ApiTimeoutError):
                await api.list_alerts()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Test unreachable servers raise ApiConnectionError."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_api(handler) as api:
            with pytest.raises(ApiConnectionError):
                await api.list_processes()

    @pytest.mark.asyncio
    async def test_list_running_processes(self):
        """Test the running-process list uses its own endpoint."""
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json=[{"id": "svc-a", "appName": "gateway"}])

        async with make_api(handler) as api:
            processes = await api.list_running_processes()
        assert seen == ["/api/apps/running"]
        assert processes[0].id == "svc-a"

    @pytest.mark.asyncio
    async def test_object_where_list_expected(self):
        """Test a JSON object in place of a list raises ApiError."""
        async with make_api(lambda request: httpx.Response(200, json={"error": "no data"})) as api:
            with pytest.raises(ApiError):
                await api.metrics_history(1, 0)
            with pytest.raises(ApiError):
                await api.list_alerts()

    @pytest.mark.asyncio
    async def test_list_where_object_expected(self):
        """Test a JSON list in place of an object raises ApiError."""
        async with make_api(lambda request: httpx.Response(200, json=[1, 2])) as api:
            with pytest.raises(ApiError):
                await api.top_threads(1)
            with pytest.raises(ApiError):
                await api.deadlocks(1)
            with pytest.raises(ApiError):
                await api.thread_stack(1, 2)

    @pytest.mark.asyncio
    async def test_non_object_items_are_skipped(self):
        """Test null and scalar items in a list are skipped."""
        body = [None, {"timestamp": 5, "heapUsage": 0.3}, "junk", 7]
        async with make_api(lambda request: httpx.Response(200, json=body)) as api:
            samples = await api.metrics_history(1, 0)
        assert [s.timestamp for s in samples] == [5]

    @pytest.mark.asyncio
    async def test_malformed_thread_fields(self):
        """Test wrong-typed nested thread fields decode without raising."""

        def handler(request):
            if request.url.path.endswith("/deadlock"):
                return httpx.Response(200, json={"deadlocks": "none", "count": 0})
            return httpx.Response(
                200, json={"threads": [None, {"threadId": 3, "stackTrace": 12}]}
            )

        async with make_api(handler) as api:
            threads = await api.top_threads(1)
            report = await api.deadlocks(1)
        assert [t.thread_id for t in threads] == [3]
        assert threads[0].stack_trace is None
        assert report.cycles == ()

    @pytest.mark.asyncio
    async def test_bad_history_does_not_escape_select(self):
        """Test a wrong-shaped history body is treated as a failed backfill."""
        async with make_api(lambda request: httpx.Response(200, json={"error": "no data"})) as api:
            store = TelemetryStore(api.metrics_history)
            assert await store.select(1) is False
        assert store.selected == 1
