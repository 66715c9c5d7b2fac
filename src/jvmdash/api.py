"""Async client for the dashboard server's HTTP API."""

from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from jvmdash.exceptions import ApiConnectionError, ApiError, ApiTimeoutError
from jvmdash.models import (
    Alert,
    DeadlockReport,
    ProcessId,
    ProcessInfo,
    ProcessRegistration,
    TelemetrySample,
    ThreadSample,
)

log = structlog.get_logger()


def _records(data: Any, path: str) -> list[Mapping[str, Any]]:
    """Expect a JSON array; items that are not objects are skipped."""
    if data is None:
        return []
    if not isinstance(data, list):
        raise ApiError(200, f"{path}: expected a list, got {type(data).__name__}")
    skipped = sum(1 for item in data if not isinstance(item, Mapping))
    if skipped:
        log.warning("api_items_skipped", path=path, skipped=skipped)
    return [item for item in data if isinstance(item, Mapping)]


def _record(data: Any, path: str) -> Mapping[str, Any]:
    """Expect a JSON object (an empty body counts as an empty one)."""
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ApiError(200, f"{path}: expected an object, got {type(data).__name__}")
    return data


class DashboardApi:
    """
    Request/response calls against the dashboard server.

    Use as an async context manager; the underlying httpx client lives for
    the duration of the ``async with`` block.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Server root, e.g. "http://localhost:8080".
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests pass a MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "DashboardApi":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and return the decoded JSON body (None when empty)."""
        if self._client is None:
            raise RuntimeError("DashboardApi not opened")
        url = f"{self.base_url}{path}"
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ApiTimeoutError(f"{method} {path}: {exc}") from exc
        except httpx.RequestError as exc:
            raise ApiConnectionError(f"{method} {path}: {exc}") from exc

        if resp.status_code >= 400:
            raise ApiError(resp.status_code, resp.text)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ApiError(resp.status_code, f"Failed to parse response: {exc}") from exc

    # Processes

    async def list_processes(self) -> list[ProcessInfo]:
        path = "/api/apps"
        data = await self.request("GET", path)
        return [ProcessInfo.from_payload(item) for item in _records(data, path)]

    async def list_running_processes(self) -> list[ProcessInfo]:
        path = "/api/apps/running"
        data = await self.request("GET", path)
        return [ProcessInfo.from_payload(item) for item in _records(data, path)]

    async def register_process(self, registration: ProcessRegistration) -> ProcessId:
        """Register a JVM and return the id the server assigned to it."""
        data = await self.request("POST", "/api/apps/register", json=registration.to_payload())
        if not isinstance(data, dict) or data.get("appId") is None:
            raise ApiError(200, "register response carries no appId")
        log.info("process_registered", app_name=registration.app_name, process_id=data["appId"])
        return data["appId"]

    async def offline_process(self, process_id: ProcessId) -> None:
        await self.request("POST", f"/api/apps/{process_id}/offline")

    async def heartbeat_process(self, process_id: ProcessId) -> None:
        await self.request("POST", f"/api/apps/{process_id}/heartbeat")

    # Alerts

    async def list_alerts(self) -> list[Alert]:
        path = "/api/alerts"
        data = await self.request("GET", path)
        return [Alert.from_payload(item) for item in _records(data, path)]

    async def acknowledge_alert(self, alert_id: int, acknowledged_by: str = "dashboard") -> None:
        await self.request(
            "POST",
            f"/api/alerts/{alert_id}/acknowledge",
            json={"acknowledgedBy": acknowledged_by},
        )

    # Metrics and threads

    async def metrics_history(self, process_id: ProcessId, since: int) -> list[TelemetrySample]:
        """Fetch samples recorded for a process since ``since`` (epoch ms)."""
        path = f"/api/metrics/{process_id}/history"
        data = await self.request("GET", path, params={"since": since})
        return [TelemetrySample.from_payload(item) for item in _records(data, path)]

    async def top_threads(self, process_id: ProcessId) -> list[ThreadSample]:
        path = f"/api/apps/{process_id}/threads/top"
        data = _record(await self.request("GET", path), path)
        return [ThreadSample.from_payload(item) for item in _records(data.get("threads"), path)]

    async def deadlocks(self, process_id: ProcessId) -> DeadlockReport:
        path = f"/api/apps/{process_id}/deadlock"
        return DeadlockReport.from_payload(_record(await self.request("GET", path), path))

    async def thread_stack(self, process_id: ProcessId, thread_id: int) -> dict[str, Any]:
        path = f"/api/apps/{process_id}/threads/{thread_id}/stack"
        return dict(_record(await self.request("GET", path), path))
