"""Push-stream client for live telemetry."""

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from enum import Enum
from typing import Any

import aiohttp
import structlog

from jvmdash.models import ProcessId, TelemetrySample

log = structlog.get_logger()

DEFAULT_RECONNECT_DELAY = 3.0  # seconds

MetricsHandler = Callable[[ProcessId, TelemetrySample], None]
AlertHandler = Callable[[], None]
Connector = Callable[[str], AbstractAsyncContextManager[AsyncIterator[str | bytes]]]


class StreamState(Enum):
    """Connection states of the stream client."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


async def _text_frames(ws: aiohttp.ClientWebSocketResponse) -> AsyncIterator[str | bytes]:
    async for msg in ws:
        if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
            yield msg.data
        elif msg.type == aiohttp.WSMsgType.ERROR:
            raise ConnectionError(f"websocket error: {ws.exception()}")


@asynccontextmanager
async def aiohttp_connect(url: str) -> AsyncIterator[AsyncIterator[str | bytes]]:
    """Open a WebSocket with aiohttp and yield its data frames."""
    async with aiohttp.ClientSession() as session:
        async with session.ws_connect(url, heartbeat=30.0) as ws:
            yield _text_frames(ws)


class StreamClient:
    """
    Keeps one push connection open and dispatches its messages.

    The connection loop runs as an asyncio task. Whenever the connection
    closes or fails, the client waits ``reconnect_delay`` seconds and
    connects again, forever, until ``close()`` is called. Malformed
    messages are counted in ``dropped`` and never close the connection.
    """

    def __init__(
        self,
        url: str,
        on_metrics: MetricsHandler,
        on_alert: AlertHandler | None = None,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        connect: Connector = aiohttp_connect,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_state: Callable[[StreamState], None] | None = None,
    ) -> None:
        """
        Initialize the StreamClient.

        Args:
            url: WebSocket URL of the metrics stream.
            on_metrics: Called with (process id, sample) for "metrics" messages.
            on_alert: Called for "alert" messages.
            reconnect_delay: Fixed wait between a close and the next attempt.
            connect: Factory returning an async context manager that yields
                the incoming frames of one connection.
            sleep: Awaitable used for the reconnect wait.
            on_state: Called on every state transition.
        """
        self._url = url
        self._on_metrics = on_metrics
        self._on_alert = on_alert
        self._reconnect_delay = reconnect_delay
        self._connect = connect
        self._sleep = sleep
        self._on_state = on_state
        self._state = StreamState.CLOSED
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self.dropped = 0
        self.received = 0
        self.reconnect_attempts = 0

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> StreamState:
        """Get the current connection state."""
        return self._state

    @property
    def reconnect_delay(self) -> float:
        return self._reconnect_delay

    @property
    def is_running(self) -> bool:
        """Check if the connection loop is running."""
        return self._task is not None and not self._task.done()

    async def __aenter__(self) -> "StreamClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        """Start the connection loop."""
        if self.is_running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name="StreamClient")

    async def close(self) -> None:
        """Stop the connection loop, cancelling any pending reconnect."""
        self._stopping = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_state(StreamState.CLOSED)

    async def _run(self) -> None:
        """Connect, read until the connection ends, wait, repeat."""
        while not self._stopping:
            self._set_state(StreamState.CONNECTING)
            try:
                async with self._connect(self._url) as frames:
                    self._set_state(StreamState.OPEN)
                    log.info("stream_connected", url=self._url)
                    async for raw in frames:
                        self.dispatch(raw)
                log.info("stream_disconnected", url=self._url)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.warning("stream_failed", url=self._url, error=f"{type(exc).__name__}: {exc}")

            self._set_state(StreamState.CLOSED)
            if self._stopping:
                break
            self.reconnect_attempts += 1
            log.info(
                "stream_reconnect_scheduled",
                delay=self._reconnect_delay,
                attempt=self.reconnect_attempts,
            )
            await self._sleep(self._reconnect_delay)

    def dispatch(self, raw: str | bytes) -> None:
        """Decode one frame and hand it to the matching handler."""
        self.received += 1
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as exc:
            self._drop("invalid_json", error=str(exc))
            return
        if not isinstance(payload, dict):
            self._drop("not_an_object")
            return

        kind = payload.get("type")
        if kind == "metrics":
            process_id = payload.get("appId")
            if process_id is None:
                self._drop("missing_app_id")
                return
            self._emit(self._on_metrics, process_id, TelemetrySample.from_payload(payload))
        elif kind == "alert":
            if self._on_alert is not None:
                self._emit(self._on_alert)

    def _drop(self, reason: str, **context: Any) -> None:
        self.dropped += 1
        log.warning("stream_message_dropped", reason=reason, dropped=self.dropped, **context)

    def _emit(self, handler: Callable[..., None], *args: Any) -> None:
        try:
            handler(*args)
        except Exception:
            log.exception("stream_handler_failed", handler=getattr(handler, "__name__", repr(handler)))

    def _set_state(self, state: StreamState) -> None:
        if state is self._state:
            return
        self._state = state
        if self._on_state is not None:
            try:
                self._on_state(state)
            except Exception:
                log.exception("stream_state_listener_failed", state=state.value)
