"""Data models for jvmdash."""

import math
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

ProcessId = int | str


def _num(payload: Mapping[str, Any], key: str, default: float = 0) -> float:
    """Read a numeric field, treating missing, null and junk values as ``default``."""
    value = payload.get(key)
    if value is None or isinstance(value, bool):
        return default
    if not isinstance(value, (int, float)):
        try:
            value = float(value)
        except (TypeError, ValueError):
            return default
    return value if math.isfinite(value) else default


@dataclass(slots=True, frozen=True)
class TelemetrySample:
    """Immutable telemetry record for one JVM at one point in time."""

    timestamp: int  # epoch milliseconds
    heap_used: int = 0
    heap_max: int = 0
    heap_usage: float = 0.0  # 0.0 - 1.0
    metaspace_used: int = 0
    metaspace_max: int = 0
    metaspace_usage: float = 0.0  # 0.0 - 1.0
    thread_count: int = 0
    cpu_usage: float = 0.0  # 0.0 - 1.0
    gc_count: int = 0
    gc_time: int = 0
    uptime: int = 0  # milliseconds
    nonheap_used: int = 0
    daemon_thread_count: int = 0
    system_load: float = 0.0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TelemetrySample":
        """Build a sample from a camelCase wire record."""
        return cls(
            timestamp=int(_num(payload, "timestamp")),
            heap_used=int(_num(payload, "heapUsed")),
            heap_max=int(_num(payload, "heapMax")),
            heap_usage=float(_num(payload, "heapUsage")),
            metaspace_used=int(_num(payload, "metaspaceUsed")),
            metaspace_max=int(_num(payload, "metaspaceMax")),
            metaspace_usage=float(_num(payload, "metaspaceUsage")),
            thread_count=int(_num(payload, "threadCount")),
            cpu_usage=float(_num(payload, "cpuUsage")),
            gc_count=int(_num(payload, "gcCount")),
            gc_time=int(_num(payload, "gcTime")),
            uptime=int(_num(payload, "uptime")),
            nonheap_used=int(_num(payload, "nonheapUsed")),
            daemon_thread_count=int(_num(payload, "daemonThreadCount")),
            system_load=float(_num(payload, "systemLoad")),
        )


@dataclass(slots=True, frozen=True)
class LiveSnapshot:
    """Flat view of the latest sample of the selected process."""

    process_id: ProcessId
    timestamp: int = 0
    heap_used: int = 0
    heap_max: int = 0
    heap_usage: float = 0.0
    metaspace_used: int = 0
    metaspace_max: int = 0
    metaspace_usage: float = 0.0
    thread_count: int = 0
    cpu_usage: float = 0.0
    gc_count: int = 0
    gc_time: int = 0
    uptime: int = 0

    @classmethod
    def from_sample(cls, process_id: ProcessId, sample: TelemetrySample) -> "LiveSnapshot":
        """Project a sample into a snapshot bound to ``process_id``."""
        return cls(
            process_id=process_id,
            timestamp=sample.timestamp,
            heap_used=sample.heap_used,
            heap_max=sample.heap_max,
            heap_usage=sample.heap_usage,
            metaspace_used=sample.metaspace_used,
            metaspace_max=sample.metaspace_max,
            metaspace_usage=sample.metaspace_usage,
            thread_count=sample.thread_count,
            cpu_usage=sample.cpu_usage,
            gc_count=sample.gc_count,
            gc_time=sample.gc_time,
            uptime=sample.uptime,
        )


class Level(Enum):
    """Severity of a diagnostic suggestion."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(slots=True, frozen=True)
class Suggestion:
    """A derived diagnostic message."""

    level: Level
    title: str
    description: str


class ThreadState(Enum):
    """JVM thread states as reported by the agent."""

    NEW = "NEW"
    RUNNABLE = "RUNNABLE"
    BLOCKED = "BLOCKED"
    WAITING = "WAITING"
    TIMED_WAITING = "TIMED_WAITING"
    TERMINATED = "TERMINATED"

    @classmethod
    def parse(cls, value: Any) -> "ThreadState | None":
        """Map a wire state name to a member, or None when unknown."""
        try:
            return cls(str(value).upper())
        except ValueError:
            return None


@dataclass(slots=True, frozen=True)
class StackFrame:
    """One frame of a thread stack trace."""

    class_name: str
    method_name: str
    file_name: str | None = None
    line_number: int = -1
    native_method: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StackFrame":
        """Build a frame; the agent sends line numbers and flags as strings."""
        return cls(
            class_name=str(payload.get("className") or ""),
            method_name=str(payload.get("methodName") or ""),
            file_name=payload.get("fileName"),
            line_number=int(_num(payload, "lineNumber", -1)),
            native_method=str(payload.get("nativeMethod", "false")).lower() == "true",
        )

    def __str__(self) -> str:
        if self.native_method:
            location = "Native Method"
        elif self.file_name:
            location = f"{self.file_name}:{self.line_number}" if self.line_number >= 0 else self.file_name
        else:
            location = "Unknown Source"
        return f"{self.class_name}.{self.method_name}({location})"


def _frames(raw: Any) -> tuple[StackFrame, ...] | None:
    if not isinstance(raw, (list, tuple)):
        return None
    return tuple(StackFrame.from_payload(frame) for frame in raw if isinstance(frame, Mapping))


@dataclass(slots=True, frozen=True)
class ThreadSample:
    """A thread as seen in a thread snapshot.

    ``stack_trace`` is None until fetched; an empty tuple means the agent
    reported no frames.
    """

    thread_id: int
    name: str = ""
    state: ThreadState | None = None
    cpu_time_millis: int = 0
    daemon: bool = False
    lock_name: str | None = None
    lock_owner_name: str | None = None
    stack_trace: tuple[StackFrame, ...] | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ThreadSample":
        """Build a thread record from the agent's JSON."""
        return cls(
            thread_id=int(_num(payload, "threadId")),
            name=str(payload.get("name") or ""),
            state=ThreadState.parse(payload.get("state")),
            cpu_time_millis=int(_num(payload, "cpuTimeMillis")),
            daemon=bool(payload.get("daemon", False)),
            lock_name=payload.get("lockName"),
            lock_owner_name=payload.get("lockOwnerName"),
            stack_trace=_frames(payload.get("stackTrace")),
        )

    def merged(self, payload: Mapping[str, Any]) -> "ThreadSample":
        """Return a copy with the fields present in ``payload`` merged in."""
        changes: dict[str, Any] = {}
        if "name" in payload:
            changes["name"] = str(payload.get("name") or "")
        if "state" in payload:
            changes["state"] = ThreadState.parse(payload.get("state"))
        if "cpuTimeMillis" in payload:
            changes["cpu_time_millis"] = int(_num(payload, "cpuTimeMillis"))
        if "daemon" in payload:
            changes["daemon"] = bool(payload.get("daemon"))
        if "lockName" in payload:
            changes["lock_name"] = payload.get("lockName")
        if "lockOwnerName" in payload:
            changes["lock_owner_name"] = payload.get("lockOwnerName")
        if "stackTrace" in payload:
            changes["stack_trace"] = _frames(payload.get("stackTrace"))
        return replace(self, **changes)


@dataclass(slots=True, frozen=True)
class DeadlockReport:
    """Deadlocked threads reported for a process, in agent order."""

    cycles: tuple[ThreadSample, ...] = ()
    count: int = 0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DeadlockReport":
        raw = payload.get("deadlocks")
        items = raw if isinstance(raw, (list, tuple)) else ()
        cycles = tuple(ThreadSample.from_payload(item) for item in items if isinstance(item, Mapping))
        return cls(cycles=cycles, count=int(_num(payload, "count")))


@dataclass(slots=True, frozen=True)
class ProcessInfo:
    """A registered JVM process known to the dashboard server."""

    id: ProcessId
    app_name: str
    status: str = "running"
    host: str | None = None
    port: int | None = None
    jvm_name: str | None = None
    jvm_version: str | None = None
    start_time: int | None = None
    registered_at: int | None = None
    last_heartbeat: int | None = None
    thread_server_port: int | None = None

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ProcessInfo":
        process_id = payload.get("id")
        return cls(
            id=process_id,
            app_name=payload.get("appName") or f"App #{process_id}",
            status=payload.get("status") or "running",
            host=payload.get("host"),
            port=payload.get("port"),
            jvm_name=payload.get("jvmName"),
            jvm_version=payload.get("jvmVersion"),
            start_time=payload.get("startTime"),
            registered_at=payload.get("registeredAt"),
            last_heartbeat=payload.get("lastHeartbeat"),
            thread_server_port=payload.get("threadServerPort"),
        )


@dataclass(slots=True, frozen=True)
class Alert:
    """An alert raised by the dashboard server."""

    id: int
    app_id: ProcessId | None
    alert_type: str
    message: str
    level: str = "warning"  # info, warning, critical
    created_at: int | None = None
    acknowledged: bool = False
    acknowledged_at: int | None = None
    acknowledged_by: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Alert":
        return cls(
            id=payload.get("id"),
            app_id=payload.get("appId"),
            alert_type=payload.get("alertType") or "",
            message=payload.get("alertMsg") or "",
            level=payload.get("alertLevel") or "warning",
            created_at=payload.get("createdAt"),
            acknowledged=bool(payload.get("acknowledged", False)),
            acknowledged_at=payload.get("acknowledgedAt"),
            acknowledged_by=payload.get("acknowledgedBy"),
        )


@dataclass(slots=True, frozen=True)
class ProcessRegistration:
    """Payload sent to register a JVM with the dashboard server."""

    app_name: str
    host: str
    port: int | None = None
    jvm_name: str | None = None
    jvm_version: str | None = None
    start_time: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "appName": self.app_name,
            "host": self.host,
            "port": self.port,
            "jvmName": self.jvm_name,
            "jvmVersion": self.jvm_version,
            "startTime": self.start_time,
        }
