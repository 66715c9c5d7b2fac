"""Tests for jvmdash data models."""

import dataclasses

import pytest

from jvmdash.models import (
    Alert,
    DeadlockReport,
    LiveSnapshot,
    ProcessInfo,
    ProcessRegistration,
    StackFrame,
    TelemetrySample,
    ThreadSample,
    ThreadState,
)


class TestTelemetrySample:
    """Tests for TelemetrySample dataclass."""

    def test_from_payload_reads_camel_case(self):
        """Test every wire field lands on its attribute."""
        sample = TelemetrySample.from_payload(
            {
                "type": "metrics",
                "appId": 3,
                "timestamp": 1700000000000,
                "heapUsed": 512,
                "heapMax": 1024,
                "heapUsage": 0.5,
                "metaspaceUsed": 10,
                "metaspaceMax": 100,
                "metaspaceUsage": 0.1,
                "threadCount": 42,
                "cpuUsage": 0.33,
                "gcCount": 7,
                "gcTime": 250,
                "uptime": 90000,
            }
        )
        assert sample.timestamp == 1700000000000
        assert sample.heap_usage == 0.5
        assert sample.metaspace_max == 100
        assert sample.thread_count == 42
        assert sample.cpu_usage == 0.33
        assert sample.gc_count == 7
        assert sample.uptime == 90000

    def test_missing_fields_default_to_zero(self):
        """Test absent and null fields read as zero."""
        sample = TelemetrySample.from_payload({"timestamp": 5, "heapUsage": None})
        assert sample.heap_usage == 0.0
        assert sample.thread_count == 0
        assert sample.gc_time == 0

    def test_junk_values_default_to_zero(self):
        """Test non-numeric and non-finite values read as zero."""
        sample = TelemetrySample.from_payload(
            {"timestamp": 5, "cpuUsage": "n/a", "heapUsage": float("nan"), "threadCount": True}
        )
        assert sample.cpu_usage == 0.0
        assert sample.heap_usage == 0.0
        assert sample.thread_count == 0

    def test_numeric_strings_are_accepted(self):
        """Test numbers sent as strings are parsed."""
        sample = TelemetrySample.from_payload({"timestamp": "12", "threadCount": "30"})
        assert sample.timestamp == 12
        assert sample.thread_count == 30

    def test_sample_is_immutable(self):
        """Test samples are frozen."""
        sample = TelemetrySample(timestamp=1)
        with pytest.raises(dataclasses.FrozenInstanceError):
            sample.heap_usage = 0.9  # type: ignore[misc]

    def test_sample_uses_slots(self):
        """Test TelemetrySample uses __slots__."""
        assert not hasattr(TelemetrySample(timestamp=1), "__dict__")


class TestLiveSnapshot:
    """Tests for LiveSnapshot."""

    def test_from_sample_binds_process(self):
        """Test the snapshot copies the sample and records the process id."""
        sample = TelemetrySample(timestamp=9, heap_usage=0.4, thread_count=12, gc_count=3)
        snapshot = LiveSnapshot.from_sample("svc-a", sample)
        assert snapshot.process_id == "svc-a"
        assert snapshot.timestamp == 9
        assert snapshot.heap_usage == 0.4
        assert snapshot.thread_count == 12
        assert snapshot.gc_count == 3


class TestThreadModels:
    """Tests for ThreadState, StackFrame and ThreadSample."""

    def test_thread_state_parse(self):
        """Test known states parse case-insensitively and unknown ones map to None."""
        assert ThreadState.parse("RUNNABLE") is ThreadState.RUNNABLE
        assert ThreadState.parse("timed_waiting") is ThreadState.TIMED_WAITING
        assert ThreadState.parse("PARKED") is None
        assert ThreadState.parse(None) is None

    def test_stack_frame_string_fields(self):
        """Test line numbers and native flags sent as strings are decoded."""
        frame = StackFrame.from_payload(
            {
                "className": "com.acme.Worker",
                "methodName": "run",
                "fileName": "Worker.java",
                "lineNumber": "42",
                "nativeMethod": "false",
            }
        )
        assert frame.line_number == 42
        assert not frame.native_method
        assert str(frame) == "com.acme.Worker.run(Worker.java:42)"

    def test_native_stack_frame(self):
        """Test native frames render like a JVM stack trace."""
        frame = StackFrame.from_payload(
            {"className": "java.lang.Object", "methodName": "wait", "nativeMethod": "true"}
        )
        assert str(frame) == "java.lang.Object.wait(Native Method)"

    def test_thread_without_stack_is_unfetched(self):
        """Test a thread with no stackTrace key has stack_trace None."""
        thread = ThreadSample.from_payload({"threadId": 7, "name": "main", "state": "RUNNABLE"})
        assert thread.thread_id == 7
        assert thread.state is ThreadState.RUNNABLE
        assert thread.stack_trace is None

    def test_merged_only_touches_present_fields(self):
        """Test merged() keeps fields the payload does not mention."""
        thread = ThreadSample(thread_id=7, name="main", cpu_time_millis=900)
        merged = thread.merged(
            {"stackTrace": [{"className": "A", "methodName": "b", "lineNumber": "1"}]}
        )
        assert merged.name == "main"
        assert merged.cpu_time_millis == 900
        assert len(merged.stack_trace) == 1
        assert thread.stack_trace is None

    def test_deadlock_report(self):
        """Test deadlock payloads keep agent order and count."""
        report = DeadlockReport.from_payload(
            {
                "deadlocks": [
                    {"threadId": 2, "name": "t2", "state": "BLOCKED", "lockOwnerName": "t1"},
                    {"threadId": 1, "name": "t1", "state": "BLOCKED", "lockOwnerName": "t2"},
                ],
                "count": 2,
                "hasDeadlock": True,
            }
        )
        assert report.count == 2
        assert [t.thread_id for t in report.cycles] == [2, 1]
        assert report.cycles[0].lock_owner_name == "t1"


class TestServerRecords:
    """Tests for ProcessInfo, Alert and ProcessRegistration."""

    def test_process_info_defaults(self):
        """Test a nameless process gets a placeholder name and running status."""
        info = ProcessInfo.from_payload({"id": 4})
        assert info.app_name == "App #4"
        assert info.is_running

    def test_process_info_offline(self):
        """Test non-running statuses."""
        info = ProcessInfo.from_payload({"id": 4, "appName": "orders", "status": "offline"})
        assert info.app_name == "orders"
        assert not info.is_running

    def test_alert_from_payload(self):
        """Test alert fields map from the server entity."""
        alert = Alert.from_payload(
            {
                "id": 11,
                "appId": 4,
                "alertType": "HEAP",
                "alertMsg": "heap above 90%",
                "alertLevel": "critical",
                "createdAt": 1000,
                "acknowledged": False,
            }
        )
        assert alert.id == 11
        assert alert.app_id == 4
        assert alert.message == "heap above 90%"
        assert alert.level == "critical"
        assert not alert.acknowledged

    def test_registration_payload(self):
        """Test registration serializes to the server's field names."""
        payload = ProcessRegistration(
            app_name="orders", host="box", port=8081, jvm_name="java", jvm_version="17"
        ).to_payload()
        assert payload["appName"] == "orders"
        assert payload["host"] == "box"
        assert payload["port"] == 8081
        assert payload["jvmVersion"] == "17"
        assert payload["startTime"] is None
