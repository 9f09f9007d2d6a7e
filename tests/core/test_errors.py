"""Tests for syncspine.core.errors."""

from __future__ import annotations

import pytest

from syncspine.core.errors import (
    COORDINATION_KINDS,
    FATAL_KINDS,
    MONITOR_TRIP_KINDS,
    BulkWriteError,
    CapturedError,
    ConnectorVersionChangedError,
    ErrorContext,
    ErrorKind,
    IncompatibleConfigurableFieldsError,
    JobAlreadyRunningError,
    MonitoringError,
    SyncError,
    SyncSuspendedError,
    TransientError,
    error_kind,
    format_trace,
    is_coordination,
    is_fatal,
)


class TestSyncError:
    def test_default_kind_and_correlation_id(self):
        err = SyncError("boom")
        assert err.kind == ErrorKind.DOCUMENT
        assert len(err.correlation_id) == 32
        assert str(err) == "boom"

    def test_kind_override(self):
        err = TransientError("boom", kind=ErrorKind.INGESTION)
        assert err.kind == ErrorKind.INGESTION
        assert err.fatal is True

    def test_cause_is_chained(self):
        cause = OSError("disk")
        err = SyncError("wrapped", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "OSError: disk"

    def test_with_context(self):
        err = SyncError("boom").with_context(connector_id="c-1", attempt=3)
        assert err.context.connector_id == "c-1"
        assert err.context.metadata == {"attempt": 3}

    def test_to_dict(self):
        err = BulkWriteError("rejected", context=ErrorContext(job_id="j-1"))
        data = err.to_dict()
        assert data["error_type"] == "BulkWriteError"
        assert data["kind"] == "ingestion"
        assert data["fatal"] is True
        assert data["context"] == {"job_id": "j-1"}

    def test_repr(self):
        assert repr(TransientError("x")) == "TransientError('x', kind=transient)"


class TestSpecificErrors:
    def test_suspended_carries_cursors_and_delay(self):
        err = SyncSuspendedError(retry_after=30, cursors={"page": "4"})
        assert err.retry_after == 30
        assert err.cursors == {"page": "4"}
        assert err.kind == ErrorKind.SUSPENDED

    def test_monitoring_error_records_trip(self):
        cause = ValueError("last")
        err = MonitoringError("tripped", kind=ErrorKind.WINDOW_ERRORS_EXCEEDED, tripped_by=cause)
        assert err.tripped_by is cause
        assert err.__cause__ is cause

    def test_incompatible_fields_message(self):
        err = IncompatibleConfigurableFieldsError("example", ["a", "b"], ["a"])
        assert str(err) == (
            "Connector of service_type 'example' expected configurable fields: a, b, "
            "actual stored fields: a"
        )


class TestClassification:
    def test_foreign_errors_are_document_errors(self):
        assert error_kind(KeyError("x")) == ErrorKind.DOCUMENT
        assert is_fatal(KeyError("x")) is False

    @pytest.mark.parametrize("kind", sorted(MONITOR_TRIP_KINDS, key=lambda k: k.value))
    def test_monitor_trips_are_fatal(self, kind):
        assert is_fatal(kind)

    def test_document_and_transient_are_tolerated(self):
        assert ErrorKind.DOCUMENT not in FATAL_KINDS
        assert ErrorKind.TRANSIENT not in FATAL_KINDS

    def test_coordination(self):
        assert is_coordination(JobAlreadyRunningError("x"))
        assert is_coordination(ConnectorVersionChangedError("x"))
        assert not is_coordination(RuntimeError("x"))
        assert not COORDINATION_KINDS & FATAL_KINDS


class TestCapturedError:
    def test_capture_keeps_sync_error_correlation_id(self):
        err = TransientError("x", correlation_id="abc")
        captured = CapturedError.capture(err)
        assert captured.correlation_id == "abc"
        assert captured.kind == ErrorKind.TRANSIENT
        assert captured.fatal is False

    def test_to_document_error(self):
        try:
            raise ValueError("broken")
        except ValueError as e:
            document_error = CapturedError.capture(e).to_document_error()

        assert document_error.error_class == "ValueError"
        assert document_error.message == "broken"
        assert "ValueError: broken" in document_error.trace
        assert document_error.to_dict()["kind"] == "document"

    def test_format_trace_is_capped(self):
        assert len(format_trace(ValueError("y" * 500), limit=100)) == 100
