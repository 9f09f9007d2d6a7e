"""
Structured error types for SyncSpine.

Every failure that crosses a component boundary is a ``SyncError`` carrying a
closed ``ErrorKind``. Whether a kind stops a sync job is decided by one
explicit table, ``FATAL_KINDS``, not by walking the class hierarchy.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         SyncError                                │
        │        (kind, context, cause, correlation_id)                    │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  MonitoringError        Coordination          Document source    │
        │  (4 trip kinds)         JobAlreadyRunning     SyncSuspended      │
        │                         ConnectorVersion-     JobCanceled        │
        │  BulkWriteError           Changed             TransientError     │
        │  (INGESTION)                                                     │
        │                         Lookup                Request            │
        │  IncompatibleConfig-    ConnectorNotFound     UnsupportedJobType │
        │    urableFields         JobNotFound           InvalidArgument    │
        │                         JobNotRunning                            │
        └─────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: classify with ``isinstance`` chains
    ✅ DO: use ``error_kind(exc)`` and ``is_fatal(kind)``

    ❌ DON'T: set attributes on foreign exceptions after the fact
    ✅ DO: wrap them in ``CapturedError`` at the point of capture

Tags:
    error-handling, error-kind, fatal-classification, correlation-id

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import traceback
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from syncspine.core.models import DocumentError

MAX_TRACE_LENGTH = 10_000


class ErrorKind(str, Enum):
    """Closed set of failure kinds known to the sync pipeline."""

    # Per-document, tolerated by the error monitor
    DOCUMENT = "document"
    TRANSIENT = "transient"

    # Error monitor trips
    CONSECUTIVE_ERRORS_EXCEEDED = "consecutive_errors_exceeded"
    TOTAL_ERRORS_EXCEEDED = "total_errors_exceeded"
    WINDOW_ERRORS_EXCEEDED = "window_errors_exceeded"
    OVERALL_ERRORS_EXCEEDED = "overall_errors_exceeded"

    # Lookups and job lifecycle
    CONNECTOR_NOT_FOUND = "connector_not_found"
    JOB_NOT_FOUND = "job_not_found"
    JOB_CANCELED = "job_canceled"
    JOB_NOT_RUNNING = "job_not_running"
    SUSPENDED = "suspended"

    # Claim races
    JOB_ALREADY_RUNNING = "job_already_running"
    CONNECTOR_VERSION_CHANGED = "connector_version_changed"

    # Ingestion and configuration
    INGESTION = "ingestion"
    INCOMPATIBLE_CONFIGURATION = "incompatible_configuration"
    CONFIGURATION = "configuration"

    # Request validation
    UNSUPPORTED_JOB_TYPE = "unsupported_job_type"
    INVALID_ARGUMENT = "invalid_argument"


MONITOR_TRIP_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.CONSECUTIVE_ERRORS_EXCEEDED,
    ErrorKind.TOTAL_ERRORS_EXCEEDED,
    ErrorKind.WINDOW_ERRORS_EXCEEDED,
    ErrorKind.OVERALL_ERRORS_EXCEEDED,
})

# Kinds that stop document iteration when raised inside a single-document step.
FATAL_KINDS: frozenset[ErrorKind] = MONITOR_TRIP_KINDS | frozenset({
    ErrorKind.CONNECTOR_NOT_FOUND,
    ErrorKind.JOB_NOT_FOUND,
    ErrorKind.JOB_CANCELED,
    ErrorKind.JOB_NOT_RUNNING,
    ErrorKind.SUSPENDED,
    ErrorKind.INGESTION,
    ErrorKind.INCOMPATIBLE_CONFIGURATION,
})

# Expected races during the claim; logged at info and skipped.
COORDINATION_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.JOB_ALREADY_RUNNING,
    ErrorKind.CONNECTOR_VERSION_CHANGED,
})


@dataclass
class ErrorContext:
    """Structured metadata attached to a SyncError."""

    connector_id: str | None = None
    job_id: str | None = None
    service_type: str | None = None
    document_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = {
            key: value
            for key, value in (
                ("connector_id", self.connector_id),
                ("job_id", self.job_id),
                ("service_type", self.service_type),
                ("document_id", self.document_id),
            )
            if value is not None
        }
        if self.metadata:
            result["metadata"] = self.metadata
        return result


class SyncError(Exception):
    """Base class for every error raised by SyncSpine components.

    Subclasses only pin ``default_kind``; behaviour is driven by the kind,
    which callers may also override per instance.

    Examples:
        >>> err = SyncError("boom", kind=ErrorKind.TRANSIENT)
        >>> err.kind
        <ErrorKind.TRANSIENT: 'transient'>
        >>> is_fatal(err)
        False
    """

    default_kind: ErrorKind = ErrorKind.DOCUMENT

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
        correlation_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind if kind is not None else self.default_kind
        self.context = context or ErrorContext()
        self.cause = cause
        self.correlation_id = correlation_id or uuid.uuid4().hex
        if cause is not None:
            self.__cause__ = cause

    @property
    def fatal(self) -> bool:
        return self.kind in FATAL_KINDS

    def with_context(self, **kwargs: Any) -> SyncError:
        """Set context fields in place and return self for chaining."""
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "kind": self.kind.value,
            "fatal": self.fatal,
            "correlation_id": self.correlation_id,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, kind={self.kind.value})"


# =============================================================================
# DOCUMENT SOURCE ERRORS
# =============================================================================


class TransientError(SyncError):
    """A per-document failure the source expects to clear on its own."""

    default_kind = ErrorKind.TRANSIENT


class SyncSuspendedError(SyncError):
    """Raised by a document source that must pause, e.g. when rate limited.

    Carries the cursors to resume from and the delay before the job becomes
    startable again.
    """

    default_kind = ErrorKind.SUSPENDED

    def __init__(
        self,
        message: str = "Sync suspended by the document source",
        *,
        retry_after: float = 60.0,
        cursors: dict[str, str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.cursors = dict(cursors or {})


class JobCanceledError(SyncError):
    default_kind = ErrorKind.JOB_CANCELED


class JobNotRunningError(SyncError):
    default_kind = ErrorKind.JOB_NOT_RUNNING


# =============================================================================
# MONITOR TRIPS
# =============================================================================


class MonitoringError(SyncError):
    """The error monitor decided the job is no longer viable.

    ``tripped_by`` holds the last error observed before the trip.
    """

    default_kind = ErrorKind.TOTAL_ERRORS_EXCEEDED

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        tripped_by: BaseException | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, kind=kind, cause=tripped_by, **kwargs)
        self.tripped_by = tripped_by


# =============================================================================
# LOOKUP AND COORDINATION
# =============================================================================


class ConnectorNotFoundError(SyncError):
    default_kind = ErrorKind.CONNECTOR_NOT_FOUND


class JobNotFoundError(SyncError):
    default_kind = ErrorKind.JOB_NOT_FOUND


class JobAlreadyRunningError(SyncError):
    default_kind = ErrorKind.JOB_ALREADY_RUNNING


class ConnectorVersionChangedError(SyncError):
    default_kind = ErrorKind.CONNECTOR_VERSION_CHANGED


# =============================================================================
# INGESTION, CONFIGURATION, REQUESTS
# =============================================================================


class BulkWriteError(SyncError):
    """The search engine rejected a bulk write, entirely or per item."""

    default_kind = ErrorKind.INGESTION


class IncompatibleConfigurableFieldsError(SyncError):
    default_kind = ErrorKind.INCOMPATIBLE_CONFIGURATION

    def __init__(self, service_type: str, expected: list[str], actual: list[str]):
        super().__init__(
            f"Connector of service_type '{service_type}' expected configurable fields: "
            f"{', '.join(expected)}, actual stored fields: {', '.join(actual)}"
        )
        self.service_type = service_type
        self.expected = expected
        self.actual = actual


class ConfigurationError(SyncError):
    default_kind = ErrorKind.CONFIGURATION


class UnsupportedJobTypeError(SyncError):
    default_kind = ErrorKind.UNSUPPORTED_JOB_TYPE


class InvalidArgumentError(SyncError):
    default_kind = ErrorKind.INVALID_ARGUMENT


# =============================================================================
# CLASSIFICATION
# =============================================================================


def error_kind(error: BaseException) -> ErrorKind:
    """Kind of any exception; foreign exceptions count as document errors."""
    if isinstance(error, SyncError):
        return error.kind
    return ErrorKind.DOCUMENT


def is_fatal(error: BaseException | ErrorKind) -> bool:
    kind = error if isinstance(error, ErrorKind) else error_kind(error)
    return kind in FATAL_KINDS


def is_coordination(error: BaseException) -> bool:
    return error_kind(error) in COORDINATION_KINDS


def format_trace(error: BaseException, limit: int = MAX_TRACE_LENGTH) -> str:
    trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return trace[:limit]


@dataclass(frozen=True)
class CapturedError:
    """An exception paired with the correlation id assigned when it was caught."""

    error: BaseException
    correlation_id: str
    kind: ErrorKind

    @classmethod
    def capture(cls, error: BaseException) -> CapturedError:
        if isinstance(error, SyncError):
            return cls(error=error, correlation_id=error.correlation_id, kind=error.kind)
        return cls(error=error, correlation_id=uuid.uuid4().hex, kind=ErrorKind.DOCUMENT)

    @property
    def fatal(self) -> bool:
        return self.kind in FATAL_KINDS

    def to_document_error(self) -> DocumentError:
        from syncspine.core.models import DocumentError

        return DocumentError(
            kind=self.kind,
            error_class=type(self.error).__name__,
            message=str(self.error),
            trace=format_trace(self.error),
            correlation_id=self.correlation_id,
            occurred_at=datetime.now(UTC),
        )


__all__ = [
    "MAX_TRACE_LENGTH",
    "ErrorKind",
    "FATAL_KINDS",
    "MONITOR_TRIP_KINDS",
    "COORDINATION_KINDS",
    "ErrorContext",
    "SyncError",
    "TransientError",
    "SyncSuspendedError",
    "JobCanceledError",
    "JobNotRunningError",
    "MonitoringError",
    "ConnectorNotFoundError",
    "JobNotFoundError",
    "JobAlreadyRunningError",
    "ConnectorVersionChangedError",
    "BulkWriteError",
    "IncompatibleConfigurableFieldsError",
    "ConfigurationError",
    "UnsupportedJobTypeError",
    "InvalidArgumentError",
    "error_kind",
    "is_fatal",
    "is_coordination",
    "format_trace",
    "CapturedError",
]
