"""
Row models for connectors and sync jobs.

These dataclasses mirror the ``connectors`` and ``sync_jobs`` tables and the
values passed between the scheduler, the consumer and the job runner. They
carry no persistence logic; ``syncspine.persistence.sqlite`` maps rows onto
them.

Tags:
    models, dataclasses, connectors, sync-jobs, ingestion-stats
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from syncspine.core.errors import ErrorKind

DEFAULT_REQUEST_PIPELINE = "ent-search-generic-ingestion"

# Characters the search engine refuses in index names.
_INVALID_INDEX_CHARS = re.compile(r'[\\/*?"<>| ,#:]')


class ConnectorStatus(str, Enum):
    CREATED = "created"
    NEEDS_CONFIGURATION = "needs_configuration"
    CONFIGURED = "configured"
    CONNECTED = "connected"
    ERROR = "error"


STATUSES_ALLOWING_SYNC: frozenset[ConnectorStatus] = frozenset({
    ConnectorStatus.CONFIGURED,
    ConnectorStatus.CONNECTED,
    ConnectorStatus.ERROR,
})


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    CANCELING = "canceling"
    CANCELED = "canceled"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    ERROR = "error"


STARTABLE_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.PENDING, JobStatus.SUSPENDED})
TERMINAL_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.CANCELED,
    JobStatus.ERROR,
})
ACTIVE_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.PENDING,
    JobStatus.IN_PROGRESS,
    JobStatus.CANCELING,
    JobStatus.SUSPENDED,
})


class JobType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class TriggerMethod(str, Enum):
    ON_DEMAND = "on_demand"
    SCHEDULED = "scheduled"


class SyncAction(str, Enum):
    CREATE_OR_UPDATE = "create_or_update"
    DELETE = "delete"


@dataclass
class SchedulingSettings:
    enabled: bool = False
    interval: str = ""


@dataclass
class ConnectorSettings:
    """Connector row as read at a point in time.

    ``version`` is bumped by every write to the row; the job runner claims a
    job only if the version it was handed is still current.
    """

    id: str
    service_type: str
    index_name: str
    version: int = 1
    status: ConnectorStatus = ConnectorStatus.CREATED
    configuration: dict[str, Any] = field(default_factory=dict)
    scheduling: SchedulingSettings = field(default_factory=SchedulingSettings)
    sync_now: bool = False
    last_synced: datetime | None = None
    last_seen: datetime | None = None
    last_sync_status: JobStatus | None = None
    last_sync_error: str | None = None
    last_indexed_count: int = 0
    last_deleted_count: int = 0
    sync_cursor: dict[str, str] = field(default_factory=dict)
    pipeline: str = DEFAULT_REQUEST_PIPELINE
    error: str | None = None

    @property
    def configuration_initialized(self) -> bool:
        return bool(self.configuration)

    @property
    def allows_sync(self) -> bool:
        return self.status in STATUSES_ALLOWING_SYNC

    @property
    def valid_index_name(self) -> bool:
        name = self.index_name or ""
        if not name or name != name.lower():
            return False
        if name.startswith(("-", "_", "+")) or name in (".", ".."):
            return False
        return not _INVALID_INDEX_CHARS.search(name)

    @property
    def formatted(self) -> str:
        return f"connector {self.id} ({self.service_type})"


@dataclass
class SyncJob:
    """One sync run of a connector, from pending to a terminal status."""

    id: str
    connector_id: str
    status: JobStatus = JobStatus.PENDING
    job_type: JobType = JobType.FULL
    trigger_method: TriggerMethod = TriggerMethod.SCHEDULED
    cursors: dict[str, str] = field(default_factory=dict)
    indexed_document_count: int = 0
    indexed_document_volume: int = 0
    deleted_document_count: int = 0
    error: str | None = None
    worker_hostname: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    last_seen: datetime | None = None
    completed_at: datetime | None = None
    canceled_at: datetime | None = None
    resume_after: datetime | None = None

    @property
    def startable(self) -> bool:
        return self.status in STARTABLE_STATUSES

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class IngestionStats:
    indexed_document_count: int = 0
    indexed_document_volume: int = 0
    deleted_document_count: int = 0

    def add(self, other: IngestionStats) -> None:
        self.indexed_document_count += other.indexed_document_count
        self.indexed_document_volume += other.indexed_document_volume
        self.deleted_document_count += other.deleted_document_count

    def reset(self) -> None:
        self.indexed_document_count = 0
        self.indexed_document_volume = 0
        self.deleted_document_count = 0

    def copy(self) -> IngestionStats:
        return replace(self)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class DocumentError:
    """A single captured document failure, kept for diagnostics."""

    kind: ErrorKind
    error_class: str
    message: str
    trace: str
    correlation_id: str
    occurred_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "error_class": self.error_class,
            "message": self.message,
            "trace": self.trace,
            "correlation_id": self.correlation_id,
            "occurred_at": self.occurred_at.isoformat(),
        }
