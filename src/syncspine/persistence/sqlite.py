"""
SQLite-backed connector and sync job store.

Implements the ``ConnectorActions`` protocol. Every write to a connector row
increments its ``version``; the job claim is a pair of conditional UPDATEs in
one transaction, so concurrent claimers (threads or processes sharing the
database file) observe ``rowcount == 0`` and back off. Progress and
completion only touch jobs that are still ``in_progress`` or ``canceling``;
a runner whose job was taken from it gets ``JobNotRunningError``.

┌──────────────────────────────────────────────────────────────────────────────┐
│  CLAIM                                                                        │
│                                                                               │
│   UPDATE sync_jobs  SET status='in_progress' ...                              │
│    WHERE id=? AND status IN ('pending','suspended')                           │
│      AND no other in_progress/canceling job for the connector                 │
│        rowcount == 0 ──► rollback ──► JobAlreadyRunningError                  │
│                                                                               │
│   UPDATE connectors SET version=version+1, sync_now=0, ...                    │
│    WHERE id=? AND version=?                                                   │
│        rowcount == 0 ──► rollback ──► ConnectorVersionChangedError            │
│                                                                               │
│   COMMIT                                                                      │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, NoReturn

from syncspine.core.errors import (
    ConnectorNotFoundError,
    ConnectorVersionChangedError,
    JobAlreadyRunningError,
    JobNotFoundError,
    JobNotRunningError,
)
from syncspine.core.models import (
    DEFAULT_REQUEST_PIPELINE,
    ConnectorSettings,
    ConnectorStatus,
    IngestionStats,
    JobStatus,
    JobType,
    SchedulingSettings,
    SyncJob,
    TriggerMethod,
)
from syncspine.core.protocols import BulkClient

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS connectors (
    id                  TEXT PRIMARY KEY,
    version             INTEGER NOT NULL DEFAULT 1,
    service_type        TEXT NOT NULL,
    index_name          TEXT NOT NULL,
    status              TEXT NOT NULL DEFAULT 'created',
    configuration       TEXT NOT NULL DEFAULT '{}',
    scheduling_enabled  INTEGER NOT NULL DEFAULT 0,
    scheduling_interval TEXT NOT NULL DEFAULT '',
    sync_now            INTEGER NOT NULL DEFAULT 0,
    last_synced         TEXT,
    last_seen           TEXT,
    last_sync_status    TEXT,
    last_sync_error     TEXT,
    last_indexed_count  INTEGER NOT NULL DEFAULT 0,
    last_deleted_count  INTEGER NOT NULL DEFAULT 0,
    sync_cursor         TEXT NOT NULL DEFAULT '{}',
    pipeline            TEXT NOT NULL DEFAULT 'ent-search-generic-ingestion',
    error               TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_jobs (
    id                      TEXT PRIMARY KEY,
    connector_id            TEXT NOT NULL,
    status                  TEXT NOT NULL DEFAULT 'pending',
    job_type                TEXT NOT NULL DEFAULT 'full',
    trigger_method          TEXT NOT NULL DEFAULT 'scheduled',
    cursors                 TEXT NOT NULL DEFAULT '{}',
    indexed_document_count  INTEGER NOT NULL DEFAULT 0,
    indexed_document_volume INTEGER NOT NULL DEFAULT 0,
    deleted_document_count  INTEGER NOT NULL DEFAULT 0,
    error                   TEXT,
    worker_hostname         TEXT,
    created_at              TEXT NOT NULL,
    started_at              TEXT,
    last_seen               TEXT,
    completed_at            TEXT,
    canceled_at             TEXT,
    resume_after            TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_jobs_connector_status
    ON sync_jobs (connector_id, status);
"""

_ACTIVE = tuple(s.value for s in (
    JobStatus.PENDING, JobStatus.IN_PROGRESS, JobStatus.CANCELING, JobStatus.SUSPENDED,
))
_RUNNING = (JobStatus.IN_PROGRESS.value, JobStatus.CANCELING.value)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def open_database(path: str) -> sqlite3.Connection:
    """Open a SQLite connection shared by the scheduler and worker threads."""
    conn = sqlite3.connect(path, check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


class SqliteConnectorActions:
    """Connector and job persistence on a shared SQLite connection.

    Example:
        >>> conn = open_database(":memory:")
        >>> actions = SqliteConnectorActions(conn)
        >>> actions.initialize_schema()
        >>> settings = actions.create_connector("example", "search-example")
        >>> job = actions.create_job(settings)
        >>> job.status
        <JobStatus.PENDING: 'pending'>
    """

    def __init__(self, conn: sqlite3.Connection, *, client: BulkClient | None = None):
        self._conn = conn
        self._conn.row_factory = sqlite3.Row
        self._client = client
        self._lock = threading.RLock()

    def initialize_schema(self) -> None:
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()

    # =========================================================================
    # CONNECTORS
    # =========================================================================

    def create_connector(
        self,
        service_type: str,
        index_name: str,
        *,
        connector_id: str | None = None,
        configuration: dict[str, Any] | None = None,
        scheduling: SchedulingSettings | None = None,
        status: ConnectorStatus = ConnectorStatus.CREATED,
        pipeline: str = DEFAULT_REQUEST_PIPELINE,
    ) -> ConnectorSettings:
        connector_id = connector_id or uuid.uuid4().hex
        scheduling = scheduling or SchedulingSettings()
        now = _ts(_utcnow())
        with self._lock:
            self._conn.execute(
                "INSERT INTO connectors "
                "(id, service_type, index_name, status, configuration, "
                " scheduling_enabled, scheduling_interval, pipeline, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    connector_id,
                    service_type,
                    index_name,
                    status.value,
                    json.dumps(configuration or {}),
                    int(scheduling.enabled),
                    scheduling.interval,
                    pipeline,
                    now,
                    now,
                ),
            )
            self._conn.commit()
        logger.info("Created connector %s of service type %s", connector_id, service_type)
        return self.load_connector_settings(connector_id)

    def load_connector_settings(self, connector_id: str) -> ConnectorSettings:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM connectors WHERE id = ?", (connector_id,)
            ).fetchone()
        if row is None:
            raise ConnectorNotFoundError(f"Connector {connector_id} not found")
        return self._row_to_connector(row)

    def list_connectors(self, service_types: Sequence[str] | None = None) -> list[ConnectorSettings]:
        sql = "SELECT * FROM connectors"
        params: tuple[Any, ...] = ()
        if service_types is not None:
            if not service_types:
                return []
            sql += f" WHERE service_type IN ({_placeholders(service_types)})"
            params = tuple(service_types)
        with self._lock:
            rows = self._conn.execute(sql + " ORDER BY created_at", params).fetchall()
        return [self._row_to_connector(row) for row in rows]

    def update_connector_configuration(
        self,
        connector_id: str,
        configuration: dict[str, Any],
        status: ConnectorStatus,
    ) -> None:
        self._update_connector(
            connector_id,
            configuration=json.dumps(configuration),
            status=status.value,
        )

    def update_connector_status(
        self,
        connector_id: str,
        status: ConnectorStatus,
        error: str | None = None,
    ) -> None:
        self._update_connector(connector_id, status=status.value, error=error)

    def update_connector_last_seen(self, connector_id: str) -> None:
        self._update_connector(connector_id, last_seen=_ts(_utcnow()))

    def update_connector_scheduling(self, connector_id: str, scheduling: SchedulingSettings) -> None:
        self._update_connector(
            connector_id,
            scheduling_enabled=int(scheduling.enabled),
            scheduling_interval=scheduling.interval,
        )

    def request_sync_now(self, connector_id: str) -> None:
        self._update_connector(connector_id, sync_now=1)

    def delete_connector(self, connector_id: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM connectors WHERE id = ?", (connector_id,))
            self._conn.commit()

    def ensure_content_index_exists(self, index_name: str) -> None:
        if self._client is None:
            logger.debug("No search client configured, not creating index %s", index_name)
            return
        self._client.ensure_index(index_name)

    # =========================================================================
    # JOBS
    # =========================================================================

    def create_job(
        self,
        connector_settings: ConnectorSettings,
        *,
        job_type: JobType = JobType.FULL,
        trigger_method: TriggerMethod = TriggerMethod.SCHEDULED,
    ) -> SyncJob:
        job_id = uuid.uuid4().hex
        with self._lock:
            self._conn.execute(
                "INSERT INTO sync_jobs (id, connector_id, status, job_type, trigger_method, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    job_id,
                    connector_settings.id,
                    JobStatus.PENDING.value,
                    job_type.value,
                    trigger_method.value,
                    _ts(_utcnow()),
                ),
            )
            self._conn.commit()
        return self.load_job(job_id)

    def load_job(self, job_id: str) -> SyncJob:
        with self._lock:
            row = self._conn.execute("SELECT * FROM sync_jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise JobNotFoundError(f"Sync job {job_id} not found")
        return self._row_to_job(row)

    def pending_jobs(self, connector_ids: Sequence[str]) -> list[SyncJob]:
        """Startable jobs: pending, or suspended with an elapsed ``resume_after``."""
        if not connector_ids:
            return []
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM sync_jobs "
                f"WHERE connector_id IN ({_placeholders(connector_ids)}) "
                "  AND (status = ? OR (status = ? AND (resume_after IS NULL OR resume_after <= ?))) "
                "ORDER BY created_at ASC",
                (
                    *connector_ids,
                    JobStatus.PENDING.value,
                    JobStatus.SUSPENDED.value,
                    _ts(_utcnow()),
                ),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def has_active_job(self, connector_id: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM sync_jobs "
                f"WHERE connector_id = ? AND status IN ({_placeholders(_ACTIVE)}) LIMIT 1",
                (connector_id, *_ACTIVE),
            ).fetchone()
        return row is not None

    def claim_job(self, job: SyncJob, connector_version: int, worker_hostname: str) -> SyncJob:
        now = _ts(_utcnow())
        with self._lock:
            try:
                cursor = self._conn.execute(
                    "UPDATE sync_jobs "
                    "SET status = ?, started_at = ?, last_seen = ?, worker_hostname = ?, resume_after = NULL "
                    "WHERE id = ? AND status IN (?, ?) "
                    "  AND NOT EXISTS ("
                    "    SELECT 1 FROM sync_jobs AS other "
                    "    WHERE other.connector_id = sync_jobs.connector_id "
                    f"      AND other.id != sync_jobs.id AND other.status IN ({_placeholders(_RUNNING)}))",
                    (
                        JobStatus.IN_PROGRESS.value,
                        now,
                        now,
                        worker_hostname,
                        job.id,
                        JobStatus.PENDING.value,
                        JobStatus.SUSPENDED.value,
                        *_RUNNING,
                    ),
                )
                if cursor.rowcount == 0:
                    self._conn.rollback()
                    self.load_job(job.id)
                    raise JobAlreadyRunningError(f"Sync job {job.id} is already running")

                cursor = self._conn.execute(
                    "UPDATE connectors "
                    "SET version = version + 1, last_sync_status = ?, sync_now = 0, updated_at = ? "
                    "WHERE id = ? AND version = ?",
                    (JobStatus.IN_PROGRESS.value, now, job.connector_id, connector_version),
                )
                if cursor.rowcount == 0:
                    self._conn.rollback()
                    self.load_connector_settings(job.connector_id)
                    raise ConnectorVersionChangedError(
                        f"Version conflict: connector {job.connector_id} changed since "
                        f"version {connector_version} was read"
                    )
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise
        return self.load_job(job.id)

    def update_job_progress(self, job_id: str, stats: IngestionStats) -> None:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE sync_jobs SET last_seen = ?, indexed_document_count = ?, "
                "indexed_document_volume = ?, deleted_document_count = ? "
                f"WHERE id = ? AND status IN ({_placeholders(_RUNNING)})",
                (
                    _ts(_utcnow()),
                    stats.indexed_document_count,
                    stats.indexed_document_volume,
                    stats.deleted_document_count,
                    job_id,
                    *_RUNNING,
                ),
            )
            self._conn.commit()
            if cursor.rowcount == 0:
                self._raise_not_running(job_id)

    def request_cancel(self, job_id: str) -> JobStatus:
        """Cancel a pending job outright; ask a running one to stop."""
        now = _ts(_utcnow())
        with self._lock:
            self._conn.execute(
                "UPDATE sync_jobs SET status = ?, canceled_at = ?, completed_at = ? "
                "WHERE id = ? AND status IN (?, ?)",
                (
                    JobStatus.CANCELED.value,
                    now,
                    now,
                    job_id,
                    JobStatus.PENDING.value,
                    JobStatus.SUSPENDED.value,
                ),
            )
            self._conn.execute(
                "UPDATE sync_jobs SET status = ? WHERE id = ? AND status = ?",
                (JobStatus.CANCELING.value, job_id, JobStatus.IN_PROGRESS.value),
            )
            self._conn.commit()
        return self.load_job(job_id).status

    def complete_sync(
        self,
        connector_id: str,
        job_id: str,
        status: JobStatus,
        *,
        stats: IngestionStats,
        cursors: dict[str, str] | None = None,
        error: str | None = None,
        resume_after: datetime | None = None,
        mark_synced: bool = True,
    ) -> None:
        """Record the outcome of a running job on the job and its connector.

        ``mark_synced=False`` leaves the connector's ``last_synced`` alone, for
        jobs that ended without syncing anything.

        Raises:
            JobNotRunningError: the job is no longer ``in_progress`` or
                ``canceling``; nothing is written.
        """
        now = _utcnow()
        terminal = status in (JobStatus.COMPLETED, JobStatus.CANCELED, JobStatus.ERROR)
        with self._lock:
            try:
                cursor = self._conn.execute(
                    "UPDATE sync_jobs SET status = ?, error = ?, cursors = ?, "
                    "indexed_document_count = ?, indexed_document_volume = ?, deleted_document_count = ?, "
                    "last_seen = ?, completed_at = ?, canceled_at = ?, resume_after = ? "
                    f"WHERE id = ? AND status IN ({_placeholders(_RUNNING)})",
                    (
                        status.value,
                        error,
                        json.dumps(cursors or {}),
                        stats.indexed_document_count,
                        stats.indexed_document_volume,
                        stats.deleted_document_count,
                        _ts(now),
                        _ts(now) if terminal else None,
                        _ts(now) if status == JobStatus.CANCELED else None,
                        _ts(resume_after),
                        job_id,
                        *_RUNNING,
                    ),
                )
                if cursor.rowcount == 0:
                    self._conn.rollback()
                    self._raise_not_running(job_id)

                assignments = [
                    "version = version + 1",
                    "last_sync_status = ?",
                    "last_sync_error = ?",
                    "last_indexed_count = ?",
                    "last_deleted_count = ?",
                    "updated_at = ?",
                ]
                params: list[Any] = [
                    status.value,
                    error,
                    stats.indexed_document_count,
                    stats.deleted_document_count,
                    _ts(now),
                ]
                if terminal and mark_synced:
                    assignments.append("last_synced = ?")
                    params.append(_ts(now))
                if status == JobStatus.COMPLETED and cursors is not None:
                    assignments.append("sync_cursor = ?")
                    params.append(json.dumps(cursors))
                if status == JobStatus.ERROR:
                    assignments.extend(["status = ?", "error = ?"])
                    params.extend([ConnectorStatus.ERROR.value, error])
                self._conn.execute(
                    f"UPDATE connectors SET {', '.join(assignments)} WHERE id = ?",
                    (*params, connector_id),
                )
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise

    # =========================================================================
    # CLEAN-UP
    # =========================================================================

    def orphaned_jobs(self) -> list[SyncJob]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT j.* FROM sync_jobs AS j "
                "LEFT JOIN connectors AS c ON c.id = j.connector_id "
                "WHERE c.id IS NULL"
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def stuck_jobs(self, older_than: datetime) -> list[SyncJob]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM sync_jobs WHERE status IN ({_placeholders(_RUNNING)}) "
                "  AND (last_seen IS NULL OR last_seen < ?)",
                (*_RUNNING, _ts(older_than)),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def delete_jobs(self, job_ids: Sequence[str]) -> int:
        if not job_ids:
            return 0
        with self._lock:
            cursor = self._conn.execute(
                f"DELETE FROM sync_jobs WHERE id IN ({_placeholders(job_ids)})",
                tuple(job_ids),
            )
            self._conn.commit()
        return cursor.rowcount

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _raise_not_running(self, job_id: str) -> NoReturn:
        job = self.load_job(job_id)
        raise JobNotRunningError(f"Sync job {job_id} is {job.status.value}, not running").with_context(
            job_id=job_id, connector_id=job.connector_id
        )

    def _update_connector(self, connector_id: str, **fields: Any) -> None:
        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self._lock:
            cursor = self._conn.execute(
                f"UPDATE connectors SET {assignments}, version = version + 1, updated_at = ? WHERE id = ?",
                (*fields.values(), _ts(_utcnow()), connector_id),
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            raise ConnectorNotFoundError(f"Connector {connector_id} not found")

    @staticmethod
    def _row_to_connector(row: sqlite3.Row) -> ConnectorSettings:
        return ConnectorSettings(
            id=row["id"],
            version=row["version"],
            service_type=row["service_type"],
            index_name=row["index_name"],
            status=ConnectorStatus(row["status"]),
            configuration=json.loads(row["configuration"] or "{}"),
            scheduling=SchedulingSettings(
                enabled=bool(row["scheduling_enabled"]),
                interval=row["scheduling_interval"] or "",
            ),
            sync_now=bool(row["sync_now"]),
            last_synced=_parse_ts(row["last_synced"]),
            last_seen=_parse_ts(row["last_seen"]),
            last_sync_status=JobStatus(row["last_sync_status"]) if row["last_sync_status"] else None,
            last_sync_error=row["last_sync_error"],
            last_indexed_count=row["last_indexed_count"],
            last_deleted_count=row["last_deleted_count"],
            sync_cursor=json.loads(row["sync_cursor"] or "{}"),
            pipeline=row["pipeline"],
            error=row["error"],
        )

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> SyncJob:
        return SyncJob(
            id=row["id"],
            connector_id=row["connector_id"],
            status=JobStatus(row["status"]),
            job_type=JobType(row["job_type"]),
            trigger_method=TriggerMethod(row["trigger_method"]),
            cursors=json.loads(row["cursors"] or "{}"),
            indexed_document_count=row["indexed_document_count"],
            indexed_document_volume=row["indexed_document_volume"],
            deleted_document_count=row["deleted_document_count"],
            error=row["error"],
            worker_hostname=row["worker_hostname"],
            created_at=_parse_ts(row["created_at"]),
            started_at=_parse_ts(row["started_at"]),
            last_seen=_parse_ts(row["last_seen"]),
            completed_at=_parse_ts(row["completed_at"]),
            canceled_at=_parse_ts(row["canceled_at"]),
            resume_after=_parse_ts(row["resume_after"]),
        )
