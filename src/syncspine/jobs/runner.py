"""
Sync job runner: one connector, one job, start to terminal status.

┌──────────────────────────────────────────────────────────────────────────────┐
│  execute()                                                                   │
│                                                                              │
│   1. claim            actions.claim_job(job, version)   ── races propagate   │
│   2. validate         configurable field keys           ── job → error       │
│   3. due re-check     is_sync_due(settings)             ── job → canceled    │
│   4. stream           for (action, doc, download) in connector:              │
│                           guard.yield_single_document(process)               │
│                           every N docs or T seconds: progress + cancel check │
│                       prune stale ids (full, not resumed), flush, finalize   │
│   5. finalize         actions.complete_sync(status, stats, cursors, error)   │
│                       skipped when the job is no longer running here         │
└──────────────────────────────────────────────────────────────────────────────┘

Only claim races and configuration errors leave ``execute``; anything that
goes wrong while streaming ends up as the job's terminal error. A runner whose
job was taken from it (the stuck-job sweep marked it ``error``) stops at the
next check and writes nothing more.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import partial
from typing import Any

from syncspine.connectors.base import BaseConnector
from syncspine.connectors.registry import ConnectorRegistry
from syncspine.core.cron import is_sync_due
from syncspine.core.errors import (
    ConnectorNotFoundError,
    IncompatibleConfigurableFieldsError,
    JobCanceledError,
    JobNotFoundError,
    JobNotRunningError,
    SyncSuspendedError,
)
from syncspine.core.logging import LogContext, get_logger
from syncspine.core.models import (
    ConnectorSettings,
    IngestionStats,
    JobStatus,
    JobType,
    SyncAction,
    SyncJob,
    TriggerMethod,
)
from syncspine.core.protocols import BulkClient, ConnectorActions
from syncspine.core.settings import SyncSpineSettings
from syncspine.ingestion.bulk_queue import BulkQueue
from syncspine.ingestion.error_guard import ErrorGuard
from syncspine.ingestion.error_monitor import ErrorMonitor
from syncspine.ingestion.sink import DEFAULT_MAX_ALLOWED_DOCUMENT_SIZE, IngestionSink

log = get_logger(__name__)


@dataclass
class SyncOptions:
    """Per-job tunables, usually derived from ``SyncSpineSettings``."""

    monitor: dict[str, Any] = field(default_factory=dict)
    bulk_max_items: int = 500
    bulk_max_bytes: int = 5 * 1024 * 1024
    max_allowed_document_size: int = DEFAULT_MAX_ALLOWED_DOCUMENT_SIZE
    check_interval: int = 100
    progress_interval: float = 30.0
    request_pipeline: str | None = None

    @classmethod
    def from_settings(cls, settings: SyncSpineSettings) -> SyncOptions:
        return cls(
            monitor=settings.error_monitor_options(),
            bulk_max_items=settings.bulk_max_items,
            bulk_max_bytes=settings.bulk_max_bytes,
            max_allowed_document_size=settings.max_allowed_document_size,
            check_interval=settings.check_interval,
            progress_interval=settings.progress_interval,
            request_pipeline=settings.request_pipeline,
        )


@dataclass
class SyncResult:
    job_id: str
    status: JobStatus
    stats: IngestionStats
    error: str | None = None
    cursors: dict[str, str] = field(default_factory=dict)


class SyncJobRunner:
    def __init__(
        self,
        connector_settings: ConnectorSettings,
        job: SyncJob,
        *,
        actions: ConnectorActions,
        registry: ConnectorRegistry,
        client: BulkClient,
        worker_hostname: str = "localhost",
        options: SyncOptions | None = None,
    ):
        self.connector_settings = connector_settings
        self.job = job
        self.actions = actions
        self.registry = registry
        self.client = client
        self.worker_hostname = worker_hostname
        self.options = options or SyncOptions()

    def execute(self) -> SyncResult:
        settings = self.connector_settings
        with LogContext(
            connector_id=settings.id,
            job_id=self.job.id,
            service_type=settings.service_type,
        ):
            resuming = self.job.status == JobStatus.SUSPENDED
            self.job = self.actions.claim_job(
                self.job, settings.version, self.worker_hostname
            )
            log.info("job.claimed", worker=self.worker_hostname, resuming=resuming)

            try:
                connector_class = self.registry.get(settings.service_type)
                self._validate_configuration(connector_class)
            except (ConnectorNotFoundError, IncompatibleConfigurableFieldsError) as e:
                log.error("job.invalid_configuration", error=str(e))
                self._finalize(JobStatus.ERROR, IngestionStats(), error=str(e))
                raise

            if not (resuming or self._should_sync()):
                log.info("job.not_due")
                return self._finalize(
                    JobStatus.CANCELED,
                    IngestionStats(),
                    error="Sync was not due",
                    mark_synced=False,
                )

            return self._sync(connector_class, resuming=resuming)

    # === Steps ===

    def _validate_configuration(self, connector_class: type[BaseConnector]) -> None:
        settings = self.connector_settings
        if not settings.configuration_initialized:
            return
        expected = sorted(connector_class.configurable_fields())
        actual = sorted(settings.configuration)
        if expected != actual:
            raise IncompatibleConfigurableFieldsError(settings.service_type, expected, actual)

    def _should_sync(self) -> bool:
        if self.job.trigger_method == TriggerMethod.ON_DEMAND:
            return True
        return is_sync_due(self.connector_settings)

    def _sync(self, connector_class: type[BaseConnector], *, resuming: bool = False) -> SyncResult:
        settings = self.connector_settings
        options = self.options
        monitor = ErrorMonitor(**options.monitor)
        guard = ErrorGuard(monitor)
        sink = IngestionSink(
            self.client,
            settings.index_name,
            request_pipeline=options.request_pipeline or settings.pipeline,
            queue=BulkQueue(options.bulk_max_items, options.bulk_max_bytes),
            max_allowed_document_size=options.max_allowed_document_size,
        )
        cursors = dict(self.job.cursors or settings.sync_cursor)
        # A resumed stream only covers what follows the suspension, so it
        # cannot tell which indexed documents are stale.
        prune = self.job.job_type == JobType.FULL and not resuming
        if self.job.job_type == JobType.FULL and resuming:
            log.info("sync.pruning_skipped", reason="resumed")

        status = JobStatus.COMPLETED
        error: str | None = None
        resume_after: datetime | None = None
        log.info("sync.started", job_type=self.job.job_type.value, index=settings.index_name)

        try:
            connector = connector_class(settings.configuration, cursors)
            existing_ids = self.client.fetch_document_ids(settings.index_name) if prune else set()
            seen_ids: set[str] = set()
            last_report = time.monotonic()

            for count, (action, document, download) in enumerate(connector.yield_documents(), start=1):
                document_id = document.get("id") if document else None
                if prune and document_id is not None:
                    seen_ids.add(str(document_id))
                guard.yield_single_document(
                    partial(self._process_document, sink, action, document, download),
                    identifier=document_id,
                )
                if (
                    count % options.check_interval == 0
                    or time.monotonic() - last_report >= options.progress_interval
                ):
                    self._report_progress(sink)
                    last_report = time.monotonic()
            self._check_canceled()

            stale_ids = existing_ids - seen_ids
            if stale_ids:
                log.info("sync.pruning", count=len(stale_ids))
                sink.delete_multiple(sorted(stale_ids))
            sink.flush()
            monitor.finalize()
            cursors = connector.cursors
        except JobNotRunningError as e:
            return self._claim_lost(sink.ingestion_stats(), e)
        except JobCanceledError:
            status = JobStatus.CANCELED
            error = self._flush_after_stop(sink)
        except SyncSuspendedError as e:
            status = JobStatus.SUSPENDED
            cursors = e.cursors or cursors
            resume_after = datetime.now(UTC) + timedelta(seconds=e.retry_after)
            error = self._flush_after_stop(sink)
        except Exception as e:
            log.exception("sync.failed", error=str(e), monitor=monitor.to_dict())
            status = JobStatus.ERROR
            error = str(e)

        if error is not None and status in (JobStatus.CANCELED, JobStatus.SUSPENDED):
            status = JobStatus.ERROR
        return self._finalize(
            status,
            sink.ingestion_stats(),
            error=error,
            cursors=cursors,
            resume_after=resume_after,
        )

    def _process_document(
        self,
        sink: IngestionSink,
        action: SyncAction,
        document: dict[str, Any],
        download: Callable[[], dict[str, Any]] | None,
    ) -> None:
        if action == SyncAction.DELETE:
            sink.delete(document.get("id"))
            return
        if download is not None:
            document = {**document, **(download() or {})}
        sink.ingest(document)

    def _report_progress(self, sink: IngestionSink) -> None:
        """Persist progress and stop if cancellation was requested."""
        self.actions.update_job_progress(self.job.id, sink.ingestion_stats())
        self._check_canceled()

    def _check_canceled(self) -> None:
        current = self.actions.load_job(self.job.id)
        if current.status == JobStatus.CANCELING:
            log.info("sync.cancel_requested")
            raise JobCanceledError(f"Sync job {self.job.id} was canceled")
        if current.status != JobStatus.IN_PROGRESS:
            raise JobNotRunningError(f"Sync job {self.job.id} is {current.status.value}, not running")

    def _claim_lost(self, stats: IngestionStats, error: JobNotRunningError) -> SyncResult:
        """Stop without writing: the job now belongs to whoever changed its status."""
        try:
            status = self.actions.load_job(self.job.id).status
        except JobNotFoundError:
            status = JobStatus.ERROR
        log.warning("sync.claim_lost", status=status.value, error=str(error))
        return SyncResult(job_id=self.job.id, status=status, stats=stats, error=str(error))

    def _flush_after_stop(self, sink: IngestionSink) -> str | None:
        try:
            sink.flush()
        except Exception as e:
            log.exception("sync.flush_failed", error=str(e))
            return str(e)
        return None

    def _finalize(
        self,
        status: JobStatus,
        stats: IngestionStats,
        *,
        error: str | None = None,
        cursors: dict[str, str] | None = None,
        resume_after: datetime | None = None,
        mark_synced: bool = True,
    ) -> SyncResult:
        try:
            self.actions.complete_sync(
                self.connector_settings.id,
                self.job.id,
                status,
                stats=stats,
                cursors=cursors,
                error=error,
                resume_after=resume_after,
                mark_synced=mark_synced,
            )
        except JobNotRunningError as e:
            return self._claim_lost(stats, e)
        log.info(
            "sync.finished",
            status=status.value,
            indexed=stats.indexed_document_count,
            deleted=stats.deleted_document_count,
            error=error,
        )
        return SyncResult(
            job_id=self.job.id,
            status=status,
            stats=stats,
            error=error,
            cursors=dict(cursors or {}),
        )
