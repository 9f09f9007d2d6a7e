"""Collaborator protocols used by the sync core.

The orchestration code only depends on these structural types. SQLite and
Elasticsearch adapters live in ``syncspine.persistence`` and
``syncspine.ingestion.clients``; tests substitute ``MagicMock`` instances.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from syncspine.core.models import (
    ConnectorSettings,
    ConnectorStatus,
    IngestionStats,
    JobStatus,
    JobType,
    SyncJob,
    TriggerMethod,
)


@runtime_checkable
class BulkClient(Protocol):
    """Search engine client used by the ingestion sink."""

    def bulk(self, operations: list[str], *, pipeline: str | None = None) -> dict[str, Any]:
        """Send NDJSON operations; return the engine's bulk response."""
        ...

    def ensure_index(self, index_name: str) -> None: ...

    def fetch_document_ids(self, index_name: str) -> set[str]: ...


@runtime_checkable
class ConnectorActions(Protocol):
    """Persistence operations the core performs on connectors and jobs."""

    # ── Connectors ───────────────────────────────────────────────
    def load_connector_settings(self, connector_id: str) -> ConnectorSettings: ...

    def list_connectors(self, service_types: Sequence[str] | None = None) -> list[ConnectorSettings]: ...

    def update_connector_configuration(
        self, connector_id: str, configuration: dict[str, Any], status: ConnectorStatus
    ) -> None: ...

    def update_connector_status(
        self, connector_id: str, status: ConnectorStatus, error: str | None = None
    ) -> None: ...

    def update_connector_last_seen(self, connector_id: str) -> None: ...

    def ensure_content_index_exists(self, index_name: str) -> None: ...

    # ── Jobs ─────────────────────────────────────────────────────
    def create_job(
        self,
        connector_settings: ConnectorSettings,
        *,
        job_type: JobType = JobType.FULL,
        trigger_method: TriggerMethod = TriggerMethod.SCHEDULED,
    ) -> SyncJob: ...

    def load_job(self, job_id: str) -> SyncJob: ...

    def pending_jobs(self, connector_ids: Sequence[str]) -> list[SyncJob]: ...

    def has_active_job(self, connector_id: str) -> bool: ...

    def claim_job(self, job: SyncJob, connector_version: int, worker_hostname: str) -> SyncJob: ...

    def update_job_progress(self, job_id: str, stats: IngestionStats) -> None: ...

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
    ) -> None: ...

    # ── Clean-up ─────────────────────────────────────────────────
    def orphaned_jobs(self) -> list[SyncJob]: ...

    def stuck_jobs(self, older_than: datetime) -> list[SyncJob]: ...

    def delete_jobs(self, job_ids: Sequence[str]) -> int: ...
