"""Clean-up of sync jobs nobody will ever finish.

Orphaned jobs belong to connectors that no longer exist and are deleted.
Stuck jobs are ``in_progress`` or ``canceling`` but have not reported progress
within the threshold (their worker died); they are marked ``error`` so the
connector can sync again.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from syncspine.core.errors import JobNotRunningError
from syncspine.core.logging import get_logger
from syncspine.core.models import IngestionStats, JobStatus
from syncspine.core.protocols import ConnectorActions

log = get_logger(__name__)

STUCK_JOB_ERROR = "The job has not seen any update for some time."


@dataclass
class CleanUpResult:
    orphaned: int = 0
    stuck: int = 0


class JobCleanUp:
    def __init__(self, actions: ConnectorActions, *, stuck_threshold: float = 300.0):
        self.actions = actions
        self.stuck_threshold = stuck_threshold

    def execute(self) -> CleanUpResult:
        result = CleanUpResult()

        orphaned = self.actions.orphaned_jobs()
        if orphaned:
            result.orphaned = self.actions.delete_jobs([job.id for job in orphaned])
            log.info("cleanup.orphaned_jobs_deleted", count=result.orphaned)

        cutoff = datetime.now(UTC) - timedelta(seconds=self.stuck_threshold)
        for job in self.actions.stuck_jobs(cutoff):
            stats = IngestionStats(
                indexed_document_count=job.indexed_document_count,
                indexed_document_volume=job.indexed_document_volume,
                deleted_document_count=job.deleted_document_count,
            )
            try:
                self.actions.complete_sync(
                    job.connector_id,
                    job.id,
                    JobStatus.ERROR,
                    stats=stats,
                    cursors=job.cursors,
                    error=STUCK_JOB_ERROR,
                )
            except JobNotRunningError:
                log.info("cleanup.stuck_job_finished", job_id=job.id)
                continue
            result.stuck += 1
            log.warning("cleanup.stuck_job_marked_error", job_id=job.id, connector_id=job.connector_id)

        return result
