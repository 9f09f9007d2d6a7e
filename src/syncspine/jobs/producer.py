"""Creates pending sync jobs."""

from __future__ import annotations

from syncspine.core.errors import InvalidArgumentError, UnsupportedJobTypeError
from syncspine.core.logging import get_logger
from syncspine.core.models import ConnectorSettings, JobType, SyncJob, TriggerMethod
from syncspine.core.protocols import ConnectorActions

log = get_logger(__name__)

SUPPORTED_JOB_TYPES = ("sync",)


class JobProducer:
    def __init__(self, actions: ConnectorActions):
        self.actions = actions

    def enqueue_job(
        self,
        job_type: str,
        connector_settings: ConnectorSettings,
        *,
        trigger_method: TriggerMethod | None = None,
        sync_type: JobType = JobType.FULL,
    ) -> SyncJob:
        """Validate the request and persist a pending job.

        Raises:
            UnsupportedJobTypeError: ``job_type`` is not ``"sync"``.
            InvalidArgumentError: ``connector_settings`` is not a ConnectorSettings.
        """
        if job_type not in SUPPORTED_JOB_TYPES:
            raise UnsupportedJobTypeError(
                f"Unsupported job type '{job_type}'; supported: {', '.join(SUPPORTED_JOB_TYPES)}"
            )
        if not isinstance(connector_settings, ConnectorSettings):
            raise InvalidArgumentError(
                f"Expected ConnectorSettings, got {type(connector_settings).__name__}"
            )

        if trigger_method is None:
            trigger_method = (
                TriggerMethod.ON_DEMAND if connector_settings.sync_now else TriggerMethod.SCHEDULED
            )
        job = self.actions.create_job(
            connector_settings, job_type=sync_type, trigger_method=trigger_method
        )
        log.info(
            "job.enqueued",
            job_id=job.id,
            connector_id=connector_settings.id,
            trigger_method=trigger_method.value,
            job_type=sync_type.value,
        )
        return job
