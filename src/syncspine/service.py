"""
SyncService: wires the scheduler, producer, consumer and clean-up together.

┌──────────────────────────────────────────────────────────────────────────────┐
│  Scheduler ──trigger──► on_trigger()                                         │
│                           SYNC          → JobProducer.enqueue_job("sync")    │
│                           HEARTBEAT     → Heartbeat.send                     │
│                           CONFIGURATION → Heartbeat.configure                │
│                                                                              │
│  JobConsumer ──tick──► pending jobs ──► pool ──► SyncJobRunner.execute()     │
│                                                                              │
│  clean-up timer ──► JobCleanUp.execute()                                     │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from typing import Any

from syncspine.connectors.registry import ConnectorRegistry, default_registry
from syncspine.core.logging import get_logger
from syncspine.core.models import ConnectorSettings, SyncJob, TriggerMethod
from syncspine.core.protocols import BulkClient
from syncspine.core.settings import SyncSpineSettings, get_settings
from syncspine.ingestion.clients import ElasticsearchBulkClient, InMemoryBulkClient
from syncspine.jobs.cleanup import CleanUpResult, JobCleanUp
from syncspine.jobs.consumer import JobConsumer
from syncspine.jobs.producer import JobProducer
from syncspine.jobs.runner import SyncJobRunner, SyncOptions
from syncspine.persistence.sqlite import SqliteConnectorActions, open_database
from syncspine.scheduling.heartbeat import Heartbeat
from syncspine.scheduling.scheduler import NativeScheduler, Scheduler, SingleScheduler, TriggerKind
from syncspine.scheduling.timer import PeriodicTimer

log = get_logger(__name__)

CONNECTORS_INDEX = ".syncspine-connectors"


def build_client(settings: SyncSpineSettings) -> BulkClient:
    if settings.elasticsearch_url:
        return ElasticsearchBulkClient.from_url(
            settings.elasticsearch_url, api_key=settings.elasticsearch_api_key
        )
    log.warning("service.in_memory_client", reason="SYNCSPINE_ELASTICSEARCH_URL is not set")
    return InMemoryBulkClient()


class SyncService:
    def __init__(
        self,
        settings: SyncSpineSettings | None = None,
        *,
        registry: ConnectorRegistry | None = None,
        client: BulkClient | None = None,
        actions: SqliteConnectorActions | None = None,
        connector_id: str | None = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or default_registry()
        self.client = client or build_client(self.settings)
        if actions is None:
            actions = SqliteConnectorActions(
                open_database(self.settings.database_path), client=self.client
            )
            actions.initialize_schema()
        self.actions = actions
        self.options = SyncOptions.from_settings(self.settings)

        self.producer = JobProducer(self.actions)
        self.heartbeat = Heartbeat(self.actions, self.registry)
        self.cleanup = JobCleanUp(self.actions, stuck_threshold=self.settings.stuck_job_threshold)

        scheduler_options: dict[str, Any] = {
            "poll_interval": self.settings.scheduler_poll_interval,
            "heartbeat_interval": self.settings.heartbeat_interval,
        }
        self.scheduler: Scheduler
        if connector_id:
            self.scheduler = SingleScheduler(self.actions, self.registry, connector_id, **scheduler_options)
        else:
            self.scheduler = NativeScheduler(self.actions, self.registry, **scheduler_options)

        self.consumer = JobConsumer(
            self.actions,
            self.scheduler,
            self.registry,
            self.create_runner,
            poll_interval=self.settings.poll_interval,
            termination_timeout=self.settings.termination_timeout,
            max_threads=self.settings.max_threads,
            max_queue=self.settings.max_queue,
        )
        self._cleanup_timer: PeriodicTimer | None = None

    # === Wiring ===

    def create_runner(self, connector_settings: ConnectorSettings, job: SyncJob) -> SyncJobRunner:
        return SyncJobRunner(
            connector_settings,
            job,
            actions=self.actions,
            registry=self.registry,
            client=self.client,
            worker_hostname=self.settings.worker_hostname,
            options=self.options,
        )

    def on_trigger(self, connector_settings: ConnectorSettings, kind: TriggerKind) -> None:
        if kind == TriggerKind.SYNC:
            self.producer.enqueue_job("sync", connector_settings)
        elif kind == TriggerKind.HEARTBEAT:
            self.heartbeat.send(connector_settings)
        elif kind == TriggerKind.CONFIGURATION:
            self.heartbeat.configure(connector_settings)

    # === Lifecycle ===

    def start(self) -> None:
        self.run_cleanup()
        self.scheduler.when_triggered(self.on_trigger)
        self.consumer.subscribe(CONNECTORS_INDEX)
        self._cleanup_timer = PeriodicTimer("job-cleanup", run_immediately=False)
        self._cleanup_timer.start(self.run_cleanup, self.settings.stuck_job_threshold)
        log.info("service.started", connectors=self.registry.service_types())

    def stop(self) -> bool:
        self.scheduler.stop()
        if self._cleanup_timer is not None:
            self._cleanup_timer.stop()
            self._cleanup_timer = None
        finished = self.consumer.shutdown()
        log.info("service.stopped", clean=finished)
        return finished

    @property
    def running(self) -> bool:
        return self.scheduler.running and self.consumer.running

    # === Operations ===

    def run_cleanup(self) -> CleanUpResult | None:
        try:
            return self.cleanup.execute()
        except Exception as e:
            log.exception("service.cleanup_failed", error=str(e))
            return None

    def sync_now(self, connector_id: str) -> SyncJob:
        self.actions.request_sync_now(connector_id)
        connector_settings = self.actions.load_connector_settings(connector_id)
        return self.producer.enqueue_job(
            "sync", connector_settings, trigger_method=TriggerMethod.ON_DEMAND
        )
