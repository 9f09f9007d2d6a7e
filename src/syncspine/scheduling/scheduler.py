"""
Scheduler: decides which connectors need attention and raises triggers.

Runs on its own ``PeriodicTimer``, at a coarser interval than the job
consumer. On each tick, for every connector it can see:

    CONFIGURATION  status is ``created``          → fill in default configuration
    HEARTBEAT      last_seen missing or stale     → refresh last_seen / health
    SYNC           allows sync, no active job,    → JobProducer.enqueue_job
                   schedule due (or sync_now)

What a trigger does is up to the callback; ``SyncService`` wires it to the
producer and the heartbeat. Retrieval failures are logged and treated as an
empty tick; a failing callback never stops the loop.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum

from syncspine.connectors.registry import ConnectorRegistry
from syncspine.core.cron import is_sync_due
from syncspine.core.logging import get_logger
from syncspine.core.models import ConnectorSettings, ConnectorStatus
from syncspine.core.protocols import ConnectorActions
from syncspine.scheduling.timer import PeriodicTimer

log = get_logger(__name__)

POLL_INTERVAL = 60.0
HEARTBEAT_INTERVAL = 1800.0


class TriggerKind(str, Enum):
    SYNC = "sync"
    HEARTBEAT = "heartbeat"
    CONFIGURATION = "configuration"


TriggerCallback = Callable[[ConnectorSettings, TriggerKind], None]


class Scheduler:
    """Base scheduler; subclasses choose which connectors to look at."""

    def __init__(
        self,
        actions: ConnectorActions,
        registry: ConnectorRegistry,
        *,
        poll_interval: float = POLL_INTERVAL,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
    ):
        self.actions = actions
        self.registry = registry
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval
        self._timer: PeriodicTimer | None = None

    # === Connector discovery ===

    def connector_settings(self) -> list[ConnectorSettings]:
        try:
            return self._fetch_connector_settings()
        except Exception as e:
            log.exception("scheduler.fetch_failed", error=str(e))
            return []

    def _fetch_connector_settings(self) -> list[ConnectorSettings]:
        raise NotImplementedError

    # === Lifecycle ===

    def when_triggered(self, callback: TriggerCallback) -> None:
        """Start polling; ``callback`` is invoked once per due trigger."""
        if self._timer is not None and self._timer.is_running:
            log.warning("scheduler.already_running")
            return
        self._timer = PeriodicTimer("scheduler", run_immediately=True)
        self._timer.start(lambda: self.tick(callback), self.poll_interval)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer = None
        log.info("scheduler.stopped")

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.is_running

    def tick(self, callback: TriggerCallback) -> int:
        """Evaluate every connector once. Returns the number of triggers raised."""
        triggered = 0
        for settings in self.connector_settings():
            for kind in self.triggers_for(settings):
                try:
                    callback(settings, kind)
                    triggered += 1
                except Exception as e:
                    log.exception(
                        "scheduler.trigger_failed",
                        connector_id=settings.id,
                        trigger=kind.value,
                        error=str(e),
                    )
        return triggered

    # === Trigger evaluation ===

    def triggers_for(self, settings: ConnectorSettings) -> list[TriggerKind]:
        kinds = []
        if self.configuration_triggered(settings):
            kinds.append(TriggerKind.CONFIGURATION)
        if self.heartbeat_triggered(settings):
            kinds.append(TriggerKind.HEARTBEAT)
        if self.sync_triggered(settings):
            kinds.append(TriggerKind.SYNC)
        return kinds

    def configuration_triggered(self, settings: ConnectorSettings) -> bool:
        return settings.status == ConnectorStatus.CREATED and self.registry.has(settings.service_type)

    def heartbeat_triggered(self, settings: ConnectorSettings, now: datetime | None = None) -> bool:
        if settings.last_seen is None:
            return True
        now = now or datetime.now(UTC)
        return now - settings.last_seen >= timedelta(seconds=self.heartbeat_interval)

    def sync_triggered(self, settings: ConnectorSettings) -> bool:
        if not self.registry.has(settings.service_type):
            log.debug("scheduler.unregistered_service_type", connector_id=settings.id)
            return False
        if not settings.valid_index_name:
            log.warning("scheduler.invalid_index_name", connector_id=settings.id, index=settings.index_name)
            return False
        if not settings.allows_sync:
            log.debug("scheduler.status_disallows_sync", connector_id=settings.id, status=settings.status.value)
            return False
        if self.actions.has_active_job(settings.id):
            log.debug("scheduler.job_already_active", connector_id=settings.id)
            return False
        return is_sync_due(settings)


class NativeScheduler(Scheduler):
    """Looks at every connector whose service type is registered."""

    def _fetch_connector_settings(self) -> list[ConnectorSettings]:
        return self.actions.list_connectors(self.registry.service_types())


class SingleScheduler(Scheduler):
    """Looks at a single connector."""

    def __init__(self, actions: ConnectorActions, registry: ConnectorRegistry, connector_id: str, **kwargs):
        super().__init__(actions, registry, **kwargs)
        self.connector_id = connector_id

    def _fetch_connector_settings(self) -> list[ConnectorSettings]:
        return [self.actions.load_connector_settings(self.connector_id)]
