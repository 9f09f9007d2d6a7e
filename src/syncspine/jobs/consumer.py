"""
Job consumer: polls for pending sync jobs and runs them on a bounded pool.

┌──────────────────────────────────────────────────────────────────────────────┐
│  stopped ──subscribe()──► running ──shutdown()──► shutting_down ──► stopped  │
│                                                                              │
│  tick (every poll_interval, first tick immediate):                           │
│    ready   = scheduler.connector_settings() filtered by ready_for_sync       │
│    pending = actions.pending_jobs(ready ids)                                 │
│    for job in pending (not already in flight here):                          │
│        pool.submit(_execute, settings, job)   ── PoolSaturatedError: stop    │
│                                                                              │
│  _execute (pool thread):                                                     │
│    ensure_content_index_exists → runner_factory(settings, job).execute()     │
│    already running / version changed ──► info, skip                          │
│    anything else                     ──► logged with traceback               │
└──────────────────────────────────────────────────────────────────────────────┘

At most one job per connector runs at a time across every consumer sharing
the store; the runner's claim enforces it, not this class.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol

from syncspine.connectors.registry import ConnectorRegistry
from syncspine.core.errors import error_kind, is_coordination
from syncspine.core.logging import get_logger
from syncspine.core.models import ConnectorSettings, SyncJob
from syncspine.core.protocols import ConnectorActions
from syncspine.jobs.pool import BoundedWorkerPool, PoolSaturatedError, PoolShutdownError
from syncspine.scheduling.timer import PeriodicTimer

log = get_logger(__name__)

POLL_INTERVAL = 3.0
TERMINATION_TIMEOUT = 60.0
MAX_THREADS = 5
MAX_QUEUE = 100


class ConnectorSource(Protocol):
    def connector_settings(self) -> list[ConnectorSettings]: ...


class Runner(Protocol):
    def execute(self) -> Any: ...


RunnerFactory = Callable[[ConnectorSettings, SyncJob], Runner]


class ConsumerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class JobConsumer:
    def __init__(
        self,
        actions: ConnectorActions,
        scheduler: ConnectorSource,
        registry: ConnectorRegistry,
        runner_factory: RunnerFactory,
        *,
        poll_interval: float = POLL_INTERVAL,
        termination_timeout: float = TERMINATION_TIMEOUT,
        max_threads: int = MAX_THREADS,
        max_queue: int = MAX_QUEUE,
    ):
        self.actions = actions
        self.scheduler = scheduler
        self.registry = registry
        self.runner_factory = runner_factory
        self.poll_interval = poll_interval
        self.termination_timeout = termination_timeout
        self.max_threads = max_threads
        self.max_queue = max_queue

        self.index_name: str | None = None
        self.state = ConsumerState.STOPPED
        self._timer: PeriodicTimer | None = None
        self._pool: BoundedWorkerPool | None = None
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    # === Lifecycle ===

    def subscribe(self, index_name: str) -> None:
        if self.state != ConsumerState.STOPPED:
            log.warning("consumer.already_subscribed", index=self.index_name, state=self.state.value)
            return

        self.index_name = index_name
        self._pool = BoundedWorkerPool(max_threads=self.max_threads, max_queue=self.max_queue)
        self._timer = PeriodicTimer("job-consumer", run_immediately=True)
        self.state = ConsumerState.RUNNING
        self._timer.start(self._tick, self.poll_interval)
        log.info(
            "consumer.subscribed",
            index=index_name,
            poll_interval=self.poll_interval,
            max_threads=self.max_threads,
            max_queue=self.max_queue,
        )

    @property
    def running(self) -> bool:
        timer, pool = self._timer, self._pool
        return bool(timer and timer.is_running and pool and pool.is_running)

    def shutdown(self) -> bool:
        """Stop polling, then wait up to ``termination_timeout`` for running jobs.

        Returns False when some jobs were still running at the deadline.
        """
        if self.state == ConsumerState.STOPPED:
            return True

        self.state = ConsumerState.SHUTTING_DOWN
        log.info("consumer.shutting_down", index=self.index_name)
        finished = True
        if self._timer is not None:
            self._timer.stop()
        if self._pool is not None:
            finished = self._pool.shutdown(timeout=self.termination_timeout)
        self._timer = None
        self._pool = None
        self.state = ConsumerState.STOPPED
        log.info("consumer.stopped", index=self.index_name, clean=finished)
        return finished

    # === Polling ===

    def ready_for_sync(self, settings: ConnectorSettings) -> bool:
        return (
            settings.allows_sync
            and self.registry.has(settings.service_type)
            and settings.valid_index_name
        )

    def _tick(self) -> None:
        pool = self._pool
        if pool is None or not pool.is_running:
            return

        connectors = {
            settings.id: settings
            for settings in self.scheduler.connector_settings()
            if self.ready_for_sync(settings)
        }
        if not connectors:
            log.debug("consumer.no_ready_connectors")
            return

        pending = self.actions.pending_jobs(list(connectors))
        for job in pending:
            settings = connectors.get(job.connector_id)
            if settings is None:
                continue
            with self._lock:
                if job.id in self._in_flight:
                    continue
                self._in_flight.add(job.id)
            try:
                pool.submit(self._execute, settings, job)
            except PoolSaturatedError as e:
                self._release(job.id)
                log.warning("consumer.pool_saturated", job_id=job.id, error=str(e))
                break
            except PoolShutdownError:
                self._release(job.id)
                log.debug("consumer.pool_closed", job_id=job.id)
                break
            except Exception:
                self._release(job.id)
                log.exception("consumer.submit_failed", job_id=job.id)

    def _execute(self, settings: ConnectorSettings, job: SyncJob) -> None:
        try:
            self.actions.ensure_content_index_exists(settings.index_name)
            runner = self.runner_factory(settings, job)
            runner.execute()
        except Exception as e:
            if is_coordination(e):
                log.info(
                    "job.skipped",
                    job_id=job.id,
                    connector_id=settings.id,
                    reason=error_kind(e).value,
                    detail=str(e),
                )
            else:
                log.exception("job.failed", job_id=job.id, connector_id=settings.id, error=str(e))
        finally:
            self._release(job.id)

    def _release(self, job_id: str) -> None:
        with self._lock:
            self._in_flight.discard(job_id)
