"""Tests for syncspine.jobs.runner.

Runs real jobs against the in-memory SQLite store and bulk client, with the
scripted connector from conftest as the document source.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from syncspine.core.errors import (
    ConnectorNotFoundError,
    IncompatibleConfigurableFieldsError,
    JobAlreadyRunningError,
    SyncSuspendedError,
    TransientError,
)
from syncspine.core.models import (
    ConnectorStatus,
    JobStatus,
    JobType,
    SchedulingSettings,
    TriggerMethod,
)
from syncspine.core.settings import SyncSpineSettings
from syncspine.jobs.cleanup import STUCK_JOB_ERROR, JobCleanUp
from syncspine.jobs.runner import SyncJobRunner, SyncOptions


@pytest.fixture
def run(actions, registry, client):
    """Create a job for a connector and run it to completion."""

    def _run(
        settings,
        *,
        job=None,
        job_type: JobType = JobType.FULL,
        trigger_method: TriggerMethod = TriggerMethod.SCHEDULED,
        options: SyncOptions | None = None,
        bulk_client=None,
    ):
        if job is None:
            job = actions.create_job(settings, job_type=job_type, trigger_method=trigger_method)
        runner = SyncJobRunner(
            settings,
            job,
            actions=actions,
            registry=registry,
            client=bulk_client or client,
            worker_hostname="test-worker",
            options=options,
        )
        return runner.execute()

    return _run


def _seed(client, index_name: str, *ids: str) -> None:
    operations = []
    for doc_id in ids:
        operations.append(json.dumps({"index": {"_index": index_name, "_id": doc_id}}))
        operations.append(json.dumps({"id": doc_id}))
    client.bulk(operations)


# =============================================================================
# Happy path
# =============================================================================


class TestCompletedSync:
    def test_indexes_documents_and_records_summary(
        self, actions, client, scripted, make_connector, run
    ):
        scripted.script = [{"id": "1", "title": "one"}, {"id": "2", "title": "two"}]
        settings = make_connector()

        result = run(settings)

        assert result.status == JobStatus.COMPLETED
        assert result.stats.indexed_document_count == 2
        assert result.cursors == {"position": "end"}
        assert client.documents("search-test") == {
            "1": {"id": "1", "title": "one"},
            "2": {"id": "2", "title": "two"},
        }

        job = actions.load_job(result.job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.worker_hostname == "test-worker"
        assert job.indexed_document_count == 2
        connector = actions.load_connector_settings(settings.id)
        assert connector.last_sync_status == JobStatus.COMPLETED
        assert connector.sync_cursor == {"position": "end"}
        assert connector.last_synced is not None

    def test_download_is_merged_into_document(self, client, make_connector, run):
        settings = make_connector("example", configuration={"document_count": "2", "title_prefix": "T"})

        result = run(settings)

        assert result.status == JobStatus.COMPLETED
        assert client.documents("search-test")["example-1"]["body"] == "Body of example document 1."

    def test_delete_actions(self, client, scripted, make_connector, run):
        _seed(client, "search-test", "1", "2")
        scripted.script = [{"id": "1"}, ("delete", "2")]

        result = run(make_connector(), job_type=JobType.INCREMENTAL)

        assert result.stats.deleted_document_count == 1
        assert set(client.documents("search-test")) == {"1"}

    def test_full_sync_prunes_documents_no_longer_in_source(
        self, client, scripted, make_connector, run
    ):
        _seed(client, "search-test", "1", "stale-a", "stale-b")
        scripted.script = [{"id": "1"}, {"id": "new"}]

        result = run(make_connector())

        assert set(client.documents("search-test")) == {"1", "new"}
        assert result.stats.deleted_document_count == 2

    def test_incremental_sync_does_not_prune(self, client, scripted, make_connector, run):
        _seed(client, "search-test", "old")
        scripted.script = [{"id": "1"}]

        run(make_connector(), job_type=JobType.INCREMENTAL)

        assert set(client.documents("search-test")) == {"old", "1"}

    def test_documents_deleted_by_source_are_not_pruned_again(
        self, client, scripted, make_connector, run
    ):
        _seed(client, "search-test", "1", "2")
        scripted.script = [{"id": "1"}, ("delete", "2")]

        result = run(make_connector())

        assert result.stats.deleted_document_count == 1

    def test_progress_is_reported_every_check_interval(
        self, actions, scripted, make_connector, run, monkeypatch
    ):
        scripted.script = [{"id": str(n)} for n in range(5)]
        reports = []
        original = actions.update_job_progress
        monkeypatch.setattr(
            actions,
            "update_job_progress",
            lambda job_id, stats: (reports.append(stats), original(job_id, stats)),
        )

        run(make_connector(), options=SyncOptions(check_interval=2))

        assert len(reports) == 2

    def test_progress_is_reported_on_time_for_slow_sources(
        self, actions, scripted, make_connector, run, monkeypatch
    ):
        scripted.script = [{"id": str(n)} for n in range(3)]
        reports = []
        original = actions.update_job_progress
        monkeypatch.setattr(
            actions,
            "update_job_progress",
            lambda job_id, stats: (reports.append(stats), original(job_id, stats)),
        )

        run(make_connector(), options=SyncOptions(check_interval=1000, progress_interval=0))

        assert len(reports) == 3


# =============================================================================
# Document errors
# =============================================================================


class TestDocumentErrors:
    def test_tolerated_errors_do_not_fail_the_job(self, client, scripted, make_connector, run):
        scripted.script = [{"id": str(n)} for n in range(9)] + [TransientError("flaky")]

        result = run(make_connector())

        assert result.status == JobStatus.COMPLETED
        assert result.stats.indexed_document_count == 9
        assert "poison-10" not in client.documents("search-test")

    def test_back_to_back_poison_documents_trip_the_monitor(
        self, actions, scripted, make_connector, run
    ):
        scripted.script = [{"id": "1"}, ValueError("a"), ValueError("b"), ValueError("c"), {"id": "5"}]
        settings = make_connector()

        result = run(settings, options=SyncOptions(monitor={"max_consecutive_errors": 2}))

        assert result.status == JobStatus.ERROR
        assert "3 errors in a row" in result.error
        job = actions.load_job(result.job_id)
        assert job.status == JobStatus.ERROR
        assert "consecutive" in job.error
        assert actions.load_connector_settings(settings.id).status == ConnectorStatus.ERROR

    def test_periodic_poison_stops_at_the_first_long_run(
        self, actions, scripted, make_connector, run
    ):
        pulled = []

        def stream():
            for n in range(1, 21):
                pulled.append(n)
                yield ValueError(f"poison {n}") if n % 5 == 0 or n in (11, 12) else {"id": str(n)}

        scripted.script = stream()
        settings = make_connector()

        result = run(settings, options=SyncOptions(monitor={"max_consecutive_errors": 2}))

        assert pulled == list(range(1, 13))
        assert result.status == JobStatus.ERROR
        assert "3 errors in a row" in result.error
        job = actions.load_job(result.job_id)
        assert job.status == JobStatus.ERROR
        assert "consecutive" in job.error

    def test_overall_ratio_fails_job_after_stream(self, scripted, make_connector, run):
        scripted.script = [{"id": "1"}, ValueError("a"), {"id": "3"}]

        result = run(make_connector())

        assert result.status == JobStatus.ERROR
        assert "1 errors out of 3" in result.error
        assert result.stats.indexed_document_count == 2

    def test_stream_failure_fails_job(self, scripted, make_connector, run):
        scripted.script = [{"id": "1"}, ("stream", ConnectionError("source gone"))]

        result = run(make_connector())

        assert result.status == JobStatus.ERROR
        assert result.error == "source gone"

    def test_bulk_failure_fails_job(self, scripted, make_connector, run):
        scripted.script = [{"id": "1"}]
        bulk_client = MagicMock()
        bulk_client.fetch_document_ids.return_value = set()
        bulk_client.bulk.side_effect = ConnectionError("cluster down")

        result = run(make_connector(), bulk_client=bulk_client)

        assert result.status == JobStatus.ERROR
        assert result.error == "cluster down"


# =============================================================================
# Cancellation and suspension
# =============================================================================


class TestCancellation:
    def test_cancel_request_stops_sync_and_flushes(
        self, actions, client, scripted, make_connector, run, monkeypatch
    ):
        scripted.script = [{"id": str(n)} for n in range(6)]
        original = actions.update_job_progress

        def progress_then_cancel(job_id, stats):
            original(job_id, stats)
            actions.request_cancel(job_id)

        monkeypatch.setattr(actions, "update_job_progress", progress_then_cancel)

        result = run(make_connector(), options=SyncOptions(check_interval=2))

        assert result.status == JobStatus.CANCELED
        assert result.stats.indexed_document_count == 2
        assert set(client.documents("search-test")) == {"0", "1"}
        assert actions.load_job(result.job_id).canceled_at is not None

    def test_cancel_is_observed_at_end_of_stream(
        self, actions, client, scripted, make_connector, run
    ):
        settings = make_connector()
        job = actions.create_job(settings)

        def stream():
            yield {"id": "1"}
            actions.request_cancel(job.id)

        scripted.script = stream()

        result = run(settings, job=job)

        assert result.status == JobStatus.CANCELED
        assert set(client.documents("search-test")) == {"1"}

    def test_failed_flush_after_cancel_is_an_error(
        self, actions, scripted, make_connector, run, monkeypatch
    ):
        scripted.script = [{"id": "1"}, {"id": "2"}]
        monkeypatch.setattr(actions, "update_job_progress", lambda job_id, stats: actions.request_cancel(job_id))
        bulk_client = MagicMock()
        bulk_client.fetch_document_ids.return_value = set()
        bulk_client.bulk.side_effect = ConnectionError("cluster down")

        result = run(make_connector(), options=SyncOptions(check_interval=1), bulk_client=bulk_client)

        assert result.status == JobStatus.ERROR
        assert result.error == "cluster down"


class TestSuspension:
    def test_suspend_keeps_cursors_and_resume_time(
        self, actions, client, scripted, make_connector, run
    ):
        scripted.script = [
            {"id": "1"},
            ("stream", SyncSuspendedError(retry_after=3600, cursors={"page": "2"})),
        ]
        settings = make_connector()

        result = run(settings)

        assert result.status == JobStatus.SUSPENDED
        assert result.cursors == {"page": "2"}
        assert set(client.documents("search-test")) == {"1"}
        job = actions.load_job(result.job_id)
        assert job.status == JobStatus.SUSPENDED
        assert job.cursors == {"page": "2"}
        assert job.resume_after is not None
        assert actions.pending_jobs([settings.id]) == []

    def test_resumed_job_skips_due_check(self, actions, scripted, make_connector, run):
        scripted.script = [("stream", SyncSuspendedError(retry_after=0, cursors={"page": "2"}))]
        settings = make_connector()
        first = run(settings)
        actions.update_connector_scheduling(settings.id, SchedulingSettings(enabled=False))

        scripted.script = [{"id": "2"}]
        result = run(
            actions.load_connector_settings(settings.id),
            job=actions.load_job(first.job_id),
        )

        assert result.job_id == first.job_id
        assert result.status == JobStatus.COMPLETED

    def test_resumed_full_sync_keeps_documents_from_before_suspension(
        self, actions, client, scripted, make_connector, run
    ):
        scripted.script = [
            {"id": "1"},
            ("stream", SyncSuspendedError(retry_after=0, cursors={"page": "2"})),
        ]
        settings = make_connector()
        first = run(settings)
        assert first.status == JobStatus.SUSPENDED
        assert set(client.documents("search-test")) == {"1"}

        scripted.script = [{"id": "2"}]
        result = run(
            actions.load_connector_settings(settings.id),
            job=actions.load_job(first.job_id),
        )

        assert result.status == JobStatus.COMPLETED
        assert set(client.documents("search-test")) == {"1", "2"}


class TestLostClaim:
    def test_job_swept_as_stuck_stops_without_writing(
        self, conn, actions, client, scripted, make_connector, run
    ):
        settings = make_connector()
        job = actions.create_job(settings)
        other = {}

        def stream():
            yield {"id": "1"}
            stale = (datetime.now(UTC) - timedelta(seconds=600)).isoformat()
            conn.execute("UPDATE sync_jobs SET last_seen = ? WHERE id = ?", (stale, job.id))
            conn.commit()
            assert JobCleanUp(actions, stuck_threshold=60).execute().stuck == 1
            current = actions.load_connector_settings(settings.id)
            other["job"] = actions.claim_job(actions.create_job(current), current.version, "other-worker")
            yield {"id": "2"}

        scripted.script = stream()

        result = run(settings, job=job, options=SyncOptions(check_interval=1))

        assert result.status == JobStatus.ERROR
        assert "not running" in result.error
        swept = actions.load_job(job.id)
        assert swept.status == JobStatus.ERROR
        assert swept.error == STUCK_JOB_ERROR
        assert actions.load_job(other["job"].id).status == JobStatus.IN_PROGRESS
        assert client.documents("search-test") == {}

    def test_job_finished_elsewhere_is_not_overwritten(
        self, actions, scripted, make_connector, run, monkeypatch
    ):
        scripted.script = [{"id": "1"}]
        settings = make_connector()
        job = actions.create_job(settings)
        original = actions.complete_sync

        def finished_first(connector_id, job_id, status, **kwargs):
            original(connector_id, job_id, JobStatus.ERROR, stats=kwargs["stats"], error="taken over")
            return original(connector_id, job_id, status, **kwargs)

        monkeypatch.setattr(actions, "complete_sync", finished_first)

        result = run(settings, job=job)

        assert result.status == JobStatus.ERROR
        assert actions.load_job(job.id).error == "taken over"


# =============================================================================
# Claim and preconditions
# =============================================================================


class TestPreconditions:
    def test_scheduled_job_that_is_not_due_is_canceled(
        self, actions, client, scripted, make_connector, run
    ):
        scripted.script = [{"id": "1"}]
        settings = make_connector(scheduling=SchedulingSettings(enabled=False))

        result = run(settings)

        assert result.status == JobStatus.CANCELED
        assert result.error == "Sync was not due"
        assert client.calls == []
        assert actions.load_job(result.job_id).status == JobStatus.CANCELED
        assert actions.load_connector_settings(settings.id).last_synced is None

    def test_on_demand_job_ignores_schedule(self, scripted, make_connector, run):
        scripted.script = [{"id": "1"}]
        settings = make_connector(scheduling=SchedulingSettings(enabled=False))

        result = run(settings, trigger_method=TriggerMethod.ON_DEMAND)

        assert result.status == JobStatus.COMPLETED

    def test_configuration_mismatch(self, actions, make_connector, run):
        settings = make_connector(configuration={"unexpected": "x"})

        with pytest.raises(IncompatibleConfigurableFieldsError, match="expected configurable fields: name"):
            run(settings)

        connector = actions.load_connector_settings(settings.id)
        assert connector.status == ConnectorStatus.ERROR
        assert connector.last_sync_status == JobStatus.ERROR

    def test_unregistered_service_type(self, actions, make_connector, run):
        settings = make_connector("ghost", configuration={"a": "1"})

        with pytest.raises(ConnectorNotFoundError):
            run(settings)

        assert actions.load_connector_settings(settings.id).last_sync_status == JobStatus.ERROR

    def test_claim_race_leaves_job_untouched(self, actions, scripted, make_connector, run):
        scripted.script = [{"id": "1"}]
        settings = make_connector()
        job = actions.create_job(settings)
        first = run(settings, job=job)
        assert first.status == JobStatus.COMPLETED

        with pytest.raises(JobAlreadyRunningError):
            run(actions.load_connector_settings(settings.id), job=job)
        assert actions.load_job(job.id).status == JobStatus.COMPLETED


class TestSyncOptions:
    def test_from_settings(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        options = SyncOptions.from_settings(
            SyncSpineSettings(max_consecutive_errors=3, check_interval=7, bulk_max_items=50)
        )
        assert options.monitor["max_consecutive_errors"] == 3
        assert options.check_interval == 7
        assert options.bulk_max_items == 50
