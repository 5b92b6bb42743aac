"""Unit tests for the export job lifecycle."""

import asyncio
from datetime import timedelta

import pytest

from src.exporter.errors import (
    AuthenticationRequired,
    EmptyResultSet,
    GenerationFailure,
    InvalidJobState,
    InvalidTransition,
    NotFound,
    StorageFailure,
)
from src.exporter.models.exports import (
    CreateExportRequest,
    ExportFilters,
    ExportStatus,
    StorageMode,
)
from src.exporter.services import ExportGenerator, ExportRequestCoordinator
from src.exporter.storage import MemoryExportStore
from tests.fixtures.mock_fixtures import FakeAgentSource, FakeSessionSource


def agents_csv() -> CreateExportRequest:
    return CreateExportRequest(data_type="agents", format="csv")


class FailingAuditSink:
    async def append(self, event):
        raise ConnectionError("audit backend down")


class CompletionWriteFailsStore(MemoryExportStore):
    """Record store whose first write of a completed job fails."""

    def __init__(self):
        super().__init__()
        self.failed_once = False

    async def save(self, job):
        if job.status == ExportStatus.COMPLETED and not self.failed_once:
            self.failed_once = True
            raise ConnectionError("record store unavailable")
        await super().save(job)


@pytest.mark.unit
class TestCreateExport:
    async def test_completed_export_has_file_and_url(self, coordinator, clock, storage_stub):
        job = await coordinator.create("user-1", agents_csv())

        assert job.status == ExportStatus.COMPLETED
        assert job.owner == "user-1"
        assert job.file_name.startswith("agents-export-")
        assert job.file_size_bytes == len(storage_stub.objects[f"exports/user-1/{job.id}.csv"])
        assert job.storage_path == f"user-1/{job.id}.csv"
        assert job.storage_mode == StorageMode.PERSISTENT
        assert job.download_url.startswith("http://storage.test/storage/v1/object/sign/")
        assert job.completed_at == clock.now
        assert job.download_url_expires_at == job.completed_at + timedelta(hours=24)
        assert job.error_message is None

    async def test_completed_status_is_persisted(self, coordinator, export_store):
        job = await coordinator.create("user-1", agents_csv())
        stored = await export_store.get(job.id)
        assert stored == job

    async def test_empty_sessions_export_is_failed_and_raised(
        self, export_store, agent_source, artifact_store, clock
    ):
        coordinator = ExportRequestCoordinator(
            export_store,
            ExportGenerator(FakeSessionSource([]), agent_source),
            artifact_store,
            clock=clock,
        )
        request = CreateExportRequest(
            data_type="sessions", format="csv", filters=ExportFilters(status="abandoned")
        )

        with pytest.raises(EmptyResultSet):
            await coordinator.create("user-1", request)

        jobs, total = await export_store.list("user-1", 0, 10)
        assert total == 1
        assert jobs[0].status == ExportStatus.FAILED
        assert jobs[0].error_message == "No sessions found matching the filters"
        assert jobs[0].error_details["type"] == "EmptyResultSet"
        assert jobs[0].download_url is None

    async def test_unexpected_errors_are_wrapped(
        self, export_store, session_source, artifact_store
    ):
        coordinator = ExportRequestCoordinator(
            export_store,
            ExportGenerator(session_source, FakeAgentSource(error=RuntimeError("socket closed"))),
            artifact_store,
        )

        with pytest.raises(GenerationFailure, match="socket closed"):
            await coordinator.create("user-1", agents_csv())

        jobs, _ = await export_store.list("user-1", 0, 10)
        assert jobs[0].status == ExportStatus.FAILED
        assert jobs[0].error_details == {"error": "socket closed", "type": "RuntimeError"}

    async def test_storage_outage_completes_with_ephemeral_url(
        self, export_store, session_source, agent_source, ephemeral_artifact_store
    ):
        coordinator = ExportRequestCoordinator(
            export_store, ExportGenerator(session_source, agent_source), ephemeral_artifact_store
        )

        job = await coordinator.create("user-1", agents_csv())

        assert job.status == ExportStatus.COMPLETED
        assert job.storage_mode == StorageMode.EPHEMERAL
        assert job.download_url.startswith("http://testserver/exports/artifacts/")

    async def test_missing_owner_is_rejected(self, coordinator, export_store):
        with pytest.raises(AuthenticationRequired):
            await coordinator.create("  ", agents_csv())
        assert (await export_store.list("  ", 0, 10))[1] == 0

    async def test_audit_events(self, coordinator, audit_sink):
        job = await coordinator.create("user-1", agents_csv())
        assert audit_sink.actions == ["export.created"]
        assert audit_sink.events[0].resource_id == job.id

    async def test_failed_completion_write_marks_job_failed(
        self, session_source, agent_source, artifact_store, storage_stub
    ):
        store = CompletionWriteFailsStore()
        coordinator = ExportRequestCoordinator(
            store, ExportGenerator(session_source, agent_source), artifact_store
        )

        with pytest.raises(GenerationFailure, match="record store unavailable"):
            await coordinator.create("user-1", agents_csv())

        jobs, _ = await store.list("user-1", 0, 10)
        assert jobs[0].status == ExportStatus.FAILED
        assert jobs[0].error_message == "record store unavailable"
        assert jobs[0].error_details["type"] == "ConnectionError"
        assert jobs[0].download_url is None
        assert storage_stub.objects == {}

    async def test_failing_audit_sink_does_not_fail_export(
        self, export_store, session_source, agent_source, artifact_store
    ):
        coordinator = ExportRequestCoordinator(
            export_store,
            ExportGenerator(session_source, agent_source),
            artifact_store,
            audit=FailingAuditSink(),
        )
        job = await coordinator.create("user-1", agents_csv())
        assert job.status == ExportStatus.COMPLETED


@pytest.mark.unit
class TestRun:
    async def test_terminal_job_cannot_run_again(self, coordinator):
        job = await coordinator.create("user-1", agents_csv())

        with pytest.raises(InvalidTransition):
            await coordinator.run(job.id)

    async def test_unknown_job(self, coordinator):
        with pytest.raises(NotFound):
            await coordinator.run("missing")

    async def test_concurrent_runs_of_one_job_are_serialized(self, coordinator):
        job = await coordinator.submit("user-1", agents_csv())

        results = await asyncio.gather(
            coordinator.run(job.id), coordinator.run(job.id), return_exceptions=True
        )

        assert sum(isinstance(r, InvalidTransition) for r in results) == 1
        assert sum(getattr(r, "status", None) == ExportStatus.COMPLETED for r in results) == 1
        assert coordinator._locks == {}


@pytest.mark.unit
class TestQueries:
    async def test_other_owners_export_is_not_found(self, coordinator):
        job = await coordinator.create("user-1", agents_csv())

        with pytest.raises(NotFound):
            await coordinator.get("user-2", job.id)

    async def test_list_is_paginated_newest_first(self, coordinator, clock):
        ids = []
        for _ in range(3):
            ids.append((await coordinator.create("user-1", agents_csv())).id)
            clock.advance(minutes=1)
        await coordinator.create("user-2", agents_csv())

        first = await coordinator.list("user-1", page=1, page_size=2)
        second = await coordinator.list("user-1", page=2, page_size=2)

        assert first.total == 3
        assert first.total_pages == 2
        assert [j.id for j in first.exports] == [ids[2], ids[1]]
        assert [j.id for j in second.exports] == [ids[0]]

    async def test_empty_list(self, coordinator):
        result = await coordinator.list("nobody")
        assert result.total == 0
        assert result.total_pages == 0
        assert result.exports == []


@pytest.mark.unit
class TestDelete:
    async def test_delete_removes_record_and_artifact(
        self, coordinator, storage_stub, audit_sink
    ):
        job = await coordinator.create("user-1", agents_csv())

        await coordinator.delete("user-1", job.id)

        with pytest.raises(NotFound):
            await coordinator.get("user-1", job.id)
        assert storage_stub.objects == {}
        assert audit_sink.actions[-1] == "export.deleted"

    async def test_artifact_removal_failure_is_tolerated(self, coordinator, storage_stub):
        job = await coordinator.create("user-1", agents_csv())
        storage_stub.objects.clear()

        async def broken_remove(bucket, path):
            raise StorageFailure("storage offline")

        coordinator.artifacts.object_storage.remove = broken_remove

        await coordinator.delete("user-1", job.id)

        with pytest.raises(NotFound):
            await coordinator.get("user-1", job.id)

    async def test_cannot_delete_other_owners_export(self, coordinator):
        job = await coordinator.create("user-1", agents_csv())

        with pytest.raises(NotFound):
            await coordinator.delete("user-2", job.id)
        assert (await coordinator.get("user-1", job.id)).id == job.id


@pytest.mark.unit
class TestRefreshDownloadUrl:
    async def test_valid_url_is_reused(self, coordinator, clock, audit_sink):
        job = await coordinator.create("user-1", agents_csv())
        clock.advance(hours=23)

        url, expires_at = await coordinator.refresh_download_url("user-1", job.id)

        assert url == job.download_url
        assert expires_at == job.download_url_expires_at
        assert "export.url_refreshed" not in audit_sink.actions

    async def test_expired_url_is_replaced_and_persisted(self, coordinator, clock):
        job = await coordinator.create("user-1", agents_csv())
        later = clock.advance(hours=25)

        url, expires_at = await coordinator.refresh_download_url("user-1", job.id)

        assert url != job.download_url
        assert expires_at == later + timedelta(hours=24)
        stored = await coordinator.get("user-1", job.id)
        assert stored.download_url == url
        assert stored.download_url_expires_at == expires_at

    async def test_failed_export_has_no_url_to_refresh(
        self, export_store, agent_source, artifact_store
    ):
        coordinator = ExportRequestCoordinator(
            export_store, ExportGenerator(FakeSessionSource([]), agent_source), artifact_store
        )
        with pytest.raises(EmptyResultSet):
            await coordinator.create(
                "user-1", CreateExportRequest(data_type="sessions", format="json")
            )
        jobs, _ = await export_store.list("user-1", 0, 1)

        with pytest.raises(InvalidJobState):
            await coordinator.refresh_download_url("user-1", jobs[0].id)
