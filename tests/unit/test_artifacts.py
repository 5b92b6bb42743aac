"""Unit tests for artifact storage, signed URLs and the ephemeral fallback."""

from datetime import datetime, timedelta, timezone

import pytest

from src.exporter.errors import InvalidJobState, StorageFailure
from src.exporter.models.exports import ExportJob, ExportStatus, StorageMode
from src.exporter.storage import ArtifactStore, EphemeralArtifactCache
from src.exporter.storage.artifacts import EphemeralArtifact
from tests.fixtures.mock_fixtures import PUBLIC_URL, STORAGE_URL, StorageStub

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def completed_job(**overrides) -> ExportJob:
    fields = {
        "id": "job-1",
        "owner": "user-1",
        "data_type": "agents",
        "format": "csv",
        "status": ExportStatus.COMPLETED,
        "storage_path": "user-1/job-1.csv",
        "storage_mode": StorageMode.PERSISTENT,
        "download_url": "https://signed.example/old",
        "download_url_expires_at": NOW + timedelta(hours=1),
        "created_at": NOW,
        "updated_at": NOW,
        "completed_at": NOW,
    }
    fields.update(overrides)
    return ExportJob(**fields)


@pytest.mark.unit
class TestUpload:
    async def test_durable_upload_returns_signed_url(self, artifact_store, storage_stub):
        artifact = await artifact_store.upload(
            b"a,b", "user-1/job-1.csv", "text/csv", "agents.csv", now=NOW
        )

        assert storage_stub.objects == {"exports/user-1/job-1.csv": b"a,b"}
        assert artifact.mode == StorageMode.PERSISTENT
        assert artifact.url == (
            f"{STORAGE_URL}/storage/v1/object/sign/exports/user-1/job-1.csv?token=t1"
        )
        assert artifact.expires_at == NOW + timedelta(hours=24)

    async def test_upload_sends_service_key_and_no_overwrite(self, artifact_store, storage_stub):
        await artifact_store.upload(b"x", "p/q.json", "application/json", "q.json", now=NOW)

        upload = storage_stub.requests[0]
        assert upload.headers["authorization"] == "Bearer service-key"
        assert upload.headers["apikey"] == "service-key"
        assert upload.headers["x-upsert"] == "false"
        assert upload.headers["content-type"] == "application/json"

    async def test_failed_upload_falls_back_to_ephemeral(self):
        stub = StorageStub(fail_uploads=True)
        store = ArtifactStore(stub.client(), "exports", PUBLIC_URL)

        artifact = await store.upload(b"a,b", "user-1/job-1.csv", "text/csv", "a.csv", now=NOW)

        assert artifact.mode == StorageMode.EPHEMERAL
        assert artifact.url.startswith(f"{PUBLIC_URL}/exports/artifacts/")
        token = artifact.url.rsplit("/", 1)[1]
        assert store.ephemeral.resolve(token, NOW).content == b"a,b"

    async def test_missing_object_storage_uses_ephemeral(self, ephemeral_artifact_store):
        artifact = await ephemeral_artifact_store.upload(
            b"{}", "o/j.json", "application/json", "j.json"
        )
        assert artifact.mode == StorageMode.EPHEMERAL
        assert len(ephemeral_artifact_store.ephemeral) == 1

    async def test_signing_failure_after_upload_propagates(self):
        stub = StorageStub(fail_signing=True)
        store = ArtifactStore(stub.client(), "exports", PUBLIC_URL)

        with pytest.raises(StorageFailure):
            await store.upload(b"a", "o/j.csv", "text/csv", "j.csv", now=NOW)


@pytest.mark.unit
class TestRefreshDownloadUrl:
    async def test_unexpired_url_is_returned_unchanged(self, artifact_store, storage_stub):
        job = completed_job()

        url, expires_at, refreshed = await artifact_store.refresh_download_url(job, NOW)

        assert url == job.download_url
        assert expires_at == job.download_url_expires_at
        assert refreshed is False
        assert storage_stub.requests == []

    async def test_repeated_refresh_before_expiry_is_stable(self, artifact_store):
        job = completed_job()
        first = await artifact_store.refresh_download_url(job, NOW)
        second = await artifact_store.refresh_download_url(job, NOW + timedelta(minutes=30))
        assert first[:2] == second[:2]

    async def test_expired_url_is_re_signed(self, artifact_store):
        job = completed_job(download_url_expires_at=NOW - timedelta(seconds=1))

        url, expires_at, refreshed = await artifact_store.refresh_download_url(job, NOW)

        assert refreshed is True
        assert url != job.download_url
        assert "/object/sign/exports/user-1/job-1.csv" in url
        assert expires_at == NOW + timedelta(hours=24)

    async def test_url_expiring_exactly_now_is_refreshed(self, artifact_store):
        job = completed_job(download_url_expires_at=NOW)
        _, _, refreshed = await artifact_store.refresh_download_url(job, NOW)
        assert refreshed is True

    @pytest.mark.parametrize("status", [ExportStatus.PENDING, ExportStatus.FAILED])
    async def test_incomplete_job_is_rejected(self, artifact_store, status):
        with pytest.raises(InvalidJobState):
            await artifact_store.refresh_download_url(completed_job(status=status), NOW)

    async def test_completed_job_without_url_is_rejected(self, artifact_store):
        with pytest.raises(InvalidJobState):
            await artifact_store.refresh_download_url(completed_job(download_url=None), NOW)

    async def test_expired_ephemeral_url_gets_new_token(self, ephemeral_artifact_store):
        artifact = await ephemeral_artifact_store.upload(
            b"data", "user-1/job-1.csv", "text/csv", "a.csv", now=NOW
        )
        later = NOW + timedelta(hours=25)
        job = completed_job(
            storage_mode=StorageMode.EPHEMERAL,
            download_url=artifact.url,
            download_url_expires_at=artifact.expires_at,
        )

        url, expires_at, refreshed = await ephemeral_artifact_store.refresh_download_url(job, later)

        assert refreshed is True
        assert url != artifact.url
        assert expires_at == later + timedelta(hours=24)
        token = url.rsplit("/", 1)[1]
        assert ephemeral_artifact_store.ephemeral.resolve(token, later).content == b"data"


@pytest.mark.unit
class TestDelete:
    async def test_removes_durable_object(self, artifact_store, storage_stub):
        artifact = await artifact_store.upload(b"a", "user-1/job-1.csv", "text/csv", "a.csv")
        job = completed_job(storage_path=artifact.path)

        await artifact_store.delete(job)

        assert storage_stub.objects == {}
        assert storage_stub.requests[-1].method == "DELETE"

    async def test_discards_ephemeral_blob(self, ephemeral_artifact_store):
        await ephemeral_artifact_store.upload(b"a", "user-1/job-1.csv", "text/csv", "a.csv")

        await ephemeral_artifact_store.delete(completed_job(storage_mode=StorageMode.EPHEMERAL))

        assert len(ephemeral_artifact_store.ephemeral) == 0


@pytest.mark.unit
class TestEphemeralArtifactCache:
    def test_expired_token_does_not_resolve(self):
        cache = EphemeralArtifactCache()
        cache.put("p", EphemeralArtifact(b"x", "text/csv", "x.csv"))
        token = cache.issue_token("p", NOW)

        assert cache.resolve(token, NOW - timedelta(seconds=1)) is not None
        assert cache.resolve(token, NOW) is None

    def test_unknown_token(self):
        assert EphemeralArtifactCache().resolve("nope", NOW) is None

    def test_oldest_entry_is_evicted(self):
        cache = EphemeralArtifactCache(max_entries=2)
        cache.put("a", EphemeralArtifact(b"a", "text/csv", "a.csv"))
        token = cache.issue_token("a", NOW + timedelta(hours=1))
        cache.put("b", EphemeralArtifact(b"b", "text/csv", "b.csv"))
        cache.put("c", EphemeralArtifact(b"c", "text/csv", "c.csv"))

        assert len(cache) == 2
        assert cache.resolve(token, NOW) is None

    def test_token_for_evicted_blob_cannot_be_issued(self):
        with pytest.raises(StorageFailure):
            EphemeralArtifactCache().issue_token("missing", NOW)

    def test_reissuing_drops_lapsed_tokens_of_that_blob(self):
        cache = EphemeralArtifactCache()
        cache.put("a", EphemeralArtifact(b"a", "text/csv", "a.csv"))
        cache.put("b", EphemeralArtifact(b"b", "text/csv", "b.csv"))
        first = cache.issue_token("a", NOW + timedelta(hours=1), now=NOW)
        other = cache.issue_token("b", NOW + timedelta(hours=1), now=NOW)

        later = NOW + timedelta(hours=2)
        second = cache.issue_token("a", later + timedelta(hours=1), now=later)

        assert set(cache._tokens) == {other, second}
        assert cache.resolve(second, later) is not None
        assert first not in cache._tokens
