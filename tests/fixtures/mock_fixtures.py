"""Fakes and mock fixtures for the service's collaborators."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.exporter.scheduling import ScheduleManager
from src.exporter.services import ExportGenerator, ExportRequestCoordinator
from src.exporter.storage import (
    ArtifactStore,
    EphemeralArtifactCache,
    MemoryExportStore,
    MemoryScheduleStore,
    ObjectStorageClient,
)

STORAGE_URL = "http://storage.test"
PUBLIC_URL = "http://testserver"
START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class MutableClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeSessionSource:
    def __init__(self, sessions=None, error: Exception | None = None):
        self.sessions = sessions or []
        self.error = error
        self.calls = []

    async def get_all(self, filters, page=1, page_size=20):
        self.calls.append({"filters": filters, "page": page, "page_size": page_size})
        if self.error:
            raise self.error
        return {"sessions": list(self.sessions), "total": len(self.sessions)}


class FakeAgentSource:
    def __init__(self, agents=None, error: Exception | None = None):
        self.agents = agents or []
        self.error = error
        self.calls = []

    async def get_all(self, status="all"):
        self.calls.append({"status": status})
        if self.error:
            raise self.error
        return {"agents": list(self.agents)}


class RecordingAuditSink:
    def __init__(self):
        self.events = []

    async def append(self, event):
        self.events.append(event)

    @property
    def actions(self):
        return [event.action for event in self.events]


class StorageStub:
    """MockTransport handler speaking the object storage REST API.

    Uploaded objects are kept in ``objects``; every signed URL carries a new
    sequence number so refreshed URLs differ from the original.
    """

    def __init__(self, fail_uploads: bool = False, fail_signing: bool = False):
        self.fail_uploads = fail_uploads
        self.fail_signing = fail_signing
        self.objects: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.signed = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/storage/v1/object/")

        if request.method == "POST" and path.startswith("sign/"):
            if self.fail_signing:
                return httpx.Response(500, json={"error": "signing unavailable"})
            self.signed += 1
            object_path = path.removeprefix("sign/")
            return httpx.Response(
                200, json={"signedURL": f"/object/sign/{object_path}?token=t{self.signed}"}
            )

        if request.method == "POST":
            if self.fail_uploads:
                return httpx.Response(503, json={"error": "storage unavailable"})
            self.objects[path] = request.content
            return httpx.Response(200, json={"Key": path})

        if request.method == "DELETE":
            bucket = path
            for prefix in json.loads(request.content)["prefixes"]:
                self.objects.pop(f"{bucket}/{prefix}", None)
            return httpx.Response(200, json=[])

        return httpx.Response(405)

    def client(self) -> ObjectStorageClient:
        return ObjectStorageClient(
            STORAGE_URL,
            service_key="service-key",
            client=httpx.AsyncClient(transport=httpx.MockTransport(self)),
        )


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def session_source(sample_sessions):
    return FakeSessionSource(sample_sessions)


@pytest.fixture
def agent_source(sample_agents):
    return FakeAgentSource(sample_agents)


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def storage_stub():
    return StorageStub()


@pytest.fixture
def artifact_store(storage_stub):
    """Artifact store backed by the stubbed object storage."""
    return ArtifactStore(
        storage_stub.client(),
        bucket="exports",
        public_base_url=PUBLIC_URL,
        ephemeral=EphemeralArtifactCache(max_entries=10),
    )


@pytest.fixture
def ephemeral_artifact_store():
    """Artifact store with no durable backend."""
    return ArtifactStore(None, bucket="exports", public_base_url=PUBLIC_URL)


@pytest.fixture
def export_store():
    return MemoryExportStore()


@pytest.fixture
def coordinator(export_store, session_source, agent_source, artifact_store, audit_sink, clock):
    return ExportRequestCoordinator(
        export_store,
        ExportGenerator(session_source, agent_source),
        artifact_store,
        audit=audit_sink,
        clock=clock,
    )


@pytest.fixture
def schedule_store():
    return MemoryScheduleStore()


@pytest.fixture
def schedule_manager(schedule_store, audit_sink, clock):
    return ScheduleManager(schedule_store, audit=audit_sink, clock=clock)


@pytest.fixture
def mock_redis_client():
    """Fixture to mock the Redis client; pipelines are set per test."""
    mock_client = AsyncMock()
    mock_client.pipeline = MagicMock()
    return mock_client
