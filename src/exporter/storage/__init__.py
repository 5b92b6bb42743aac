"""Persistence for export records and generated artifacts."""

from .artifacts import ArtifactStore, EphemeralArtifactCache, StoredArtifact
from .object_storage import ObjectStorageClient
from .records import (
    MemoryExportStore,
    MemoryScheduleStore,
    RedisExportStore,
    RedisScheduleStore,
    connect_redis,
)

__all__ = [
    "ArtifactStore",
    "EphemeralArtifactCache",
    "MemoryExportStore",
    "MemoryScheduleStore",
    "ObjectStorageClient",
    "RedisExportStore",
    "RedisScheduleStore",
    "StoredArtifact",
    "connect_redis",
]
