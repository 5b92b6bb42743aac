"""Artifact storage for generated exports.

Durable object storage is attempted first. When it is unavailable or the upload
fails, the blob is kept in process memory and served by this service under
``/exports/artifacts/{token}``; the job still completes, but the result is
tagged ``ephemeral`` so callers can tell the artifact will not survive a
restart and is only reachable through this process.
"""

import logging
import secrets
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ..errors import InvalidJobState, StorageFailure
from ..models.exports import ExportJob, ExportStatus, StorageMode
from .object_storage import ObjectStorageClient

logger = logging.getLogger(__name__)

ARTIFACT_ROUTE = "/exports/artifacts"


@dataclass
class StoredArtifact:
    """Where an uploaded artifact can be downloaded from, and until when."""

    path: str
    url: str
    expires_at: datetime
    mode: StorageMode


@dataclass
class EphemeralArtifact:
    content: bytes
    content_type: str
    file_name: str


class EphemeralArtifactCache:
    """Bounded in-memory blob cache addressed by unguessable, expiring tokens.

    Blobs are keyed by storage path and evicted oldest-first once
    ``max_entries`` is exceeded. Each issued token carries its own expiry, so a
    blob can be re-issued under a fresh token after the old one lapses.
    """

    def __init__(self, max_entries: int = 100):
        self.max_entries = max_entries
        self._artifacts: OrderedDict[str, EphemeralArtifact] = OrderedDict()
        self._tokens: dict[str, tuple[str, datetime]] = {}

    def put(self, path: str, artifact: EphemeralArtifact) -> None:
        self._artifacts[path] = artifact
        self._artifacts.move_to_end(path)
        while len(self._artifacts) > self.max_entries:
            evicted, _ = self._artifacts.popitem(last=False)
            self._drop_tokens(evicted)
            logger.debug(f"Evicted ephemeral artifact {evicted}")

    def issue_token(self, path: str, expires_at: datetime, now: datetime | None = None) -> str:
        """Issue a token for a cached blob, dropping that blob's lapsed tokens."""
        if path not in self._artifacts:
            raise StorageFailure(f"Ephemeral artifact {path} is no longer available")
        now = now or datetime.now(timezone.utc)
        lapsed = [t for t, (p, exp) in self._tokens.items() if p == path and exp <= now]
        for token in lapsed:
            del self._tokens[token]
        token = secrets.token_urlsafe(32)
        self._tokens[token] = (path, expires_at)
        return token

    def resolve(self, token: str, now: datetime | None = None) -> EphemeralArtifact | None:
        """Return the artifact for a live token, or None if unknown or expired."""
        entry = self._tokens.get(token)
        if entry is None:
            return None
        path, expires_at = entry
        if expires_at <= (now or datetime.now(timezone.utc)):
            del self._tokens[token]
            return None
        return self._artifacts.get(path)

    def discard(self, path: str) -> None:
        self._artifacts.pop(path, None)
        self._drop_tokens(path)

    def _drop_tokens(self, path: str) -> None:
        for token in [t for t, (p, _) in self._tokens.items() if p == path]:
            del self._tokens[token]

    def __len__(self) -> int:
        return len(self._artifacts)


class ArtifactStore:
    """Stores export blobs and issues time-limited download URLs."""

    def __init__(
        self,
        object_storage: ObjectStorageClient | None,
        bucket: str,
        public_base_url: str,
        url_ttl: int = 24 * 60 * 60,
        ephemeral: EphemeralArtifactCache | None = None,
    ):
        """
        Args:
            object_storage: Durable storage client, or None to always use the fallback
            bucket: Bucket holding export artifacts
            public_base_url: Base URL of this service, used for ephemeral links
            url_ttl: Lifetime of issued URLs in seconds
            ephemeral: Fallback cache (a fresh one is created if omitted)
        """
        self.object_storage = object_storage
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self.url_ttl = url_ttl
        self.ephemeral = ephemeral if ephemeral is not None else EphemeralArtifactCache()

    @staticmethod
    def artifact_path(job: ExportJob) -> str:
        return f"{job.owner}/{job.id}.{job.format}"

    async def upload(
        self,
        content: bytes,
        path: str,
        content_type: str,
        file_name: str,
        now: datetime | None = None,
    ) -> StoredArtifact:
        """Persist a blob and return a download URL for it.

        Never fails because of the durable backend: upload errors degrade to an
        ephemeral artifact. Signing errors after a successful upload propagate.
        """
        now = now or datetime.now(timezone.utc)

        if self.object_storage is None:
            logger.warning(f"Object storage not configured, keeping {path} in memory")
            return self._store_ephemeral(content, path, content_type, file_name, now)

        try:
            await self.object_storage.upload(self.bucket, path, content, content_type)
        except StorageFailure as e:
            logger.warning(f"Durable upload of {path} failed ({e}), falling back to ephemeral URL")
            return self._store_ephemeral(content, path, content_type, file_name, now)

        url, expires_at = await self.create_signed_url(path, now=now)
        return StoredArtifact(
            path=path, url=url, expires_at=expires_at, mode=StorageMode.PERSISTENT
        )

    async def create_signed_url(
        self, path: str, ttl: int | None = None, now: datetime | None = None
    ) -> tuple[str, datetime]:
        """Issue a signed URL for a durably stored artifact."""
        if self.object_storage is None:
            raise StorageFailure("Object storage is not configured")
        ttl = ttl or self.url_ttl
        now = now or datetime.now(timezone.utc)
        url = await self.object_storage.create_signed_url(self.bucket, path, ttl)
        return url, now + timedelta(seconds=ttl)

    async def refresh_download_url(
        self, job: ExportJob, now: datetime | None = None
    ) -> tuple[str, datetime | None, bool]:
        """Return a usable download URL for a completed export.

        A URL that has not yet expired is returned unchanged; otherwise a new
        one is minted.

        Returns:
            (url, expires_at, refreshed) where ``refreshed`` tells whether a new
            URL was issued and must be persisted.
        """
        if job.status != ExportStatus.COMPLETED or not job.download_url:
            raise InvalidJobState("Export is not completed or has no download URL")

        now = now or datetime.now(timezone.utc)
        expires_at = job.download_url_expires_at
        if expires_at and expires_at > now:
            return job.download_url, expires_at, False

        path = job.storage_path or self.artifact_path(job)
        if job.storage_mode == StorageMode.EPHEMERAL:
            new_expiry = now + timedelta(seconds=self.url_ttl)
            token = self.ephemeral.issue_token(path, new_expiry, now)
            return self._ephemeral_url(token), new_expiry, True

        url, new_expiry = await self.create_signed_url(path, now=now)
        return url, new_expiry, True

    async def delete(self, job: ExportJob) -> None:
        """Remove a job's artifact, wherever it lives."""
        path = job.storage_path or self.artifact_path(job)
        if job.storage_mode == StorageMode.EPHEMERAL:
            self.ephemeral.discard(path)
        elif job.storage_mode == StorageMode.PERSISTENT and self.object_storage is not None:
            await self.object_storage.remove(self.bucket, path)

    def _store_ephemeral(
        self,
        content: bytes,
        path: str,
        content_type: str,
        file_name: str,
        now: datetime,
    ) -> StoredArtifact:
        self.ephemeral.put(path, EphemeralArtifact(content, content_type, file_name))
        expires_at = now + timedelta(seconds=self.url_ttl)
        token = self.ephemeral.issue_token(path, expires_at, now)
        return StoredArtifact(
            path=path,
            url=self._ephemeral_url(token),
            expires_at=expires_at,
            mode=StorageMode.EPHEMERAL,
        )

    def _ephemeral_url(self, token: str) -> str:
        return f"{self.public_base_url}{ARTIFACT_ROUTE}/{token}"
