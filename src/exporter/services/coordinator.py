"""Export job lifecycle: pending -> processing -> completed | failed.

Generation runs inline in the caller's request. Every status change is
persisted before the next step starts, and a failed job is persisted with its
error before the error is re-raised, so the terminal record survives whatever
the caller does next.
"""

import asyncio
import logging
import math
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from ..audit import AuditSink, record_audit_event
from ..errors import (
    AuthenticationRequired,
    ExportServiceError,
    GenerationFailure,
    InvalidTransition,
    NotFound,
    StorageFailure,
)
from ..logging_config import log_with_context
from ..models.exports import (
    CreateExportRequest,
    ExportJob,
    ExportListResponse,
    ExportStatus,
)
from ..storage.artifacts import ArtifactStore
from ..storage.records import ExportStore
from .generator import ExportGenerator

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def require_owner(owner: str | None) -> str:
    if not owner or not owner.strip():
        raise AuthenticationRequired("An authenticated caller is required")
    return owner


class ExportRequestCoordinator:
    """Drives export jobs through their state machine."""

    def __init__(
        self,
        store: ExportStore,
        generator: ExportGenerator,
        artifacts: ArtifactStore,
        audit: AuditSink | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.generator = generator
        self.artifacts = artifacts
        self.audit = audit
        self.clock = clock
        # One pipeline execution per job id within this process: (lock, waiting callers)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    async def create(self, owner: str, request: CreateExportRequest) -> ExportJob:
        """Create an export job and run it to a terminal status.

        Returns:
            The completed job.

        Raises:
            AuthenticationRequired: No caller identity.
            EmptyResultSet: A sessions export matched no rows (job is failed).
            GenerationFailure: Fetching or serializing failed (job is failed).
        """
        job = await self.submit(owner, request)
        return await self.run(job.id)

    async def submit(self, owner: str, request: CreateExportRequest) -> ExportJob:
        """Record a pending export job without running it."""
        owner = require_owner(owner)
        now = self.clock()
        job = ExportJob(
            id=str(uuid.uuid4()),
            owner=owner,
            data_type=request.data_type,
            format=request.format,
            status=ExportStatus.PENDING,
            filters=request.filters,
            created_at=now,
            updated_at=now,
        )
        await self.store.add(job)
        logger.info(f"Created export {job.id} ({job.data_type}/{job.format}) for {owner}")
        await record_audit_event(
            self.audit,
            "export.created",
            owner,
            "export",
            job.id,
            data_type=job.data_type,
            format=job.format,
        )
        return job

    async def run(self, export_id: str) -> ExportJob:
        """Process a pending job. Concurrent calls for the same id are serialized."""
        lock, users = self._locks.get(export_id, (asyncio.Lock(), 0))
        self._locks[export_id] = (lock, users + 1)
        try:
            async with lock:
                job = await self.store.get(export_id)
                if job is None:
                    raise NotFound("Export", export_id)
                return await self._process(job)
        finally:
            lock, users = self._locks[export_id]
            if users <= 1:
                del self._locks[export_id]
            else:
                self._locks[export_id] = (lock, users - 1)

    async def _process(self, job: ExportJob) -> ExportJob:
        job = await self._transition(job, ExportStatus.PROCESSING)

        try:
            generated = await self.generator.generate(job.data_type, job.format, job.filters)
            artifact = await self.artifacts.upload(
                generated.content,
                self.artifacts.artifact_path(job),
                generated.content_type,
                generated.file_name,
            )
        except Exception as e:
            await self._fail(job, e)
            if isinstance(e, ExportServiceError):
                raise
            raise GenerationFailure(str(e) or type(e).__name__) from e

        completed_at = self.clock()
        try:
            job = await self._transition(
                job,
                ExportStatus.COMPLETED,
                file_name=generated.file_name,
                file_size_bytes=generated.size,
                storage_path=artifact.path,
                storage_mode=artifact.mode,
                download_url=artifact.url,
                download_url_expires_at=completed_at + timedelta(seconds=self.artifacts.url_ttl),
                completed_at=completed_at,
            )
        except Exception as e:
            await self._fail(job, e)
            stored = {"storage_path": artifact.path, "storage_mode": artifact.mode}
            await self._discard_artifact(job.model_copy(update=stored))
            raise GenerationFailure(
                f"Failed to record completed export: {e}", {"export_id": job.id}
            ) from e

        log_with_context(
            logger,
            logging.INFO,
            f"Export {job.id} completed",
            export_id=job.id,
            data_type=job.data_type,
            row_count=generated.row_count,
            file_size_bytes=generated.size,
            storage_mode=artifact.mode.value,
        )
        return job

    async def _transition(self, job: ExportJob, target: ExportStatus, **fields: Any) -> ExportJob:
        if not job.status.can_transition_to(target):
            raise InvalidTransition(
                f"Export {job.id} cannot move from {job.status.value} to {target.value}"
            )
        updated = job.model_copy(update={"status": target, "updated_at": self.clock(), **fields})
        await self.store.save(updated)
        logger.debug(f"Export {job.id}: {job.status.value} -> {target.value}")
        return updated

    async def _fail(self, job: ExportJob, error: Exception) -> ExportJob:
        details: dict[str, Any] = {"error": str(error), "type": type(error).__name__}
        if isinstance(error, ExportServiceError):
            details.update(error.details)

        failed = await self._transition(
            job,
            ExportStatus.FAILED,
            error_message=str(error) or "Unknown error",
            error_details=details,
        )
        logger.error(f"Export {job.id} failed: {error}")
        await record_audit_event(
            self.audit, "export.failed", job.owner, "export", job.id, error=str(error)
        )
        return failed

    async def _discard_artifact(self, job: ExportJob) -> None:
        """Best-effort artifact removal."""
        try:
            await self.artifacts.delete(job)
        except StorageFailure as e:
            logger.warning(f"Could not remove artifact for export {job.id}: {e}")

    async def get(self, owner: str, export_id: str) -> ExportJob:
        owner = require_owner(owner)
        job = await self.store.get(export_id)
        if job is None or job.owner != owner:
            raise NotFound("Export", export_id)
        return job

    async def list(self, owner: str, page: int = 1, page_size: int = 20) -> ExportListResponse:
        owner = require_owner(owner)
        page = max(page, 1)
        page_size = max(page_size, 1)
        jobs, total = await self.store.list(owner, (page - 1) * page_size, page_size)
        return ExportListResponse(
            exports=jobs,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        )

    async def delete(self, owner: str, export_id: str) -> None:
        job = await self.get(owner, export_id)
        await self.store.delete(job)
        await self._discard_artifact(job)

        logger.info(f"Deleted export {export_id}")
        await record_audit_event(self.audit, "export.deleted", owner, "export", export_id)

    async def refresh_download_url(
        self, owner: str, export_id: str
    ) -> tuple[str, datetime | None]:
        """Return the export's download URL, minting a new one only if it expired."""
        job = await self.get(owner, export_id)
        url, expires_at, refreshed = await self.artifacts.refresh_download_url(job, self.clock())

        if refreshed:
            job = job.model_copy(
                update={
                    "download_url": url,
                    "download_url_expires_at": expires_at,
                    "updated_at": self.clock(),
                }
            )
            await self.store.save(job)
            logger.info(f"Refreshed download URL for export {export_id}")
            await record_audit_event(
                self.audit, "export.url_refreshed", owner, "export", export_id
            )

        return url, expires_at
