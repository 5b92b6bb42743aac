"""Export job endpoints."""

import logging
from datetime import datetime, timezone
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Path, Query, Request, Response

from ..dependencies import ArtifactStoreDep, CoordinatorDep, OwnerDep, SettingsDep
from ..errors import ExportServiceError
from ..models.exports import (
    CreateExportRequest,
    CreateExportResponse,
    DownloadUrlResponse,
    ExportJob,
    ExportListResponse,
)
from ..models.responses import (
    DeleteResponse,
    ErrorResponse,
    error_to_http,
    unexpected_error_to_http,
)
from ..ratelimit import export_limit, limiter

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/exports", response_model=CreateExportResponse)
@limiter.limit(export_limit)
async def create_export(
    request: Request,
    export_request: CreateExportRequest,
    owner: OwnerDep,
    coordinator: CoordinatorDep,
) -> CreateExportResponse:
    """
    Generate an export synchronously.

    The job is recorded as pending, generated, uploaded and returned completed
    with a download URL valid for 24 hours. If generation fails the job is kept
    with status ``failed`` and the error is returned.
    """
    try:
        job = await coordinator.create(owner, export_request)
        return CreateExportResponse(export=job, download_url=job.download_url)

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise unexpected_error_to_http("create export", e, "internal_error") from e


@router.get("/exports", response_model=ExportListResponse)
async def list_exports(
    owner: OwnerDep,
    coordinator: CoordinatorDep,
    settings: SettingsDep,
    page: int = Query(1, ge=1, description="Page number (1-based)"),
    page_size: int | None = Query(None, ge=1, le=100, description="Results per page"),
) -> ExportListResponse:
    """List the caller's exports, newest first."""
    try:
        return await coordinator.list(
            owner, page, page_size or settings.export.default_page_size
        )

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http("list exports", e, "internal_error") from e


@router.get("/exports/artifacts/{token}")
async def download_artifact(
    artifacts: ArtifactStoreDep,
    token: str = Path(..., description="Download token from an ephemeral export URL"),
) -> Response:
    """
    Serve an artifact that is held in memory because durable storage was unavailable.

    The unguessable token is the authorization; it expires with the download URL.
    """
    artifact = artifacts.ephemeral.resolve(token, datetime.now(timezone.utc))
    if artifact is None:
        raise HTTPException(
            status_code=404,
            detail=ErrorResponse(
                error="Download link is invalid or has expired",
                error_type="not_found",
            ).model_dump(),
        )

    return Response(
        content=artifact.content,
        media_type=artifact.content_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(artifact.file_name)}"
        },
    )


@router.get("/exports/{export_id}", response_model=ExportJob)
async def get_export(
    owner: OwnerDep,
    coordinator: CoordinatorDep,
    export_id: str = Path(..., description="Export identifier"),
) -> ExportJob:
    try:
        return await coordinator.get(owner, export_id)

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http(f"get export {export_id}", e, "internal_error") from e


@router.delete("/exports/{export_id}", response_model=DeleteResponse)
async def delete_export(
    owner: OwnerDep,
    coordinator: CoordinatorDep,
    export_id: str = Path(..., description="Export identifier"),
) -> DeleteResponse:
    """Delete an export record and its stored artifact."""
    try:
        await coordinator.delete(owner, export_id)
        return DeleteResponse(message=f"Export {export_id} deleted successfully")

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http(f"delete export {export_id}", e, "internal_error") from e


@router.post("/exports/{export_id}/refresh-url", response_model=DownloadUrlResponse)
async def refresh_download_url(
    owner: OwnerDep,
    coordinator: CoordinatorDep,
    export_id: str = Path(..., description="Export identifier"),
) -> DownloadUrlResponse:
    """
    Get a working download URL for a completed export.

    The stored URL is returned while it is still valid; a new one is issued
    only after it has expired.
    """
    try:
        url, expires_at = await coordinator.refresh_download_url(owner, export_id)
        return DownloadUrlResponse(download_url=url, expires_at=expires_at)

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http(
            f"refresh download URL for export {export_id}", e, "internal_error"
        ) from e
