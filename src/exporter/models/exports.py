"""Pydantic models for export jobs."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ExportStatus(str, Enum):
    """Export job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportStatus.COMPLETED, ExportStatus.FAILED)

    def can_transition_to(self, target: "ExportStatus") -> bool:
        """Statuses only move forward: pending -> processing -> completed | failed."""
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[ExportStatus, frozenset[ExportStatus]] = {
    ExportStatus.PENDING: frozenset({ExportStatus.PROCESSING}),
    ExportStatus.PROCESSING: frozenset({ExportStatus.COMPLETED, ExportStatus.FAILED}),
    ExportStatus.COMPLETED: frozenset(),
    ExportStatus.FAILED: frozenset(),
}


class StorageMode(str, Enum):
    """Where a completed export's artifact lives."""

    PERSISTENT = "persistent"
    EPHEMERAL = "ephemeral"


ExportDataType = Literal["sessions", "agents", "all"]
ExportFormat = Literal["csv", "json"]


class ExportFilters(BaseModel):
    """Filters applied to the exported dataset. Unknown keys are preserved."""

    model_config = ConfigDict(extra="allow")

    agent_ids: list[str] | None = Field(None, description="Restrict to these agents")
    agent_id: str | None = Field(None, description="Restrict to a single agent")
    status: Literal["in-progress", "completed", "abandoned", "all"] | None = Field(
        None, description="Session status filter"
    )
    date_from: str | None = Field(None, description="Inclusive lower bound (ISO 8601)")
    date_to: str | None = Field(None, description="Inclusive upper bound (ISO 8601)")
    search: str | None = Field(None, description="Free text search")


class ExportJob(BaseModel):
    """Persisted export job record."""

    id: str = Field(..., description="Unique export identifier")
    owner: str = Field(..., description="Identity of the user who requested the export")
    data_type: ExportDataType = Field(..., description="Dataset to export")
    format: ExportFormat = Field(..., description="Output file format")
    status: ExportStatus = Field(ExportStatus.PENDING, description="Current job status")
    filters: ExportFilters = Field(default_factory=ExportFilters)
    file_name: str | None = Field(None, description="Generated file name")
    file_size_bytes: int | None = Field(None, description="Generated file size in bytes")
    storage_path: str | None = Field(None, description="Object path of the stored artifact")
    storage_mode: StorageMode | None = Field(
        None, description="Whether the artifact is durable or held in process memory"
    )
    download_url: str | None = Field(None, description="Time-limited download URL")
    download_url_expires_at: datetime | None = Field(None, description="Download URL expiry")
    error_message: str | None = Field(None, description="Error message if the job failed")
    error_details: dict[str, Any] | None = Field(None, description="Raw error payload")
    created_at: datetime = Field(..., description="Job creation timestamp")
    updated_at: datetime = Field(..., description="Last modification timestamp")
    completed_at: datetime | None = Field(None, description="Job completion timestamp")


class CreateExportRequest(BaseModel):
    """Request model for creating an export."""

    data_type: ExportDataType = Field(..., description="Dataset to export")
    format: ExportFormat = Field(..., description="Output file format")
    filters: ExportFilters = Field(default_factory=ExportFilters)


class CreateExportResponse(BaseModel):
    """Response model for a created export."""

    export: ExportJob
    download_url: str | None = None


class ExportListResponse(BaseModel):
    """Response model for listing exports."""

    exports: list[ExportJob] = Field(..., description="Exports on this page, newest first")
    total: int = Field(..., description="Total number of exports")
    page: int = Field(..., description="Current page (1-based)")
    page_size: int = Field(..., description="Maximum results per page")
    total_pages: int = Field(..., description="Number of pages")


class DownloadUrlResponse(BaseModel):
    """Response model for a refreshed download URL."""

    download_url: str
    expires_at: datetime | None = None


class GeneratedExport(BaseModel):
    """Serialized export produced by the generator."""

    content: bytes
    file_name: str
    content_type: str
    row_count: int

    @property
    def size(self) -> int:
        return len(self.content)
