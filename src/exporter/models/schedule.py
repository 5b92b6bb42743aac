"""Pydantic models for export schedule CRUD operations."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .exports import ExportDataType, ExportFilters, ExportFormat

Frequency = Literal["daily", "weekly", "monthly", "custom"]
DeliveryMethod = Literal["download", "webhook", "both"]
WebhookAuthType = Literal["none", "bearer", "basic", "custom"]
ScheduleRunStatus = Literal["success", "failed", "skipped"]

_NULLABLE_FIELDS = frozenset({"description", "webhook_url", "webhook_auth_type"})


class FrequencyConfig(BaseModel):
    """Parameters controlling when a recurring schedule next fires.

    Ranges are not validated here; out-of-range values are handled by the
    next-run calculation itself.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    hour: int | None = Field(None, description="Hour of day (UTC)")
    minute: int | None = Field(None, description="Minute of hour")
    day_of_week: int | None = Field(
        None, alias="dayOfWeek", description="Day of week, 0=Sunday (weekly)"
    )
    day_of_month: int | None = Field(
        None, alias="dayOfMonth", description="Day of month (monthly)"
    )


class DeliveryRetryPolicy(BaseModel):
    """Retry settings handed to the external webhook delivery collaborator."""

    max_retries: int = Field(3, ge=0, le=10, description="Retries after the first attempt")
    backoff_type: Literal["exponential", "linear"] = Field(
        "exponential", description="How the delay grows between attempts"
    )
    initial_delay_ms: int = Field(1000, ge=0, description="Delay before the first retry")
    rate_limit_per_minute: int | None = Field(
        None, ge=1, description="Ceiling on deliveries per minute"
    )

    def delay_for_attempt(self, attempt: int) -> int:
        """Delay in milliseconds before retry ``attempt`` (1-based)."""
        attempt = max(attempt, 1)
        if self.backoff_type == "exponential":
            return self.initial_delay_ms * 2 ** (attempt - 1)
        return self.initial_delay_ms * attempt


class ScheduleBase(BaseModel):
    """Fields shared by schedule requests and records."""

    name: str = Field(..., min_length=1, max_length=100, description="Schedule name")
    description: str | None = Field(None, max_length=500, description="Optional description")
    data_type: ExportDataType = Field(..., description="Dataset to export")
    format: ExportFormat = Field(..., description="Output file format")
    filters: ExportFilters = Field(default_factory=ExportFilters)
    frequency: Frequency = Field(..., description="Recurrence policy")
    frequency_config: FrequencyConfig = Field(default_factory=FrequencyConfig)
    delivery_method: DeliveryMethod = Field("download", description="How results are delivered")
    webhook_url: str | None = Field(None, description="Webhook target for delivery")
    webhook_headers: dict[str, str] = Field(default_factory=dict)
    webhook_auth_type: WebhookAuthType | None = Field(None)
    webhook_auth_config: dict[str, Any] = Field(default_factory=dict)
    retry_policy: DeliveryRetryPolicy = Field(default_factory=DeliveryRetryPolicy)


class ScheduleCreate(ScheduleBase):
    """Request model for creating an export schedule."""

    enabled: bool = Field(True, description="Whether the schedule is active")


class ScheduleUpdate(BaseModel):
    """Partial update for an export schedule. Only fields that are set are applied."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    enabled: bool | None = None
    data_type: ExportDataType | None = None
    format: ExportFormat | None = None
    filters: ExportFilters | None = None
    frequency: Frequency | None = None
    frequency_config: FrequencyConfig | None = None
    delivery_method: DeliveryMethod | None = None
    webhook_url: str | None = None
    webhook_headers: dict[str, str] | None = None
    webhook_auth_type: WebhookAuthType | None = None
    webhook_auth_config: dict[str, Any] | None = None
    retry_policy: DeliveryRetryPolicy | None = None
    expected_version: int | None = Field(
        None, ge=1, description="Reject the update if the stored version differs"
    )

    def changes(self) -> dict[str, Any]:
        """Fields explicitly set by the caller, excluding the version check.

        An explicit null only clears fields that are nullable on the record.
        """
        changed = {}
        for name in self.model_fields_set - {"expected_version"}:
            value = getattr(self, name)
            if value is not None or name in _NULLABLE_FIELDS:
                changed[name] = value
        return changed

    @property
    def touches_recurrence(self) -> bool:
        changed = self.changes()
        return "frequency" in changed or "frequency_config" in changed


class ExportSchedule(ScheduleBase):
    """Persisted export schedule record."""

    id: str = Field(..., description="Unique schedule identifier")
    owner: str = Field(..., description="Identity of the schedule owner")
    enabled: bool = Field(..., description="Whether the schedule is active")
    next_run_at: datetime = Field(..., description="Next trigger instant (UTC)")
    last_run_at: datetime | None = Field(None)
    last_run_status: ScheduleRunStatus | None = Field(None)
    run_count: int = Field(0, ge=0)
    failure_count: int = Field(0, ge=0)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)
    version: int = Field(1, ge=1, description="Incremented on every update")


class ScheduleToggle(BaseModel):
    """Request model for enabling or disabling a schedule."""

    enabled: bool


class ScheduleListResponse(BaseModel):
    """Response model for listing schedules."""

    schedules: list[ExportSchedule] = Field(..., description="Schedules, newest first")
    total: int = Field(..., description="Total number of schedules")


class ScheduleRunResponse(BaseModel):
    """Response model for a manually triggered schedule run."""

    schedule: ExportSchedule
    export_id: str
    status: ScheduleRunStatus
    download_url: str | None = None
    error: str | None = None
