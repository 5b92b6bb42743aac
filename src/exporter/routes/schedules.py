"""Schedule management endpoints for recurring exports."""

import logging

from fastapi import APIRouter, Path, Request

from ..dependencies import CoordinatorDep, OwnerDep, ScheduleManagerDep
from ..errors import ExportServiceError
from ..models.exports import CreateExportRequest
from ..models.responses import DeleteResponse, error_to_http, unexpected_error_to_http
from ..models.schedule import (
    ExportSchedule,
    ScheduleCreate,
    ScheduleListResponse,
    ScheduleRunResponse,
    ScheduleToggle,
    ScheduleUpdate,
)
from ..ratelimit import export_limit, limiter

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/schedules", response_model=ExportSchedule)
async def create_schedule(
    schedule_data: ScheduleCreate,
    owner: OwnerDep,
    manager: ScheduleManagerDep,
) -> ExportSchedule:
    """
    Create a recurring export schedule.

    Frequencies:
    - daily: every day at ``frequency_config.hour``:``minute``
    - weekly: on ``dayOfWeek`` (0=Sunday) at hour:minute
    - monthly: on ``dayOfMonth`` (default 1) at hour:minute
    - custom: one day after the last computation
    """
    try:
        return await manager.create(owner, schedule_data)

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http("create schedule", e, "schedule_error") from e


@router.get("/schedules", response_model=ScheduleListResponse)
async def list_schedules(owner: OwnerDep, manager: ScheduleManagerDep) -> ScheduleListResponse:
    """List the caller's schedules, newest first."""
    try:
        return await manager.list(owner)

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http("list schedules", e, "schedule_error") from e


@router.get("/schedules/{schedule_id}", response_model=ExportSchedule)
async def get_schedule(
    owner: OwnerDep,
    manager: ScheduleManagerDep,
    schedule_id: str = Path(..., description="Schedule identifier"),
) -> ExportSchedule:
    try:
        return await manager.get(owner, schedule_id)

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http(f"get schedule {schedule_id}", e, "schedule_error") from e


@router.patch("/schedules/{schedule_id}", response_model=ExportSchedule)
async def update_schedule(
    patch: ScheduleUpdate,
    owner: OwnerDep,
    manager: ScheduleManagerDep,
    schedule_id: str = Path(..., description="Schedule identifier"),
) -> ExportSchedule:
    """
    Partially update a schedule.

    ``next_run_at`` is recomputed only when ``frequency`` or
    ``frequency_config`` changes. Send ``expected_version`` to reject the
    update (409) if someone else modified the schedule first.
    """
    try:
        return await manager.update(owner, schedule_id, patch)

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http(f"update schedule {schedule_id}", e, "schedule_error") from e


@router.post("/schedules/{schedule_id}/toggle", response_model=ExportSchedule)
async def toggle_schedule(
    toggle: ScheduleToggle,
    owner: OwnerDep,
    manager: ScheduleManagerDep,
    schedule_id: str = Path(..., description="Schedule identifier"),
) -> ExportSchedule:
    try:
        return await manager.toggle_enabled(owner, schedule_id, toggle.enabled)

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http(f"toggle schedule {schedule_id}", e, "schedule_error") from e


@router.delete("/schedules/{schedule_id}", response_model=DeleteResponse)
async def delete_schedule(
    owner: OwnerDep,
    manager: ScheduleManagerDep,
    schedule_id: str = Path(..., description="Schedule identifier"),
) -> DeleteResponse:
    try:
        await manager.delete(owner, schedule_id)
        return DeleteResponse(message=f"Schedule {schedule_id} deleted successfully")

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http(f"delete schedule {schedule_id}", e, "schedule_error") from e


@router.post("/schedules/{schedule_id}/run", response_model=ScheduleRunResponse)
@limiter.limit(export_limit)
async def run_schedule(
    request: Request,
    owner: OwnerDep,
    manager: ScheduleManagerDep,
    coordinator: CoordinatorDep,
    schedule_id: str = Path(..., description="Schedule identifier"),
) -> ScheduleRunResponse:
    """
    Run a schedule's export now.

    The export outcome is recorded on the schedule (run and failure counters,
    last run status) and the schedule advances to its next trigger. A failed
    export is reported in the response body rather than as an HTTP error.
    """
    try:
        schedule = await manager.get(owner, schedule_id)
        job = await coordinator.submit(
            owner,
            CreateExportRequest(
                data_type=schedule.data_type,
                format=schedule.format,
                filters=schedule.filters,
            ),
        )

        error = None
        try:
            job = await coordinator.run(job.id)
        except ExportServiceError as e:
            logger.warning(f"Manual run of schedule {schedule_id} failed: {e}")
            error = e.message
        except Exception as e:
            logger.exception(f"Manual run of schedule {schedule_id} failed unexpectedly: {e}")
            error = str(e) or type(e).__name__

        status = "failed" if error else "success"
        schedule = await manager.record_run(owner, schedule_id, status)
        return ScheduleRunResponse(
            schedule=schedule,
            export_id=job.id,
            status=status,
            download_url=job.download_url,
            error=error,
        )

    except ExportServiceError as e:
        raise error_to_http(e) from e
    except Exception as e:
        raise unexpected_error_to_http(f"run schedule {schedule_id}", e, "schedule_error") from e
