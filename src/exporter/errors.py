"""Exception hierarchy for the export service."""

from typing import Any


class ExportServiceError(Exception):
    """Base exception for export service errors."""

    error_type = "export_service_error"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthenticationRequired(ExportServiceError):
    """No authenticated caller identity was supplied."""

    error_type = "authentication_required"
    status_code = 401


class NotFound(ExportServiceError):
    """Record is absent or not owned by the caller."""

    error_type = "not_found"
    status_code = 404

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class EmptyResultSet(ExportServiceError):
    """Export filters matched zero rows."""

    error_type = "empty_result_set"
    status_code = 422


class GenerationFailure(ExportServiceError):
    """Fetching or serializing export data failed."""

    error_type = "generation_failed"


class StorageFailure(ExportServiceError):
    """Durable artifact upload or URL signing failed."""

    error_type = "storage_failed"


class InvalidTransition(ExportServiceError):
    """An export job was asked to move to a status it cannot reach."""

    error_type = "invalid_transition"


class InvalidJobState(ExportServiceError):
    """Operation is not allowed in the job's current status."""

    error_type = "invalid_job_state"
    status_code = 409


class ScheduleConflict(ExportServiceError):
    """Schedule was modified since the version the caller read."""

    error_type = "schedule_conflict"
    status_code = 409
