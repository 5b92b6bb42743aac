"""Audit trail for export and schedule actions.

Appending is fire-and-forget: a failing sink is logged and never fails the
action being audited.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel, Field

from .logging_config import log_with_context

logger = logging.getLogger(__name__)


class AuditEvent(BaseModel):
    """A single audit trail entry."""

    action: str = Field(..., description="e.g. export.created, schedule.updated")
    owner: str = Field(..., description="Caller that performed the action")
    resource_type: str = Field(..., description="export or schedule")
    resource_id: str = Field(..., description="Identifier of the affected record")
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    async def append(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Writes audit events to a dedicated logger as structured records."""

    def __init__(self, logger_name: str = "exporter.audit"):
        self._logger = logging.getLogger(logger_name)

    async def append(self, event: AuditEvent) -> None:
        log_with_context(
            self._logger,
            logging.INFO,
            f"{event.action} {event.resource_type}={event.resource_id}",
            **event.model_dump(mode="json", exclude={"action"}),
            audit_action=event.action,
        )


async def record_audit_event(
    sink: AuditSink | None,
    action: str,
    owner: str,
    resource_type: str,
    resource_id: str,
    **metadata: Any,
) -> None:
    """Append an audit event, swallowing sink failures."""
    if sink is None:
        return
    event = AuditEvent(
        action=action,
        owner=owner,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata,
    )
    try:
        await sink.append(event)
    except Exception as e:
        logger.warning(f"Failed to append audit event {action} for {resource_id}: {e}")
