"""CRUD for recurring export schedules.

Schedules are only stored and their next trigger instant maintained here;
firing them is left to an external trigger (or a manual run through the API).
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from ..audit import AuditSink, record_audit_event
from ..errors import NotFound, ScheduleConflict
from ..models.schedule import (
    ExportSchedule,
    ScheduleCreate,
    ScheduleListResponse,
    ScheduleRunStatus,
    ScheduleUpdate,
)
from ..services.coordinator import require_owner
from ..storage.records import ScheduleStore
from .next_run import next_run

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleManager:
    """Owner-scoped schedule operations on top of a ScheduleStore.

    A schedule that belongs to another owner is reported as not found.
    """

    def __init__(
        self,
        store: ScheduleStore,
        audit: AuditSink | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.audit = audit
        self.clock = clock

    async def create(
        self, owner: str, request: ScheduleCreate, now: datetime | None = None
    ) -> ExportSchedule:
        owner = require_owner(owner)
        now = now or self.clock()

        schedule = ExportSchedule(
            **request.model_dump(),
            id=str(uuid.uuid4()),
            owner=owner,
            next_run_at=next_run(request.frequency, request.frequency_config, now),
            created_at=now,
            updated_at=now,
        )
        await self.store.add(schedule)

        logger.info(
            f"Created schedule {schedule.id} ({schedule.frequency}) for {owner}, "
            f"next run at {schedule.next_run_at.isoformat()}"
        )
        await record_audit_event(
            self.audit,
            "schedule.created",
            owner,
            "schedule",
            schedule.id,
            frequency=schedule.frequency,
        )
        return schedule

    async def list(self, owner: str) -> ScheduleListResponse:
        owner = require_owner(owner)
        schedules = await self.store.list(owner)
        return ScheduleListResponse(schedules=schedules, total=len(schedules))

    async def get(self, owner: str, schedule_id: str) -> ExportSchedule:
        owner = require_owner(owner)
        schedule = await self.store.get(schedule_id)
        if schedule is None or schedule.owner != owner:
            raise NotFound("Schedule", schedule_id)
        return schedule

    async def update(
        self,
        owner: str,
        schedule_id: str,
        patch: ScheduleUpdate,
        now: datetime | None = None,
    ) -> ExportSchedule:
        """Apply a partial update.

        ``next_run_at`` is recomputed from the merged recurrence only when the
        patch touches ``frequency`` or ``frequency_config``.

        Raises:
            NotFound: The schedule does not exist or belongs to another owner.
            ScheduleConflict: ``expected_version`` does not match the stored record.
        """
        owner = require_owner(owner)
        now = now or self.clock()
        changes = patch.changes()

        def apply(current: ExportSchedule) -> ExportSchedule:
            if current.owner != owner:
                raise NotFound("Schedule", schedule_id)
            if patch.expected_version is not None and patch.expected_version != current.version:
                raise ScheduleConflict(
                    f"Schedule {schedule_id} is at version {current.version}, "
                    f"expected {patch.expected_version}",
                    details={
                        "current_version": current.version,
                        "expected_version": patch.expected_version,
                    },
                )

            merged = current.model_copy(update=changes)
            fields = {"version": current.version + 1, "updated_at": now}
            if patch.touches_recurrence:
                fields["next_run_at"] = next_run(merged.frequency, merged.frequency_config, now)
            return merged.model_copy(update=fields)

        updated = await self.store.update(schedule_id, apply)
        if updated is None:
            raise NotFound("Schedule", schedule_id)

        logger.info(f"Updated schedule {schedule_id} ({', '.join(sorted(changes)) or 'no fields'})")
        await record_audit_event(
            self.audit,
            "schedule.updated",
            owner,
            "schedule",
            schedule_id,
            fields=sorted(changes),
            version=updated.version,
        )
        return updated

    async def toggle_enabled(self, owner: str, schedule_id: str, enabled: bool) -> ExportSchedule:
        return await self.update(owner, schedule_id, ScheduleUpdate(enabled=enabled))

    async def delete(self, owner: str, schedule_id: str) -> None:
        schedule = await self.get(owner, schedule_id)
        await self.store.delete(schedule)
        logger.info(f"Deleted schedule {schedule_id}")
        await record_audit_event(self.audit, "schedule.deleted", owner, "schedule", schedule_id)

    async def record_run(
        self,
        owner: str,
        schedule_id: str,
        status: ScheduleRunStatus,
        now: datetime | None = None,
    ) -> ExportSchedule:
        """Record the outcome of a run and advance the schedule to its next trigger."""
        owner = require_owner(owner)
        now = now or self.clock()

        def apply(current: ExportSchedule) -> ExportSchedule:
            if current.owner != owner:
                raise NotFound("Schedule", schedule_id)
            return current.model_copy(
                update={
                    "last_run_at": now,
                    "last_run_status": status,
                    "run_count": current.run_count + 1,
                    "failure_count": current.failure_count + (1 if status == "failed" else 0),
                    "next_run_at": next_run(current.frequency, current.frequency_config, now),
                    "version": current.version + 1,
                    "updated_at": now,
                }
            )

        updated = await self.store.update(schedule_id, apply)
        if updated is None:
            raise NotFound("Schedule", schedule_id)

        logger.info(f"Schedule {schedule_id} run recorded: {status} (run #{updated.run_count})")
        await record_audit_event(
            self.audit, "schedule.run", owner, "schedule", schedule_id, status=status
        )
        return updated
