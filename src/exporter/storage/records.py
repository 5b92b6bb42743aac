"""Record stores for export jobs and export schedules.

Redis is the production backend. Records are stored as JSON and indexed per
owner in sorted sets scored by creation time, so listings come back newest
first. The in-memory stores implement the same interface for development
without Redis and for tests.

Key patterns (``{prefix}`` defaults to ``exporter``):
- {prefix}:export:{export_id} - Export job record
- {prefix}:exports:{owner} - Sorted set of the owner's export ids
- {prefix}:schedule:{schedule_id} - Schedule record
- {prefix}:schedules:{owner} - Sorted set of the owner's schedule ids
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis

from ..models.exports import ExportJob
from ..models.schedule import ExportSchedule

logger = logging.getLogger(__name__)

ScheduleMutation = Callable[[ExportSchedule], ExportSchedule]


class ExportStore(Protocol):
    async def add(self, job: ExportJob) -> None: ...

    async def save(self, job: ExportJob) -> None: ...

    async def get(self, export_id: str) -> ExportJob | None: ...

    async def list(self, owner: str, offset: int, limit: int) -> tuple[list[ExportJob], int]: ...

    async def delete(self, job: ExportJob) -> bool: ...


class ScheduleStore(Protocol):
    async def add(self, schedule: ExportSchedule) -> None: ...

    async def get(self, schedule_id: str) -> ExportSchedule | None: ...

    async def list(self, owner: str) -> list[ExportSchedule]: ...

    async def update(
        self, schedule_id: str, mutate: ScheduleMutation
    ) -> ExportSchedule | None: ...

    async def delete(self, schedule: ExportSchedule) -> bool: ...


def _decode(value: str | bytes) -> str:
    # Handle both bytes and str depending on decode_responses
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisExportStore:
    """Redis storage for export job records."""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "exporter") -> None:
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _get_export_key(self, export_id: str) -> str:
        return f"{self.key_prefix}:export:{export_id}"

    def _get_owner_index_key(self, owner: str) -> str:
        return f"{self.key_prefix}:exports:{owner}"

    async def add(self, job: ExportJob) -> None:
        """Store a new export record and index it under its owner."""
        await self.redis.set(self._get_export_key(job.id), job.model_dump_json())
        await self.redis.zadd(
            self._get_owner_index_key(job.owner),
            {job.id: job.created_at.timestamp()},
        )
        logger.debug(f"Stored export {job.id} for owner {job.owner}")

    async def save(self, job: ExportJob) -> None:
        """Overwrite an existing export record."""
        await self.redis.set(self._get_export_key(job.id), job.model_dump_json())

    async def get(self, export_id: str) -> ExportJob | None:
        data = await self.redis.get(self._get_export_key(export_id))
        if data is None:
            return None
        return ExportJob.model_validate_json(data)

    async def list(self, owner: str, offset: int, limit: int) -> tuple[list[ExportJob], int]:
        """Get a page of the owner's exports (newest first) and the total count."""
        index_key = self._get_owner_index_key(owner)
        total = await self.redis.zcard(index_key) or 0

        export_ids = await self.redis.zrevrange(index_key, offset, offset + limit - 1)
        jobs: list[ExportJob] = []
        for export_id in export_ids or []:
            job = await self.get(_decode(export_id))
            if job is not None:
                jobs.append(job)
        return jobs, total

    async def delete(self, job: ExportJob) -> bool:
        deleted = await self.redis.delete(self._get_export_key(job.id))
        await self.redis.zrem(self._get_owner_index_key(job.owner), job.id)
        return bool(deleted)


class RedisScheduleStore:
    """Redis storage for export schedule records."""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "exporter") -> None:
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _get_schedule_key(self, schedule_id: str) -> str:
        return f"{self.key_prefix}:schedule:{schedule_id}"

    def _get_owner_index_key(self, owner: str) -> str:
        return f"{self.key_prefix}:schedules:{owner}"

    async def add(self, schedule: ExportSchedule) -> None:
        await self.redis.set(self._get_schedule_key(schedule.id), schedule.model_dump_json())
        await self.redis.zadd(
            self._get_owner_index_key(schedule.owner),
            {schedule.id: schedule.created_at.timestamp()},
        )
        logger.debug(f"Stored schedule {schedule.id} for owner {schedule.owner}")

    async def get(self, schedule_id: str) -> ExportSchedule | None:
        data = await self.redis.get(self._get_schedule_key(schedule_id))
        if data is None:
            return None
        return ExportSchedule.model_validate_json(data)

    async def list(self, owner: str) -> list[ExportSchedule]:
        schedule_ids = await self.redis.zrevrange(self._get_owner_index_key(owner), 0, -1)
        schedules: list[ExportSchedule] = []
        for schedule_id in schedule_ids or []:
            schedule = await self.get(_decode(schedule_id))
            if schedule is not None:
                schedules.append(schedule)
        return schedules

    async def update(
        self,
        schedule_id: str,
        mutate: ScheduleMutation,
        max_retries: int = 3,
    ) -> ExportSchedule | None:
        """Read-modify-write a schedule inside a WATCH/MULTI transaction.

        ``mutate`` receives the stored record and returns the new one; it may
        raise to abort the update without writing.

        Returns:
            The updated schedule, or None if it does not exist.
        """
        key = self._get_schedule_key(schedule_id)

        for attempt in range(max_retries):
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)

                    data = await pipe.get(key)
                    if data is None:
                        return None

                    updated = mutate(ExportSchedule.model_validate_json(data))

                    pipe.multi()
                    await pipe.set(key, updated.model_dump_json())
                    await pipe.execute()

                    logger.debug(f"Updated schedule {schedule_id} to version {updated.version}")
                    return updated

            except redis.WatchError:
                if attempt < max_retries - 1:
                    wait_time = 0.01 * (2**attempt)  # 10ms, 20ms, 40ms
                    logger.debug(
                        f"Schedule {schedule_id} was modified during update, retrying in "
                        f"{wait_time:.3f}s (attempt {attempt + 1}/{max_retries})"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                logger.error(
                    f"Schedule {schedule_id} failed to update after {max_retries} attempts "
                    f"due to concurrent modifications"
                )
                raise

        return None

    async def delete(self, schedule: ExportSchedule) -> bool:
        deleted = await self.redis.delete(self._get_schedule_key(schedule.id))
        await self.redis.zrem(self._get_owner_index_key(schedule.owner), schedule.id)
        return bool(deleted)


class MemoryExportStore:
    """Process-local export store used when Redis is not configured."""

    def __init__(self) -> None:
        self._jobs: dict[str, ExportJob] = {}

    async def add(self, job: ExportJob) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    async def save(self, job: ExportJob) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    async def get(self, export_id: str) -> ExportJob | None:
        job = self._jobs.get(export_id)
        return job.model_copy(deep=True) if job else None

    async def list(self, owner: str, offset: int, limit: int) -> tuple[list[ExportJob], int]:
        owned = sorted(
            (job for job in self._jobs.values() if job.owner == owner),
            key=lambda job: job.created_at,
            reverse=True,
        )
        page = owned[offset : offset + limit]
        return [job.model_copy(deep=True) for job in page], len(owned)

    async def delete(self, job: ExportJob) -> bool:
        return self._jobs.pop(job.id, None) is not None


class MemoryScheduleStore:
    """Process-local schedule store used when Redis is not configured."""

    def __init__(self) -> None:
        self._schedules: dict[str, ExportSchedule] = {}

    async def add(self, schedule: ExportSchedule) -> None:
        self._schedules[schedule.id] = schedule.model_copy(deep=True)

    async def get(self, schedule_id: str) -> ExportSchedule | None:
        schedule = self._schedules.get(schedule_id)
        return schedule.model_copy(deep=True) if schedule else None

    async def list(self, owner: str) -> list[ExportSchedule]:
        owned = sorted(
            (s for s in self._schedules.values() if s.owner == owner),
            key=lambda s: s.created_at,
            reverse=True,
        )
        return [s.model_copy(deep=True) for s in owned]

    async def update(
        self, schedule_id: str, mutate: ScheduleMutation
    ) -> ExportSchedule | None:
        current = self._schedules.get(schedule_id)
        if current is None:
            return None
        updated = mutate(current.model_copy(deep=True))
        self._schedules[schedule_id] = updated.model_copy(deep=True)
        return updated

    async def delete(self, schedule: ExportSchedule) -> bool:
        return self._schedules.pop(schedule.id, None) is not None


async def connect_redis(redis_uri: str, max_connections: int = 20) -> redis.Redis:
    """Create a pooled Redis client and verify the connection."""
    try:
        pool = redis.ConnectionPool.from_url(
            redis_uri,
            max_connections=max_connections,
            retry_on_timeout=True,
            retry_on_error=[redis.BusyLoadingError, redis.ConnectionError],
            health_check_interval=30,
            decode_responses=True,
        )
        client = redis.Redis(connection_pool=pool)
        await client.ping()
        logger.info(f"Connected to Redis (max_connections={max_connections})")
        return client
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise
