"""Export generation: fetch dataset rows and serialize them to CSV or JSON."""

import csv
import io
import json
import logging
from datetime import datetime, timezone
from typing import Any

from ..errors import EmptyResultSet
from ..models.exports import ExportDataType, ExportFilters, ExportFormat, GeneratedExport
from ..sources import AgentSource, Row, SessionSource

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "csv": "text/csv",
    "json": "application/json",
}

# (header, row key) pairs in column order
SESSION_COLUMNS = [
    ("ID", "id"),
    ("Agent ID", "agent_id"),
    ("Status", "status"),
    ("Started At", "started_at"),
    ("Completed At", "completed_at"),
    ("Created At", "created_at"),
    ("Updated At", "updated_at"),
]

AGENT_COLUMNS = [
    ("ID", "id"),
    ("Name", "name"),
    ("Description", "description"),
    ("Status", "status"),
    ("Created At", "created_at"),
    ("Updated At", "updated_at"),
]

_SESSION_FILTER_KEYS = ("agent_ids", "agent_id", "status", "date_from", "date_to", "search")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def to_csv(rows: list[Row], columns: list[tuple[str, str]]) -> str:
    """Serialize rows with every field double-quoted and embedded quotes doubled."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow([header for header, _ in columns])
    for row in rows:
        writer.writerow([_cell(row.get(key)) for _, key in columns])
    return buffer.getvalue().rstrip("\n")


def to_json(rows: list[Row]) -> str:
    """Serialize rows as a two-space indented JSON array."""
    return json.dumps(rows, indent=2, ensure_ascii=False, default=str)


def export_file_name(dataset: str, format: str, now: datetime | None = None) -> str:
    """``<dataset>-export-<epoch_millis>.<ext>``"""
    now = now or datetime.now(timezone.utc)
    return f"{dataset}-export-{int(now.timestamp() * 1000)}.{format}"


def session_query(filters: ExportFilters) -> dict[str, Any]:
    """Map export filters onto the session listing query parameters."""
    return {
        "agent_id": (filters.agent_ids or [None])[0] or filters.agent_id,
        "status": filters.status,
        "date_from": filters.date_from,
        "date_to": filters.date_to,
        "search": filters.search,
    }


def has_session_filters(filters: ExportFilters) -> bool:
    return any(getattr(filters, key) for key in _SESSION_FILTER_KEYS)


class ExportGenerator:
    """Builds export files from the session and agent sources."""

    def __init__(
        self,
        session_source: SessionSource,
        agent_source: AgentSource,
        page_size: int = 10000,
    ):
        self.session_source = session_source
        self.agent_source = agent_source
        self.page_size = page_size

    def resolve_dataset(self, data_type: ExportDataType, filters: ExportFilters) -> str:
        """Pick the dataset that will actually be exported.

        ``all`` does not merge both datasets: it exports sessions when any
        session filter is present and agents otherwise.
        """
        if data_type == "all":
            return "sessions" if has_session_filters(filters) else "agents"
        return data_type

    async def fetch_sessions(self, filters: ExportFilters) -> list[Row]:
        result = await self.session_source.get_all(
            session_query(filters), page=1, page_size=self.page_size
        )
        return list(result.get("sessions") or [])

    async def fetch_agents(self) -> list[Row]:
        result = await self.agent_source.get_all(status="all")
        return list(result.get("agents") or [])

    async def generate(
        self,
        data_type: ExportDataType,
        format: ExportFormat,
        filters: ExportFilters | None = None,
        now: datetime | None = None,
    ) -> GeneratedExport:
        """Fetch the requested dataset and serialize it.

        Raises:
            EmptyResultSet: A ``sessions`` export matched no rows.
        """
        filters = filters or ExportFilters()
        dataset = self.resolve_dataset(data_type, filters)

        if dataset == "sessions":
            rows = await self.fetch_sessions(filters)
            if not rows and data_type == "sessions":
                raise EmptyResultSet(
                    "No sessions found matching the filters",
                    details={"filters": filters.model_dump(exclude_none=True)},
                )
            columns = SESSION_COLUMNS
        else:
            rows = await self.fetch_agents()
            columns = AGENT_COLUMNS

        body = to_csv(rows, columns) if format == "csv" else to_json(rows)
        logger.info(f"Generated {format} export of {len(rows)} {dataset}")

        return GeneratedExport(
            content=body.encode("utf-8"),
            file_name=export_file_name(dataset, format, now),
            content_type=CONTENT_TYPES[format],
            row_count=len(rows),
        )
