"""Clients for the upstream APIs that own the exported datasets.

Both listings are paginated upstream; exports request a single oversized page
to approximate "every matching row".
"""

import logging
from typing import Any, Protocol

import httpx

from .errors import GenerationFailure

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class SessionSource(Protocol):
    async def get_all(
        self, filters: dict[str, Any], page: int = 1, page_size: int = 20
    ) -> dict[str, Any]: ...


class AgentSource(Protocol):
    async def get_all(self, status: str = "all") -> dict[str, Any]: ...


class UpstreamClient:
    """Shared httpx client for the session and agent listing API."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        # Upstream treats an empty parameter as a filter value
        query = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
        try:
            response = await self._client.get(url, params=query, headers=self._headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise GenerationFailure(
                f"Upstream request to {path} failed with status {e.response.status_code}",
                details={"url": url, "status_code": e.response.status_code},
            ) from e
        except httpx.TimeoutException as e:
            raise GenerationFailure(f"Upstream request to {path} timed out") from e
        except httpx.RequestError as e:
            raise GenerationFailure(f"Upstream request to {path} failed: {e}") from e

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _rows(payload: Any, key: str) -> list[Row]:
    """Accept both a bare list and a ``{key: [...]}`` envelope."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return list(payload.get(key) or [])
    raise GenerationFailure(f"Unexpected {key} listing payload: {type(payload).__name__}")


class HTTPSessionSource:
    """Session listings from ``GET /sessions``."""

    def __init__(self, upstream: UpstreamClient):
        self.upstream = upstream

    async def get_all(
        self, filters: dict[str, Any], page: int = 1, page_size: int = 20
    ) -> dict[str, Any]:
        payload = await self.upstream.get_json(
            "/sessions", params={**filters, "page": page, "pageSize": page_size}
        )
        sessions = _rows(payload, "sessions")
        total = payload.get("total", len(sessions)) if isinstance(payload, dict) else len(sessions)
        logger.debug(f"Fetched {len(sessions)} sessions (total={total})")
        return {"sessions": sessions, "total": total}


class HTTPAgentSource:
    """Agent listings from ``GET /agents``."""

    def __init__(self, upstream: UpstreamClient):
        self.upstream = upstream

    async def get_all(self, status: str = "all") -> dict[str, Any]:
        payload = await self.upstream.get_json("/agents", params={"status": status})
        agents = _rows(payload, "agents")
        logger.debug(f"Fetched {len(agents)} agents")
        return {"agents": agents}
