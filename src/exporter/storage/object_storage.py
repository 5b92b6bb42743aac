"""HTTP client for the object storage service holding export artifacts.

Speaks the Supabase-compatible storage REST API:
- POST   {base}/storage/v1/object/{bucket}/{path}        upload
- POST   {base}/storage/v1/object/sign/{bucket}/{path}   create signed URL
- DELETE {base}/storage/v1/object/{bucket}              remove by prefix list
"""

import logging
from urllib.parse import quote

import httpx

from ..errors import StorageFailure

logger = logging.getLogger(__name__)


class ObjectStorageClient:
    """Thin async wrapper over the storage REST API using a pooled httpx client."""

    def __init__(
        self,
        base_url: str,
        service_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the storage client.

        Args:
            base_url: Storage service base URL
            service_key: Key sent as bearer token and ``apikey`` header
            timeout: Request timeout in seconds
            client: Preconfigured httpx client (tests inject a MockTransport here)
        """
        self.base_url = base_url.rstrip("/")
        headers = {}
        if service_key:
            headers["Authorization"] = f"Bearer {service_key}"
            headers["apikey"] = service_key

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    def _object_url(self, *parts: str) -> str:
        return "/".join([f"{self.base_url}/storage/v1/object", *(quote(p) for p in parts)])

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(
                method, url, headers={**self._headers, **kwargs.pop("headers", {})}, **kwargs
            )
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise StorageFailure(
                f"Storage request failed with status {e.response.status_code}",
                details={"url": url, "status_code": e.response.status_code},
            ) from e
        except httpx.TimeoutException as e:
            raise StorageFailure(f"Storage request timed out: {url}") from e
        except httpx.RequestError as e:
            raise StorageFailure(f"Storage request failed: {e}") from e

    async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> None:
        """Upload an object without overwriting an existing one."""
        await self._request(
            "POST",
            self._object_url(bucket, path),
            content=content,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        logger.debug(f"Uploaded {len(content)} bytes to {bucket}/{path}")

    async def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        """Create a time-limited download URL for an object."""
        response = await self._request(
            "POST",
            self._object_url("sign", bucket, path),
            json={"expiresIn": ttl_seconds},
        )
        signed = response.json().get("signedURL")
        if not signed:
            raise StorageFailure(f"Storage returned no signed URL for {bucket}/{path}")
        if signed.startswith("http"):
            return signed
        return f"{self.base_url}/storage/v1{signed}"

    async def remove(self, bucket: str, path: str) -> None:
        await self._request(
            "DELETE",
            self._object_url(bucket),
            json={"prefixes": [path]},
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
