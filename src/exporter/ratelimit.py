"""Rate limiting for endpoints that generate an export inside the request.

Generation is synchronous and fetches whole datasets upstream, so only those
endpoints are limited. Limits are keyed by caller identity when present and by
client address otherwise.
"""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


def caller_key(request: Request) -> str:
    """Rate limit key: the caller identity header, else the remote address."""
    owner = request.headers.get(get_settings().auth.owner_header, "").strip()
    return f"owner:{owner}" if owner else get_remote_address(request)


def export_limit() -> str:
    return get_settings().ratelimit.export_limit


def create_limiter(settings: Settings) -> Limiter:
    # Use Redis if configured (shared across workers), otherwise in-memory
    storage_uri = settings.ratelimit.storage_uri or settings.redis.redis_uri or "memory://"
    limiter = Limiter(
        key_func=caller_key,
        storage_uri=storage_uri,
        default_limits=[],
        headers_enabled=settings.ratelimit.headers_enabled,
        enabled=settings.ratelimit.enabled,
    )
    logger.info(
        f"Rate limiter initialized with storage: {storage_uri} "
        f"(enabled={settings.ratelimit.enabled}, export_limit={settings.ratelimit.export_limit})"
    )
    return limiter


limiter = create_limiter(get_settings())
