"""Request authentication: service API key and caller identity."""

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings
from .models.responses import ErrorResponse

logger = logging.getLogger(__name__)


# Security scheme for API key authentication
security = HTTPBearer(auto_error=False)


def is_auth_enabled(settings: Settings | None = None) -> bool:
    """Return True when an API key is configured (``EXPORTER_KEY``)."""
    settings = settings or get_settings()
    return bool(settings.auth.api_key and settings.auth.api_key.strip())


def verify_api_key(api_key: str, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    if not settings.auth.api_key:
        return True  # No authentication required if no key is set
    return api_key == settings.auth.api_key


def _unauthorized(message: str, error_type: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=ErrorResponse(error=message, error_type=error_type).model_dump(),
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str | None:
    """
    Extract and verify the service API key.

    Accepted as a Bearer token in the Authorization header or in X-API-Key.

    Returns:
        The API key, or None when authentication is disabled

    Raises:
        HTTPException: 401 if the key is required but missing or invalid
    """
    if not is_auth_enabled():
        return None

    api_key = None
    if credentials and credentials.credentials:
        api_key = credentials.credentials
    elif "x-api-key" in request.headers:
        api_key = request.headers["x-api-key"]

    if not api_key:
        logger.warning("API key authentication required but not provided")
        raise _unauthorized(
            "API key required. Provide via Authorization header or X-API-Key header",
            "authentication_required",
        )

    if not verify_api_key(api_key):
        logger.warning("Invalid API key provided")
        raise _unauthorized("Invalid API key", "authentication_failed")

    return api_key


async def get_current_owner(
    request: Request,
    api_key: str | None = Depends(get_api_key),
) -> str:
    """
    Resolve the authenticated caller from the gateway identity header.

    Every export and schedule is scoped to this identity.

    Raises:
        HTTPException: 401 if the identity header is missing or blank
    """
    header = get_settings().auth.owner_header
    owner = request.headers.get(header, "").strip()
    if not owner:
        logger.warning(f"Request to {request.url.path} without {header} header")
        raise _unauthorized(
            f"Caller identity required ({header} header)", "authentication_required"
        )
    return owner


def get_auth_status(settings: Settings | None = None) -> dict:
    """Authentication summary for the health endpoint."""
    settings = settings or get_settings()
    auth_enabled = is_auth_enabled(settings)

    return {
        "auth_enabled": auth_enabled,
        "owner_header": settings.auth.owner_header,
        "auth_methods": [
            "Authorization: Bearer <api_key>",
            "X-API-Key: <api_key>",
        ]
        if auth_enabled
        else None,
    }
