"""Shared response models for API endpoints."""

import logging

from fastapi import HTTPException
from pydantic import BaseModel

from ..errors import ExportServiceError

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Response model for errors."""
    success: bool = False
    error: str
    error_type: str


class DeleteResponse(BaseModel):
    success: bool = True
    message: str


def error_to_http(error: ExportServiceError) -> HTTPException:
    """Translate a domain error into an HTTPException with an ErrorResponse body."""
    return HTTPException(
        status_code=error.status_code,
        detail=ErrorResponse(error=error.message, error_type=error.error_type).model_dump(),
    )


def unexpected_error_to_http(action: str, error: Exception, error_type: str) -> HTTPException:
    """Log an unexpected failure with its traceback and build a 500 response."""
    logger.exception(f"Failed to {action}: {error}")
    return HTTPException(
        status_code=500,
        detail=ErrorResponse(error=f"Failed to {action}", error_type=error_type).model_dump(),
    )
