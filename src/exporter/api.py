"""API router aggregating the export and schedule endpoints."""

from fastapi import APIRouter

from .routes.exports import router as exports_router
from .routes.schedules import router as schedules_router

router = APIRouter()

router.include_router(exports_router, tags=["exports"])
router.include_router(schedules_router, tags=["schedules"])
