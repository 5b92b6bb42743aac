"""Dependency injection providers for FastAPI.

Services are created once in the app lifespan and stored on ``app.state``;
these providers hand them to route handlers.
"""

import logging
from typing import Annotated

from fastapi import Depends, Request

from .auth import get_current_owner
from .config import Settings, get_settings
from .scheduling import ScheduleManager
from .services.coordinator import ExportRequestCoordinator
from .storage.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


def _from_state(request: Request, name: str):
    if not hasattr(request.app.state, name):
        raise RuntimeError(f"{name} not initialized. Check app lifespan configuration.")
    return getattr(request.app.state, name)


async def get_coordinator(request: Request) -> ExportRequestCoordinator:
    """Export job coordinator from app state."""
    return _from_state(request, "coordinator")


async def get_schedule_manager(request: Request) -> ScheduleManager:
    """Schedule manager from app state."""
    return _from_state(request, "schedule_manager")


async def get_artifact_store(request: Request) -> ArtifactStore:
    """Artifact store from app state, used to serve ephemeral downloads."""
    return _from_state(request, "artifact_store")


def get_settings_dependency() -> Settings:
    return get_settings()


# Type aliases for cleaner route signatures
SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]
CoordinatorDep = Annotated[ExportRequestCoordinator, Depends(get_coordinator)]
ScheduleManagerDep = Annotated[ScheduleManager, Depends(get_schedule_manager)]
ArtifactStoreDep = Annotated[ArtifactStore, Depends(get_artifact_store)]
OwnerDep = Annotated[str, Depends(get_current_owner)]
