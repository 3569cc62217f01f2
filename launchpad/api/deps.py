"""Dependency injection for API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status

from launchpad.config import Settings, get_settings
from launchpad.core.events import EventBus, get_event_bus
from launchpad.core.session import DeploymentSessionManager, get_session_manager
from launchpad.deploy.orchestrator import DeploymentOrchestrator
from launchpad.models.record import DeploymentRecord


async def get_app_settings() -> Settings:
    """Get the application settings."""
    return get_settings()


async def get_session() -> DeploymentSessionManager:
    """Get the session manager."""
    return get_session_manager()


async def get_events() -> EventBus:
    """Get the event bus."""
    return get_event_bus()


async def get_orchestrator(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> DeploymentOrchestrator:
    """Build an orchestrator bound to the current settings."""
    return DeploymentOrchestrator(settings)


async def get_deployment_by_id(
    deployment_id: UUID,
    session: Annotated[DeploymentSessionManager, Depends(get_session)],
) -> DeploymentRecord:
    """Get a deployment by ID or raise 404."""
    record = await session.get(deployment_id)
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Deployment not found: {deployment_id}",
        )
    return record


# Type aliases for cleaner signatures
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
SessionDep = Annotated[DeploymentSessionManager, Depends(get_session)]
EventsDep = Annotated[EventBus, Depends(get_events)]
OrchestratorDep = Annotated[DeploymentOrchestrator, Depends(get_orchestrator)]
DeploymentDep = Annotated[DeploymentRecord, Depends(get_deployment_by_id)]
