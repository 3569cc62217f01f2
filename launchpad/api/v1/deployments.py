"""Deployment endpoints."""

import json
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Query, status
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from launchpad.api.deps import (
    DeploymentDep,
    EventsDep,
    OrchestratorDep,
    SessionDep,
    SettingsDep,
)
from launchpad.core.events import EventBus
from launchpad.core.exceptions import CredentialMissingError
from launchpad.core.session import DeploymentSessionManager
from launchpad.deploy.credentials import CredentialValidator
from launchpad.deploy.orchestrator import DeploymentOrchestrator
from launchpad.models.deployment import DeploymentRequest, EventState, ProgressEvent
from launchpad.models.record import (
    DeploymentCreate,
    DeploymentResponse,
    DeploymentStatus,
)
from launchpad.utils.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)

KEEPALIVE_SECONDS = 30


class DeploymentListResponse(BaseModel):
    """Response for listing deployments."""

    deployments: list[DeploymentResponse]
    total: int
    limit: int
    offset: int


class ReadinessResponse(BaseModel):
    """Credential readiness per app type."""

    ready: bool
    app_types: dict[str, dict[str, object]]


async def run_deployment_background(
    deployment_id: UUID,
    request: DeploymentRequest,
    orchestrator: DeploymentOrchestrator,
    session: DeploymentSessionManager,
    events: EventBus,
) -> None:
    """Background task running one deployment to completion."""
    reporter = events.open(
        deployment_id, callback=lambda event: session.record_event(deployment_id, event)
    )
    try:
        result = await orchestrator.deploy(request, reporter)
        record = await session.get(deployment_id)
        if record is not None:
            record.finish(result)
            await session.update(record)
    finally:
        # Live subscribers keep their queues; later clients read the stored result
        events.close(deployment_id)


@router.get(
    "/readiness",
    response_model=ReadinessResponse,
    summary="Check platform credentials",
)
async def readiness(settings: SettingsDep) -> ReadinessResponse:
    """Report which app types can be deployed with the configured credentials."""
    report = CredentialValidator(settings).readiness()
    return ReadinessResponse(
        ready=all(entry["ready"] for entry in report.values()),
        app_types=report,
    )


@router.post(
    "",
    response_model=DeploymentResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a deployment",
    description="Deploy a generated project. Returns immediately while the deployment runs in background.",
)
async def create_deployment(
    data: DeploymentCreate,
    settings: SettingsDep,
    session: SessionDep,
    events: EventsDep,
    orchestrator: OrchestratorDep,
    background_tasks: BackgroundTasks,
) -> DeploymentResponse:
    """Validate credentials, register the deployment and start it."""
    missing = CredentialValidator(settings).missing(data.app_type)
    if missing:
        raise CredentialMissingError(data.app_type.value, missing)

    await session.cleanup_expired()
    record = await session.create(data)
    # Open the reporter now so a client can subscribe before the task starts
    events.open(record.id, callback=lambda event: session.record_event(record.id, event))

    background_tasks.add_task(
        run_deployment_background,
        record.id,
        data.to_request(),
        orchestrator,
        session,
        events,
    )
    logger.info(
        "deployment.queued",
        deployment_id=str(record.id),
        project_name=data.project_name,
        app_type=data.app_type.value,
    )
    return DeploymentResponse.from_record(record)


@router.get(
    "",
    response_model=DeploymentListResponse,
    summary="List deployments",
)
async def list_deployments(
    session: SessionDep,
    status_filter: Annotated[DeploymentStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeploymentListResponse:
    """List deployments with optional filtering."""
    records, total = await session.list_deployments(
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return DeploymentListResponse(
        deployments=[DeploymentResponse.from_record(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{deployment_id}",
    response_model=DeploymentResponse,
    summary="Get deployment details",
)
async def get_deployment(deployment: DeploymentDep) -> DeploymentResponse:
    """Get the current state, and the result once finished, of a deployment."""
    return DeploymentResponse.from_record(deployment)


@router.get(
    "/{deployment_id}/stream",
    summary="Stream deployment progress (SSE)",
)
async def stream_deployment_events(
    deployment: DeploymentDep,
    events: EventsDep,
) -> EventSourceResponse:
    """Stream progress events using Server-Sent Events.

    Replays every event emitted so far, then follows the live deployment
    until the terminal ``complete`` event. Disconnecting never affects the
    deployment itself.
    """
    reporter = events.get(deployment.id)

    async def event_generator():
        yield {
            "event": "connected",
            "data": json.dumps(
                {"deployment_id": str(deployment.id), "status": deployment.status.value}
            ),
        }

        if reporter is None:
            # Already finished; the stored result is the terminal event
            if deployment.result is not None:
                success = deployment.result.success
                final = ProgressEvent(
                    step="complete",
                    status="Deployment complete!" if success else "Deployment failed",
                    progress=100,
                    state=EventState.SUCCEEDED if success else EventState.FAILED,
                    result=deployment.result.model_dump(mode="json"),
                )
                yield {"event": "progress", "data": final.model_dump_json()}
            return

        async for event in reporter.stream():
            yield {"event": "progress", "data": event.model_dump_json()}

    # Idle streams get a comment-line ping so proxies keep the connection open
    return EventSourceResponse(event_generator(), ping=KEEPALIVE_SECONDS)
