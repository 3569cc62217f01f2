"""Deployment session models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from launchpad.models.deployment import AppType, DeploymentRequest, DeploymentResult


class DeploymentStatus(str, Enum):
    """Deployment session status."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DeploymentCreate(BaseModel):
    """Request model for starting a deployment."""

    project_path: str = Field(..., min_length=1)
    project_name: str = Field(..., min_length=1, max_length=100)
    app_type: AppType = AppType.WEBSITE
    parent_site_subdomain: str | None = None
    admin_email: str | None = None

    @model_validator(mode="after")
    def _companion_needs_parent(self) -> "DeploymentCreate":
        if self.app_type == AppType.COMPANION_APP and not self.parent_site_subdomain:
            raise ValueError("companion-app deployments require parent_site_subdomain")
        return self

    def to_request(self) -> DeploymentRequest:
        return DeploymentRequest(**self.model_dump())


class DeploymentRecord(BaseModel):
    """One deployment run with all its state."""

    id: UUID = Field(default_factory=uuid4)
    project_name: str
    app_type: AppType
    request: DeploymentCreate
    status: DeploymentStatus = DeploymentStatus.QUEUED

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    # Progress
    current_step: str | None = None
    progress: int = 0

    result: DeploymentResult | None = None
    error: str | None = None

    def finish(self, result: DeploymentResult) -> None:
        now = datetime.utcnow()
        self.result = result
        self.status = DeploymentStatus.SUCCEEDED if result.success else DeploymentStatus.FAILED
        if result.fatal_errors:
            self.error = result.fatal_errors[0].message
        self.completed_at = now
        self.updated_at = now


class DeploymentResponse(BaseModel):
    """API response model for a deployment."""

    deployment_id: UUID
    project_name: str
    app_type: AppType
    status: DeploymentStatus
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    current_step: str | None = None
    progress: int = 0

    result: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def from_record(cls, record: DeploymentRecord) -> "DeploymentResponse":
        """Create response from a deployment record."""
        return cls(
            deployment_id=record.id,
            project_name=record.project_name,
            app_type=record.app_type,
            status=record.status,
            created_at=record.created_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
            current_step=record.current_step,
            progress=record.progress,
            result=record.result.model_dump(mode="json") if record.result else None,
            error=record.error,
        )
