"""Data models for Launchpad."""

from launchpad.models.deployment import (
    AdminCredentials,
    AppType,
    ComputeHandle,
    DeploymentError,
    DeploymentRequest,
    DeploymentResult,
    DeploymentStage,
    DeploymentUrls,
    DNSResult,
    ErrorKind,
    EventState,
    FATAL_KINDS,
    PreparedWorkspace,
    ProgressEvent,
    ProvisionedResource,
    RepoHandle,
    ResourceKind,
    ResourceState,
    ServiceHandle,
    ServiceState,
    StageResult,
    StageStatus,
)
from launchpad.models.record import (
    DeploymentCreate,
    DeploymentRecord,
    DeploymentResponse,
    DeploymentStatus,
)

__all__ = [
    # Request / result
    "AppType",
    "DeploymentRequest",
    "DeploymentResult",
    "DeploymentUrls",
    "AdminCredentials",
    # Errors
    "DeploymentStage",
    "DeploymentError",
    "ErrorKind",
    "FATAL_KINDS",
    # Resources and stage outputs
    "ProvisionedResource",
    "ResourceKind",
    "ResourceState",
    "PreparedWorkspace",
    "RepoHandle",
    "ServiceHandle",
    "ServiceState",
    "ComputeHandle",
    "DNSResult",
    "StageResult",
    "StageStatus",
    # Progress
    "ProgressEvent",
    "EventState",
    # Sessions
    "DeploymentCreate",
    "DeploymentRecord",
    "DeploymentResponse",
    "DeploymentStatus",
]
