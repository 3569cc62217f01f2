"""Deployment data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

T = TypeVar("T")


class AppType(str, Enum):
    """Kind of generated project being deployed."""

    WEBSITE = "website"
    COMPANION_APP = "companion-app"
    ADVANCED_APP = "advanced-app"


class DeploymentStage(str, Enum):
    """Named stages of the deployment pipeline, in execution order."""

    CREDENTIALS = "credentials"
    PREPARE = "prepare"
    REPOSITORIES = "repositories"
    COMPUTE = "compute"
    DNS = "dns"
    FINALIZING = "finalizing"


class ErrorKind(str, Enum):
    """Error taxonomy used for stage attribution."""

    CREDENTIAL_MISSING = "credential_missing"
    WORKSPACE_PREP_FAILURE = "workspace_prep_failure"
    REPOSITORY_PROVISION_FAILURE = "repository_provision_failure"
    COMPUTE_PROVISION_FAILURE = "compute_provision_failure"
    BUILD_TIMEOUT = "build_timeout"
    DNS_RECONCILE_FAILURE = "dns_reconcile_failure"
    FINALIZE_FAILURE = "finalize_failure"


# Advisory kinds never flip a deployment to failed
FATAL_KINDS = frozenset(
    {
        ErrorKind.CREDENTIAL_MISSING,
        ErrorKind.WORKSPACE_PREP_FAILURE,
        ErrorKind.REPOSITORY_PROVISION_FAILURE,
        ErrorKind.COMPUTE_PROVISION_FAILURE,
        ErrorKind.FINALIZE_FAILURE,
    }
)


class ResourceKind(str, Enum):
    """Kinds of externally-created artifacts."""

    REPOSITORY = "repository"
    COMPUTE_PROJECT = "compute_project"
    COMPUTE_SERVICE = "compute_service"
    SERVICE_DOMAIN = "service_domain"
    CUSTOM_DOMAIN = "custom_domain"
    DNS_RECORD = "dns_record"


class ResourceState(str, Enum):
    """Provisioning state of a single resource."""

    PENDING = "pending"
    CREATED = "created"
    REUSED = "reused"
    FAILED = "failed"


class ServiceState(str, Enum):
    """Build/deploy state of a compute service."""

    PENDING = "pending"
    BUILDING = "building"
    DEPLOYED = "deployed"
    BUILD_FAILED = "build_failed"
    TIMED_OUT = "timed_out"


class StageStatus(str, Enum):
    """Outcome of a pipeline stage."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


class EventState(str, Enum):
    """Lifecycle marker carried by a progress event."""

    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    INFO = "info"


class DeploymentRequest(BaseModel):
    """Input for a single deployment. Immutable per invocation."""

    model_config = ConfigDict(frozen=True)

    project_path: str
    project_name: str = Field(..., min_length=1, max_length=100)
    app_type: AppType = AppType.WEBSITE
    parent_site_subdomain: str | None = None
    admin_email: str | None = None

    # Receives every ProgressEvent; may be sync or async
    on_progress: Callable[..., Any] | None = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _companion_needs_parent(self) -> "DeploymentRequest":
        if self.app_type == AppType.COMPANION_APP and not self.parent_site_subdomain:
            raise ValueError("companion-app deployments require parent_site_subdomain")
        return self


class ProvisionedResource(BaseModel):
    """One externally-created artifact and its provisioning state."""

    kind: ResourceKind
    name: str
    external_id: str = ""
    url: str | None = None
    state: ResourceState = ResourceState.PENDING
    retry_count: int = 0

    def mark_created(self, external_id: str, url: str | None = None) -> None:
        self.state = ResourceState.CREATED
        self.external_id = external_id
        self.url = url or self.url

    def mark_reused(self, external_id: str, url: str | None = None) -> None:
        self.state = ResourceState.REUSED
        self.external_id = external_id
        self.url = url or self.url

    def mark_failed(self) -> None:
        self.state = ResourceState.FAILED

    @property
    def succeeded(self) -> bool:
        return self.state in (ResourceState.CREATED, ResourceState.REUSED)


class DeploymentError(BaseModel):
    """A failure attributed to a pipeline stage."""

    model_config = ConfigDict(frozen=True)

    stage: DeploymentStage
    kind: ErrorKind
    message: str
    fatal: bool
    resource: str | None = None

    @classmethod
    def of(
        cls,
        stage: DeploymentStage,
        kind: ErrorKind,
        message: str,
        resource: str | None = None,
    ) -> "DeploymentError":
        """Build an error whose fatality follows its kind."""
        return cls(
            stage=stage,
            kind=kind,
            message=message,
            fatal=kind in FATAL_KINDS,
            resource=resource,
        )


class DeploymentUrls(BaseModel):
    """Public and diagnostic URLs produced by a deployment."""

    frontend: str = ""
    backend: str | None = None
    admin: str | None = None
    companion_url: str | None = None
    parent_site: str | None = None
    parent_api: str | None = None

    repositories: dict[str, str] = Field(default_factory=dict)
    railway: str | None = None
    direct: dict[str, str] = Field(default_factory=dict)


class AdminCredentials(BaseModel):
    """Admin login seeded into a newly created backend."""

    admin_email: str
    admin_password: str


class DeploymentResult(BaseModel):
    """Aggregated result of one deployment. Produced once, never mutated."""

    model_config = ConfigDict(frozen=True)

    success: bool
    urls: DeploymentUrls = Field(default_factory=DeploymentUrls)
    credentials: AdminCredentials | None = None
    railway_project_id: str | None = None
    errors: list[DeploymentError] = Field(default_factory=list)
    resources: list[ProvisionedResource] = Field(default_factory=list)
    duration_ms: int = 0

    @model_validator(mode="after")
    def _success_is_consistent(self) -> "DeploymentResult":
        if self.success:
            if not self.urls.frontend:
                raise ValueError("a successful deployment needs a frontend URL")
            if any(error.fatal for error in self.errors):
                raise ValueError("a successful deployment cannot carry fatal errors")
        return self

    @property
    def fatal_errors(self) -> list[DeploymentError]:
        return [e for e in self.errors if e.fatal]

    @property
    def warnings(self) -> list[DeploymentError]:
        return [e for e in self.errors if not e.fatal]


class ProgressEvent(BaseModel):
    """A single step-level status update on the progress stream."""

    step: str
    status: str
    icon: str = ""
    progress: int = Field(default=0, ge=0, le=100)
    state: EventState = EventState.INFO
    result: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.step == "complete"

    def to_sse(self) -> str:
        """Convert to SSE format."""
        return f"event: progress\ndata: {self.model_dump_json()}\n\n"


class PreparedWorkspace(BaseModel):
    """A project directory normalized into a deployable state."""

    root: Path
    service_dirs: dict[str, Path] = Field(default_factory=dict)
    api_url: str
    actions: list[str] = Field(default_factory=list)


class RepoHandle(BaseModel):
    """A source-control repository holding one service's code."""

    service: str
    name: str
    owner: str
    html_url: str
    clone_url: str
    reused: bool = False
    pushed: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class ServiceHandle(BaseModel):
    """A compute service inside the Railway project."""

    name: str
    service_id: str
    repo: str | None = None
    endpoint: str | None = None
    # Public hostname registered on the service, and the CNAME target Railway asks for
    custom_domain: str | None = None
    custom_domain_target: str | None = None
    state: ServiceState = ServiceState.PENDING
    reused: bool = False

    @property
    def endpoint_url(self) -> str | None:
        return f"https://{self.endpoint}" if self.endpoint else None

    @property
    def dns_target(self) -> str | None:
        """Where the public hostname's CNAME should point."""
        return self.custom_domain_target or self.endpoint


class ComputeHandle(BaseModel):
    """The Railway project and its services."""

    project_id: str
    environment_id: str
    services: dict[str, ServiceHandle] = Field(default_factory=dict)
    credentials: AdminCredentials | None = None
    reused: bool = False

    @property
    def dashboard_url(self) -> str:
        return f"https://railway.app/project/{self.project_id}"


class DNSResult(BaseModel):
    """Outcome of reconciling one hostname."""

    hostname: str
    zone_id: str
    target: str | None = None
    record_type: str = "CNAME"
    proxied: bool = False
    record_id: str | None = None
    deleted_record_ids: list[str] = Field(default_factory=list)
    success: bool = False
    error: str | None = None


@dataclass
class StageResult(Generic[T]):
    """Typed outcome of a pipeline stage.

    Stages return this instead of raising, so the orchestrator decides
    whether to continue purely from ``errors``.
    """

    status: StageStatus
    value: T | None = None
    errors: list[DeploymentError] = field(default_factory=list)
    resources: list[ProvisionedResource] = field(default_factory=list)

    @property
    def fatal(self) -> bool:
        return any(e.fatal for e in self.errors)

    @classmethod
    def from_errors(
        cls,
        value: T | None,
        errors: list[DeploymentError],
        resources: list[ProvisionedResource] | None = None,
    ) -> "StageResult[T]":
        """Derive the status from the collected errors."""
        if any(e.fatal for e in errors):
            status = StageStatus.FAILED
        elif errors:
            status = StageStatus.PARTIAL
        else:
            status = StageStatus.SUCCEEDED
        return cls(status=status, value=value, errors=errors, resources=resources or [])
