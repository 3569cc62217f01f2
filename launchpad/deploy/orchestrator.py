"""Deployment Orchestrator.

Runs the deployment stages in order and aggregates their outcomes into a
single :class:`DeploymentResult`.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from launchpad.clients.cloudflare import CloudflareClient
from launchpad.clients.git import GitPusher
from launchpad.clients.github import GitHubClient
from launchpad.clients.railway import RailwayClient
from launchpad.config import Settings, get_settings
from launchpad.core.events import ProgressReporter
from launchpad.core.exceptions import LaunchpadError
from launchpad.core.retry import RetryPolicy
from launchpad.deploy.compute import ComputeProvisioner
from launchpad.deploy.credentials import CredentialValidator
from launchpad.deploy.dns import DNSConfigurator
from launchpad.deploy.plan import DeploymentPlan
from launchpad.deploy.repository import RepositoryProvisioner
from launchpad.deploy.workspace import WorkspacePreparer
from launchpad.models.deployment import (
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
    PreparedWorkspace,
    ProvisionedResource,
    RepoHandle,
    StageResult,
)
from launchpad.utils.logging import get_logger

# stage -> (label, icon, progress when started, progress when finished)
STAGES: dict[DeploymentStage, tuple[str, str, int, int]] = {
    DeploymentStage.CREDENTIALS: ("Checking credentials", "🔍", 0, 5),
    DeploymentStage.PREPARE: ("Preparing project", "📁", 5, 15),
    DeploymentStage.REPOSITORIES: ("Creating GitHub repositories", "📦", 15, 40),
    DeploymentStage.COMPUTE: ("Deploying to Railway", "🚂", 40, 85),
    DeploymentStage.DNS: ("Configuring DNS", "🌐", 85, 95),
    DeploymentStage.FINALIZING: ("Finalizing", "🏁", 95, 99),
}


@dataclass
class DeploymentRun:
    """Mutable state threaded through the stages of one deployment."""

    request: DeploymentRequest
    reporter: ProgressReporter
    plan: DeploymentPlan | None = None
    workspace: PreparedWorkspace | None = None
    repos: dict[str, RepoHandle] = field(default_factory=dict)
    compute: ComputeHandle | None = None
    dns: list[DNSResult] = field(default_factory=list)
    urls: DeploymentUrls = field(default_factory=DeploymentUrls)
    errors: list[DeploymentError] = field(default_factory=list)
    resources: list[ProvisionedResource] = field(default_factory=list)

    @property
    def halted(self) -> bool:
        return any(e.fatal for e in self.errors)


StageHandler = Callable[[DeploymentRun], Awaitable[StageResult]]


class DeploymentOrchestrator:
    """Orchestrates one deployment across GitHub, Railway and Cloudflare.

    Pipeline stages:
    1. credentials - Pre-flight check, no network calls
    2. prepare - Normalize the project directory
    3. repositories - Create/reuse repositories and push code
    4. compute - Create/reuse the Railway project and services, then build
    5. dns - Point public hostnames at the service endpoints
    6. finalizing - Assemble URLs and credentials
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        github: GitHubClient | None = None,
        railway: RailwayClient | None = None,
        cloudflare: CloudflareClient | None = None,
        git: GitPusher | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings or get_settings()
        retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)

        self.credentials = CredentialValidator(self.settings)
        self.workspace = WorkspacePreparer(self.settings)
        self.repositories = RepositoryProvisioner(
            self.settings,
            github or GitHubClient(self.settings),
            git or GitPusher(self.settings),
            retry_policy,
        )
        self.compute = ComputeProvisioner(
            self.settings, railway or RailwayClient(self.settings), retry_policy
        )
        self.dns = DNSConfigurator(
            self.settings, cloudflare or CloudflareClient(self.settings), retry_policy
        )
        self.logger = get_logger("orchestrator")

    async def deploy(
        self,
        request: DeploymentRequest,
        reporter: ProgressReporter | None = None,
    ) -> DeploymentResult:
        """Run every stage for ``request``.

        Never raises: failures are reported as errors on the result, and
        whatever was provisioned before a fatal error is still listed in
        ``resources`` so the next run can pick it up.
        """
        started = time.monotonic()
        run = DeploymentRun(
            request=request,
            reporter=reporter or ProgressReporter(request.on_progress),
        )
        self.logger.info(
            "orchestrator.deployment.started",
            project_name=request.project_name,
            app_type=request.app_type.value,
        )

        handlers: list[tuple[DeploymentStage, StageHandler]] = [
            (DeploymentStage.CREDENTIALS, self._check_credentials),
            (DeploymentStage.PREPARE, self._prepare_workspace),
            (DeploymentStage.REPOSITORIES, self._provision_repositories),
            (DeploymentStage.COMPUTE, self._provision_compute),
            (DeploymentStage.DNS, self._configure_dns),
            (DeploymentStage.FINALIZING, self._finalize),
        ]
        for stage, handler in handlers:
            if run.halted:
                await self._emit_stage(run, stage, EventState.SKIPPED, "Skipped")
                continue
            await self._run_stage(run, stage, handler)

        result = self._build_result(run, started)
        await run.reporter.emit(
            "complete",
            "Deployment complete!" if result.success else "Deployment failed",
            icon="🎉" if result.success else "❌",
            progress=100,
            state=EventState.SUCCEEDED if result.success else EventState.FAILED,
            result=result.model_dump(mode="json"),
        )

        log = self.logger.info if result.success else self.logger.error
        log(
            "orchestrator.deployment.completed",
            project_name=request.project_name,
            success=result.success,
            errors=len(result.errors),
            provisioned=sum(r.succeeded for r in result.resources),
            duration_ms=result.duration_ms,
        )
        return result

    async def _run_stage(
        self, run: DeploymentRun, stage: DeploymentStage, handler: StageHandler
    ) -> None:
        await self._emit_stage(run, stage, EventState.STARTED, "Started")
        try:
            outcome = await handler(run)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.exception("orchestrator.stage.crashed", stage=stage.value, error=str(e))
            # Fatality follows the stage's kind, so a crashing DNS stage stays advisory
            outcome = StageResult.from_errors(
                None, [DeploymentError.of(stage, _STAGE_KINDS[stage], f"unexpected error: {e}")]
            )

        run.errors.extend(outcome.errors)
        run.resources.extend(outcome.resources)

        if outcome.fatal:
            self.logger.error(
                "orchestrator.stage.failed",
                stage=stage.value,
                errors=[e.message for e in outcome.errors],
            )
            await self._emit_stage(
                run, stage, EventState.FAILED, "; ".join(e.message for e in outcome.errors)
            )
        else:
            status = "Done"
            if outcome.errors:
                status = f"Done with {len(outcome.errors)} warning(s)"
            self.logger.info(
                "orchestrator.stage.completed", stage=stage.value, status=outcome.status.value
            )
            await self._emit_stage(run, stage, EventState.SUCCEEDED, status)

    async def _emit_stage(
        self, run: DeploymentRun, stage: DeploymentStage, state: EventState, detail: str
    ) -> None:
        label, icon, start, end = STAGES[stage]
        if state == EventState.FAILED:
            icon = "❌"
        progress = start if state == EventState.STARTED else end
        await run.reporter.emit(
            stage.value, f"{label}: {detail}", icon=icon, progress=progress, state=state
        )

    async def _check_credentials(self, run: DeploymentRun) -> StageResult[None]:
        missing = self.credentials.missing(run.request.app_type)
        if not missing:
            return StageResult.from_errors(None, [])
        return StageResult.from_errors(
            None,
            [
                DeploymentError.of(
                    DeploymentStage.CREDENTIALS,
                    ErrorKind.CREDENTIAL_MISSING,
                    f"Missing credentials: {', '.join(missing)}",
                )
            ],
        )

    async def _prepare_workspace(self, run: DeploymentRun) -> StageResult[PreparedWorkspace]:
        try:
            run.plan = DeploymentPlan.build(run.request, self.settings)
            # Blocking filesystem work
            run.workspace = await asyncio.to_thread(
                self.workspace.prepare, run.request.project_path, run.plan
            )
        except LaunchpadError as e:
            return StageResult.from_errors(
                None,
                [
                    DeploymentError.of(
                        DeploymentStage.PREPARE, ErrorKind.WORKSPACE_PREP_FAILURE, e.message
                    )
                ],
            )
        return StageResult.from_errors(run.workspace, [])

    async def _provision_repositories(
        self, run: DeploymentRun
    ) -> StageResult[dict[str, RepoHandle]]:
        outcome = await self.repositories.provision_all(run.plan, run.workspace)
        run.repos = outcome.value or {}
        return outcome

    async def _provision_compute(self, run: DeploymentRun) -> StageResult[ComputeHandle]:
        outcome = await self.compute.provision(run.repos, run.plan, run.reporter)
        run.compute = outcome.value
        return outcome

    async def _configure_dns(self, run: DeploymentRun) -> StageResult[list[DNSResult]]:
        outcome = await self.dns.configure(run.plan, run.compute)
        run.dns = outcome.value or []
        return outcome

    async def _finalize(self, run: DeploymentRun) -> StageResult[DeploymentUrls]:
        run.urls = self.build_urls(run)
        return StageResult.from_errors(run.urls, [])

    def build_urls(self, run: DeploymentRun) -> DeploymentUrls:
        """Pick the URL each public service is reachable at.

        A custom hostname is only reported once Railway registered it on the
        service and its record was reconciled; otherwise the service's
        generated endpoint is used.
        """
        plan = run.plan
        if plan is None:
            return DeploymentUrls()

        reconciled = {r.hostname for r in run.dns if r.success}
        services = run.compute.services if run.compute else {}

        def reachable(name: str) -> str | None:
            spec = plan.service(name)
            service = services.get(name)
            if spec is None or service is None:
                return None
            if spec.hostname in reconciled and service.custom_domain == spec.hostname:
                return f"https://{spec.hostname}"
            return service.endpoint_url

        urls = DeploymentUrls(
            frontend=reachable("frontend") or "",
            backend=reachable("backend"),
            admin=reachable("admin"),
            repositories={name: repo.html_url for name, repo in run.repos.items()},
            railway=run.compute.dashboard_url if run.compute else None,
            direct={
                name: service.endpoint_url
                for name, service in services.items()
                if service.endpoint_url
            },
        )
        if plan.app_type == AppType.COMPANION_APP:
            urls.companion_url = urls.frontend or None
            urls.parent_site = f"https://{plan.parent_site_subdomain}.{plan.parent_domain}"
            urls.parent_api = plan.api_url
        return urls

    def _build_result(self, run: DeploymentRun, started: float) -> DeploymentResult:
        urls = run.urls
        if not urls.frontend:
            # Partial URLs for a halted run; finalizing itself may be what failed
            try:
                urls = self.build_urls(run)
            except Exception:
                self.logger.exception("orchestrator.urls_unavailable")
        success = not run.halted and bool(urls.frontend)
        return DeploymentResult(
            success=success,
            urls=urls,
            credentials=run.compute.credentials if run.compute else None,
            railway_project_id=run.compute.project_id if run.compute else None,
            errors=run.errors,
            resources=run.resources,
            duration_ms=int((time.monotonic() - started) * 1000),
        )


# Kind reported when a stage fails with an exception nothing anticipated
_STAGE_KINDS = {
    DeploymentStage.CREDENTIALS: ErrorKind.CREDENTIAL_MISSING,
    DeploymentStage.PREPARE: ErrorKind.WORKSPACE_PREP_FAILURE,
    DeploymentStage.REPOSITORIES: ErrorKind.REPOSITORY_PROVISION_FAILURE,
    DeploymentStage.COMPUTE: ErrorKind.COMPUTE_PROVISION_FAILURE,
    DeploymentStage.DNS: ErrorKind.DNS_RECONCILE_FAILURE,
    DeploymentStage.FINALIZING: ErrorKind.FINALIZE_FAILURE,
}
