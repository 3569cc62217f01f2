"""Compute provisioning on Railway.

Creates or reuses the project and its services, resolves generated
endpoints in dependency order and registers the public hostnames. It then
injects configuration and waits for the builds to settle.
"""

import asyncio
import secrets
from typing import Any, Awaitable, Callable, TypeVar

from launchpad.clients.railway import RailwayClient
from launchpad.config import Settings
from launchpad.core.events import ProgressReporter
from launchpad.core.exceptions import LaunchpadError, PlatformError
from launchpad.core.retry import RetryPolicy, retry_async
from launchpad.deploy.plan import DeploymentPlan, ServiceSpec
from launchpad.deploy.workspace import ensure_query_param
from launchpad.models.deployment import (
    AdminCredentials,
    ComputeHandle,
    DeploymentError,
    DeploymentStage,
    ErrorKind,
    EventState,
    ProvisionedResource,
    RepoHandle,
    ResourceKind,
    ServiceHandle,
    ServiceState,
    StageResult,
)
from launchpad.utils.logging import get_logger

T = TypeVar("T")

SUCCESS_STATUSES = frozenset({"SUCCESS"})
FAILED_STATUSES = frozenset({"FAILED", "CRASHED", "REMOVED"})

POSTGRES_USER = "postgres"
POSTGRES_DB = "app"
BACKEND_PORT = "5000"


def build_state(status: str | None) -> ServiceState:
    """Map a Railway deployment status onto the service state machine."""
    if status in SUCCESS_STATUSES:
        return ServiceState.DEPLOYED
    if status in FAILED_STATUSES:
        return ServiceState.BUILD_FAILED
    return ServiceState.BUILDING


class ComputeProvisioner:
    """Provisions the Railway side of a deployment.

    Every create is preceded by a lookup by name, so repeating the stage
    (or retrying a create whose response was lost) converges on the same
    project and services instead of duplicating them.
    """

    def __init__(
        self,
        settings: Settings,
        railway: RailwayClient,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings
        self.railway = railway
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.logger = get_logger("deploy.compute")

    async def _call(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
        resource: ProvisionedResource | None = None,
    ) -> T:
        def count_retry(attempt: int, error: Exception) -> None:
            if resource is not None:
                resource.retry_count += 1

        return await retry_async(operation, self.retry_policy, description, count_retry)

    async def provision(
        self,
        repo_handles: dict[str, RepoHandle],
        plan: DeploymentPlan,
        reporter: ProgressReporter | None = None,
    ) -> StageResult[ComputeHandle]:
        """Provision project, services, endpoints and variables, then deploy."""
        resources: list[ProvisionedResource] = []
        errors: list[DeploymentError] = []
        handle: ComputeHandle | None = None

        try:
            await self._report(reporter, "railway-project", "Creating Railway project...", "🚂", 42)
            handle = await self._ensure_project(plan.subdomain, resources)

            await self._report(reporter, "railway-services", "Creating services...", "⚙️", 48)
            await self._ensure_services(handle, plan, repo_handles, resources)

            await self._report(reporter, "domains", "Generating service domains...", "🔗", 55)
            await self._resolve_endpoints(handle, plan, resources)

            await self._report(reporter, "custom-domains", "Registering custom domains...", "🌍", 58)
            errors.extend(await self._register_custom_domains(handle, plan, resources))

            await self._report(reporter, "railway-env", "Configuring environment variables...", "🔐", 62)
            await self._configure_variables(handle, plan)
        except LaunchpadError as e:
            self.logger.error("compute.provision_failed", error=e.message, subdomain=plan.subdomain)
            errors.append(
                DeploymentError.of(
                    DeploymentStage.COMPUTE, ErrorKind.COMPUTE_PROVISION_FAILURE, e.message
                )
            )
            return StageResult.from_errors(handle, errors, resources)

        errors.extend(await self._deploy_and_wait(handle, plan, reporter))

        for spec in plan.public_services:
            service = handle.services.get(spec.name)
            if service is None or not service.endpoint:
                errors.append(
                    DeploymentError.of(
                        DeploymentStage.COMPUTE,
                        ErrorKind.COMPUTE_PROVISION_FAILURE,
                        f"service {spec.name} has no endpoint",
                        resource=spec.name,
                    )
                )

        return StageResult.from_errors(handle, errors, resources)

    async def _report(
        self,
        reporter: ProgressReporter | None,
        step: str,
        status: str,
        icon: str,
        progress: int,
        state: EventState = EventState.INFO,
    ) -> None:
        if reporter is not None:
            await reporter.emit(step, status, icon=icon, progress=progress, state=state)

    async def _ensure_project(
        self, name: str, resources: list[ProvisionedResource]
    ) -> ComputeHandle:
        resource = ProvisionedResource(kind=ResourceKind.COMPUTE_PROJECT, name=name)
        resources.append(resource)
        created = False

        async def find_or_create() -> dict[str, Any]:
            nonlocal created
            project = await self.railway.find_project(name)
            if project is not None:
                return project
            project = await self.railway.create_project(name)
            created = True
            return project

        try:
            project = await self._call(find_or_create, "railway.ensure_project", resource)
        except PlatformError:
            resource.mark_failed()
            raise

        if not project.get("environment_id"):
            resource.mark_failed()
            raise PlatformError("railway", f"project {name} has no environment")

        url = f"https://railway.app/project/{project['id']}"
        if created:
            resource.mark_created(project["id"], url)
        else:
            resource.mark_reused(project["id"], url)
        self.logger.info(
            "compute.project_created" if created else "compute.project_reused",
            project_id=project["id"],
            name=name,
        )
        return ComputeHandle(
            project_id=project["id"],
            environment_id=project["environment_id"],
            reused=not created,
        )

    async def _ensure_services(
        self,
        handle: ComputeHandle,
        plan: DeploymentPlan,
        repo_handles: dict[str, RepoHandle],
        resources: list[ProvisionedResource],
    ) -> None:
        for spec in plan.service_order():
            repo: str | None = None
            if spec.repo_name:
                repo_handle = repo_handles.get(spec.name)
                if repo_handle is None:
                    raise PlatformError("railway", f"no repository for service {spec.name}")
                repo = repo_handle.full_name

            resource = ProvisionedResource(kind=ResourceKind.COMPUTE_SERVICE, name=spec.name)
            resources.append(resource)
            try:
                service, created = await self._call(
                    lambda: self._find_or_create_service(handle.project_id, spec, repo),
                    f"railway.ensure_service.{spec.name}",
                    resource,
                )
            except PlatformError:
                resource.mark_failed()
                raise

            if created:
                resource.mark_created(service["id"])
            else:
                resource.mark_reused(service["id"])
            handle.services[spec.name] = ServiceHandle(
                name=spec.name,
                service_id=service["id"],
                repo=repo,
                reused=not created,
            )
            self.logger.info(
                "compute.service_created" if created else "compute.service_reused",
                service=spec.name,
                service_id=service["id"],
                repo=repo,
            )

    async def _find_or_create_service(
        self, project_id: str, spec: ServiceSpec, repo: str | None
    ) -> tuple[dict[str, Any], bool]:
        for service in await self.railway.list_services(project_id):
            if service["name"] == spec.name:
                return service, False
        service = await self.railway.create_service(
            project_id, spec.name, repo=repo, image=spec.image
        )
        return service, True

    async def _resolve_endpoints(
        self,
        handle: ComputeHandle,
        plan: DeploymentPlan,
        resources: list[ProvisionedResource],
    ) -> None:
        """Resolve generated domains layer by layer along the service graph."""
        for layer in plan.service_layers():
            public = [spec for spec in layer if spec.public]
            await asyncio.gather(
                *(self._ensure_domain(handle, spec, resources) for spec in public)
            )

    async def _ensure_domain(
        self,
        handle: ComputeHandle,
        spec: ServiceSpec,
        resources: list[ProvisionedResource],
    ) -> None:
        service = handle.services[spec.name]
        resource = ProvisionedResource(kind=ResourceKind.SERVICE_DOMAIN, name=spec.name)
        resources.append(resource)
        created = False

        async def find_or_create() -> str:
            nonlocal created
            domains = await self.railway.service_domains(
                handle.project_id, handle.environment_id, service.service_id
            )
            if domains:
                return domains[0]
            domain = await self.railway.create_service_domain(
                handle.environment_id, service.service_id
            )
            created = True
            return domain

        try:
            domain = await self._call(find_or_create, f"railway.ensure_domain.{spec.name}", resource)
        except PlatformError:
            resource.mark_failed()
            raise

        service.endpoint = domain
        if created:
            resource.mark_created(domain, f"https://{domain}")
        else:
            resource.mark_reused(domain, f"https://{domain}")
        self.logger.info("compute.endpoint_resolved", service=spec.name, endpoint=domain)

    async def _register_custom_domains(
        self,
        handle: ComputeHandle,
        plan: DeploymentPlan,
        resources: list[ProvisionedResource],
    ) -> list[DeploymentError]:
        """Attach each public hostname to its service so Railway routes it.

        A hostname Railway refused is advisory: the service stays reachable on
        its generated endpoint.
        """
        outcomes = await asyncio.gather(
            *(
                self._ensure_custom_domain(handle, spec, resources)
                for spec in plan.public_services
            )
        )
        return [error for error in outcomes if error is not None]

    async def _ensure_custom_domain(
        self,
        handle: ComputeHandle,
        spec: ServiceSpec,
        resources: list[ProvisionedResource],
    ) -> DeploymentError | None:
        service = handle.services[spec.name]
        resource = ProvisionedResource(kind=ResourceKind.CUSTOM_DOMAIN, name=spec.hostname)
        resources.append(resource)
        created = False

        async def find_or_create() -> dict[str, Any]:
            nonlocal created
            for domain in await self.railway.custom_domains(
                handle.project_id, handle.environment_id, service.service_id
            ):
                if domain["domain"] == spec.hostname:
                    return domain
            domain = await self.railway.create_custom_domain(
                handle.project_id, handle.environment_id, service.service_id, spec.hostname
            )
            created = True
            return domain

        try:
            domain = await self._call(
                find_or_create, f"railway.ensure_custom_domain.{spec.name}", resource
            )
        except PlatformError as e:
            resource.mark_failed()
            self.logger.warning(
                "compute.custom_domain_failed", hostname=spec.hostname, error=e.message
            )
            return DeploymentError.of(
                DeploymentStage.COMPUTE,
                ErrorKind.DNS_RECONCILE_FAILURE,
                f"{spec.hostname}: custom domain not registered: {e.message}",
                resource=spec.hostname,
            )

        service.custom_domain = spec.hostname
        service.custom_domain_target = domain.get("target")
        if created:
            resource.mark_created(domain["id"], f"https://{spec.hostname}")
        else:
            resource.mark_reused(domain["id"], f"https://{spec.hostname}")
        self.logger.info(
            "compute.custom_domain_registered",
            hostname=spec.hostname,
            target=service.dns_target,
            created=created,
        )
        return None

    async def _configure_variables(self, handle: ComputeHandle, plan: DeploymentPlan) -> None:
        names = [spec.name for spec in plan.service_order()]
        existing_sets = await asyncio.gather(
            *(
                self._call(
                    lambda name=name: self.railway.get_variables(
                        handle.project_id,
                        handle.environment_id,
                        handle.services[name].service_id,
                    ),
                    f"railway.get_variables.{name}",
                )
                for name in names
            )
        )
        existing = dict(zip(names, existing_sets))

        variables = self.build_variables(handle, plan, existing)

        await asyncio.gather(
            *(
                self._call(
                    lambda name=name: self.railway.upsert_variables(
                        handle.project_id,
                        handle.environment_id,
                        handle.services[name].service_id,
                        variables[name],
                    ),
                    f"railway.upsert_variables.{name}",
                )
                for name in names
            )
        )
        self.logger.info(
            "compute.variables_set",
            services={name: sorted(variables[name]) for name in names},
        )

    def build_variables(
        self,
        handle: ComputeHandle,
        plan: DeploymentPlan,
        existing: dict[str, dict[str, str]],
    ) -> dict[str, dict[str, str]]:
        """Compute every service's variables.

        Secrets already present on a service are kept so re-running a
        deployment never rotates passwords under a live database. Admin
        credentials are only reported when they are seeded here.
        """
        variables: dict[str, dict[str, str]] = {}
        backend = handle.services.get("backend")

        if "postgres" in handle.services:
            current = existing.get("postgres", {})
            password = current.get("POSTGRES_PASSWORD") or secrets.token_hex(16)
            variables["postgres"] = {
                "POSTGRES_USER": POSTGRES_USER,
                "POSTGRES_PASSWORD": password,
                "POSTGRES_DB": POSTGRES_DB,
                "PGPASSWORD": password,
            }

        if backend is not None:
            current = existing.get("backend", {})
            admin_password = current.get("ADMIN_PASSWORD")
            if admin_password is None:
                admin_password = secrets.token_hex(8)
                handle.credentials = AdminCredentials(
                    admin_email=plan.admin_email, admin_password=admin_password
                )

            origins = [plan.public_url("frontend"), plan.public_url("admin")]
            origins += [
                handle.services[name].endpoint_url
                for name in ("frontend", "admin")
                if name in handle.services
            ]

            backend_vars = {
                "NODE_ENV": "production",
                "PORT": BACKEND_PORT,
                "JWT_SECRET": current.get("JWT_SECRET") or secrets.token_hex(32),
                "ADMIN_EMAIL": current.get("ADMIN_EMAIL") or plan.admin_email,
                "ADMIN_PASSWORD": admin_password,
                "FRONTEND_URL": plan.public_url("frontend") or "",
                "CORS_ORIGINS": ",".join(origin for origin in origins if origin),
            }
            if "postgres" in variables:
                password = variables["postgres"]["POSTGRES_PASSWORD"]
                backend_vars["DATABASE_URL"] = ensure_query_param(
                    f"postgresql://{POSTGRES_USER}:{password}"
                    f"@postgres.railway.internal:5432/{POSTGRES_DB}"
                )
            variables["backend"] = backend_vars

        for name in ("frontend", "admin"):
            if name not in handle.services:
                continue
            static_vars = {"NODE_ENV": "production", "VITE_API_URL": plan.api_url}
            if backend is not None and backend.endpoint_url:
                static_vars["VITE_API_FALLBACK_URL"] = backend.endpoint_url
            variables[name] = static_vars

        return variables

    async def _deploy_and_wait(
        self,
        handle: ComputeHandle,
        plan: DeploymentPlan,
        reporter: ProgressReporter | None,
    ) -> list[DeploymentError]:
        if self.settings.compute_settle_seconds > 0:
            await self._report(
                reporter, "railway-wait", "Waiting for Railway webhooks...", "⏳", 65
            )
            await asyncio.sleep(self.settings.compute_settle_seconds)

        order = plan.service_order()
        # Deployment current on a reused service before the trigger; never the new build
        previous: dict[str, str | None] = {}
        for index, spec in enumerate(order):
            service = handle.services[spec.name]
            previous[spec.name] = None
            if service.reused:
                latest = await self._latest_deployment(handle, service)
                previous[spec.name] = latest.get("id") if latest else None
            await self._report(
                reporter,
                f"deploy-{spec.name}",
                f"Deploying {spec.name} service...",
                "🚀",
                70 + index * 2,
            )
            try:
                await self._call(
                    lambda: self.railway.redeploy(handle.environment_id, service.service_id),
                    f"railway.redeploy.{spec.name}",
                )
            except PlatformError as e:
                # Railway still deploys from the GitHub push
                self.logger.warning(
                    "compute.deploy_trigger_failed", service=spec.name, error=e.message
                )
            service.state = ServiceState.BUILDING

        await self._report(reporter, "build", "Waiting for builds to finish...", "🏗️", 78)
        states = await asyncio.gather(
            *(
                self._wait_for_build(handle, handle.services[spec.name], previous[spec.name])
                for spec in order
            )
        )

        errors: list[DeploymentError] = []
        for spec, state in zip(order, states):
            handle.services[spec.name].state = state
            if state == ServiceState.TIMED_OUT:
                errors.append(
                    DeploymentError.of(
                        DeploymentStage.COMPUTE,
                        ErrorKind.BUILD_TIMEOUT,
                        f"{spec.name} build did not finish within "
                        f"{self.settings.build_timeout_seconds:.0f}s; check the Railway dashboard",
                        resource=spec.name,
                    )
                )
            elif state == ServiceState.BUILD_FAILED:
                errors.append(
                    DeploymentError.of(
                        DeploymentStage.COMPUTE,
                        ErrorKind.COMPUTE_PROVISION_FAILURE,
                        f"{spec.name} build failed",
                        resource=spec.name,
                    )
                )
        return errors

    async def _latest_deployment(
        self, handle: ComputeHandle, service: ServiceHandle
    ) -> dict[str, Any] | None:
        try:
            return await self._call(
                lambda: self.railway.latest_deployment(
                    handle.project_id, handle.environment_id, service.service_id
                ),
                f"railway.latest_deployment.{service.name}",
            )
        except PlatformError as e:
            self.logger.warning("compute.poll_failed", service=service.name, error=e.message)
            return None

    async def _wait_for_build(
        self,
        handle: ComputeHandle,
        service: ServiceHandle,
        previous_id: str | None = None,
    ) -> ServiceState:
        """Poll the latest deployment until it is terminal or the budget runs out.

        ``previous_id`` is the deployment that was current before this run
        triggered a build; it is treated as not started yet.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.build_timeout_seconds

        while True:
            deployment = await self._latest_deployment(handle, service)
            if previous_id and deployment and deployment.get("id") == previous_id:
                deployment = None

            state = build_state(deployment.get("status") if deployment else None)
            if state != ServiceState.BUILDING:
                self.logger.info(
                    "compute.build_finished",
                    service=service.name,
                    state=state.value,
                    deployment_id=deployment.get("id") if deployment else None,
                )
                return state

            remaining = deadline - loop.time()
            if remaining <= 0:
                self.logger.warning("compute.build_timed_out", service=service.name)
                return ServiceState.TIMED_OUT
            await asyncio.sleep(min(self.settings.build_poll_interval_seconds, remaining))
