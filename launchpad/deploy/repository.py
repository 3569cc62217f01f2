"""Repository provisioning on GitHub."""

import asyncio
from pathlib import Path

from launchpad.clients.git import GitPusher
from launchpad.clients.github import GitHubClient
from launchpad.config import Settings
from launchpad.core.exceptions import PlatformError
from launchpad.core.retry import RetryPolicy, retry_async
from launchpad.deploy.plan import DeploymentPlan
from launchpad.models.deployment import (
    DeploymentError,
    DeploymentStage,
    ErrorKind,
    PreparedWorkspace,
    ProvisionedResource,
    RepoHandle,
    ResourceKind,
    StageResult,
)
from launchpad.utils.logging import get_logger

COMMIT_MESSAGE = "Initial commit from Launchpad"


class RepositoryProvisioner:
    """Creates or reuses one repository per service and pushes its code.

    Reuse-by-name makes the step safe to repeat after a partial failure:
    the second run finds the repository the first run created and simply
    force-pushes a fresh single-commit history.
    """

    def __init__(
        self,
        settings: Settings,
        github: GitHubClient,
        git: GitPusher,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings
        self.github = github
        self.git = git
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.logger = get_logger("deploy.repository")

    async def provision(
        self,
        name: str,
        source_dir: Path,
        service: str = "",
        resource: ProvisionedResource | None = None,
    ) -> RepoHandle:
        """Ensure repository ``name`` exists and holds ``source_dir``.

        Raises:
            PlatformError: After retries are exhausted, or immediately for
                authorization failures
        """
        resource = resource or ProvisionedResource(kind=ResourceKind.REPOSITORY, name=name)

        def count_retry(attempt: int, error: Exception) -> None:
            resource.retry_count += 1

        async def call(operation, description: str):
            return await retry_async(operation, self.retry_policy, description, count_retry)

        owner = await call(self.github.get_owner, "github.get_owner")
        repo = await call(lambda: self.github.get_repository(owner, name), "github.get_repository")
        reused = repo is not None

        if repo is None:
            repo = await call(
                lambda: self.github.create_repository(
                    name, description=f"{service or name} deployed by Launchpad"
                ),
                "github.create_repository",
            )
            if repo is None:
                # Lost a creation race; the repository is there now
                reused = True
                repo = await call(
                    lambda: self.github.get_repository(owner, name), "github.get_repository"
                )
            if repo is None:
                raise PlatformError("github", f"repository {owner}/{name} not found after creation")

        self.logger.info(
            "repository.reused" if reused else "repository.created",
            repo=f"{owner}/{name}",
            service=service,
        )

        await call(lambda: self.git.push(source_dir, owner, name, COMMIT_MESSAGE), "git.push")

        html_url = repo.get("html_url") or f"https://github.com/{owner}/{name}"
        if reused:
            resource.mark_reused(str(repo.get("id", f"{owner}/{name}")), html_url)
        else:
            resource.mark_created(str(repo.get("id", f"{owner}/{name}")), html_url)

        return RepoHandle(
            service=service or name,
            name=name,
            owner=owner,
            html_url=html_url,
            clone_url=repo.get("clone_url") or f"https://github.com/{owner}/{name}.git",
            reused=reused,
            pushed=True,
        )

    async def provision_all(
        self, plan: DeploymentPlan, workspace: PreparedWorkspace
    ) -> StageResult[dict[str, RepoHandle]]:
        """Provision every repository of the plan concurrently.

        A failure in one repository never blocks the others; each failure is
        recorded as its own error.
        """
        specs = plan.repository_services
        resources = {
            spec.name: ProvisionedResource(kind=ResourceKind.REPOSITORY, name=spec.repo_name)
            for spec in specs
        }

        outcomes = await asyncio.gather(
            *(
                self.provision(
                    spec.repo_name,
                    workspace.service_dirs[spec.name],
                    service=spec.name,
                    resource=resources[spec.name],
                )
                for spec in specs
            ),
            return_exceptions=True,
        )

        handles: dict[str, RepoHandle] = {}
        errors: list[DeploymentError] = []
        for spec, outcome in zip(specs, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                resources[spec.name].mark_failed()
                self.logger.error(
                    "repository.failed",
                    repo=spec.repo_name,
                    error=str(outcome),
                    retries=resources[spec.name].retry_count,
                )
                errors.append(
                    DeploymentError.of(
                        DeploymentStage.REPOSITORIES,
                        ErrorKind.REPOSITORY_PROVISION_FAILURE,
                        f"{spec.repo_name}: {outcome}",
                        resource=spec.repo_name,
                    )
                )
            else:
                handles[spec.name] = outcome

        return StageResult.from_errors(handles, errors, list(resources.values()))
