"""Pytest configuration and fixtures.

Platform clients are replaced by in-memory fakes that keep just enough
state (repositories, projects, services, variables, DNS records) for a
second run to observe what the first one created.
"""

import json
from itertools import count
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from launchpad.config import Settings
from launchpad.core.exceptions import PlatformError
from launchpad.deploy.orchestrator import DeploymentOrchestrator
from launchpad.models.deployment import DeploymentRequest


class FakePlatform:
    """Records calls and raises queued failures per method."""

    def __init__(self):
        self.calls: list[tuple[Any, ...]] = []
        self._failures: dict[str, list[Exception]] = {}
        self._ids = count(1)

    def fail(self, method: str, *errors: Exception) -> None:
        """Make the next ``len(errors)`` calls of ``method`` raise."""
        self._failures.setdefault(method, []).extend(errors)

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def called(self, method: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == method]


class FakeGitHub(FakePlatform):
    def __init__(self, owner: str = "be1st-sites"):
        super().__init__()
        self.owner = owner
        self.repos: dict[str, dict[str, Any]] = {}

    async def get_owner(self) -> str:
        self._record("get_owner")
        return self.owner

    async def get_repository(self, owner: str, name: str) -> dict[str, Any] | None:
        self._record("get_repository", owner, name)
        return self.repos.get(name)

    async def create_repository(self, name: str, description: str = "") -> dict[str, Any] | None:
        self._record("create_repository", name)
        if name in self.repos:
            return None
        self.repos[name] = {
            "id": self._next_id("repo"),
            "name": name,
            "html_url": f"https://github.com/{self.owner}/{name}",
            "clone_url": f"https://github.com/{self.owner}/{name}.git",
        }
        return self.repos[name]


class FakeGitPusher(FakePlatform):
    async def push(self, source_dir: Path, owner: str, name: str, message: str) -> None:
        self._record("push", owner, name)


class FakeRailway(FakePlatform):
    def __init__(self):
        super().__init__()
        self.projects: dict[str, dict[str, Any]] = {}
        self.services: dict[str, list[dict[str, Any]]] = {}
        self.variables: dict[str, dict[str, str]] = {}
        self.domains: dict[str, list[str]] = {}
        self.custom_domains_by_service: dict[str, list[dict[str, Any]]] = {}
        # service name -> deployment status reported when polled
        self.build_status: dict[str, str] = {}
        # service id -> number of deployments so far; creation deploys once
        self.deployments: dict[str, int] = {}
        self._service_names: dict[str, str] = {}

    async def find_project(self, name: str) -> dict[str, Any] | None:
        self._record("find_project", name)
        return self.projects.get(name)

    async def create_project(self, name: str) -> dict[str, Any]:
        self._record("create_project", name)
        project = {
            "id": self._next_id("project"),
            "name": name,
            "environment_id": self._next_id("env"),
        }
        self.projects[name] = project
        self.services[project["id"]] = []
        return project

    async def list_services(self, project_id: str) -> list[dict[str, Any]]:
        self._record("list_services", project_id)
        return list(self.services.get(project_id, []))

    async def create_service(
        self,
        project_id: str,
        name: str,
        repo: str | None = None,
        image: str | None = None,
        branch: str = "main",
    ) -> dict[str, Any]:
        self._record("create_service", project_id, name, repo, image)
        service = {"id": self._next_id("svc"), "name": name}
        self.services.setdefault(project_id, []).append(service)
        self._service_names[service["id"]] = name
        self.deployments[service["id"]] = 1
        return service

    async def get_variables(
        self, project_id: str, environment_id: str, service_id: str
    ) -> dict[str, str]:
        self._record("get_variables", service_id)
        return dict(self.variables.get(service_id, {}))

    async def upsert_variables(
        self,
        project_id: str,
        environment_id: str,
        service_id: str,
        variables: dict[str, str],
    ) -> None:
        self._record("upsert_variables", service_id)
        self.variables.setdefault(service_id, {}).update(variables)

    async def redeploy(self, environment_id: str, service_id: str) -> None:
        self._record("redeploy", service_id)
        self.deployments[service_id] = self.deployments.get(service_id, 0) + 1

    async def latest_deployment(
        self, project_id: str, environment_id: str, service_id: str
    ) -> dict[str, Any] | None:
        self._record("latest_deployment", service_id)
        number = self.deployments.get(service_id, 0)
        if not number:
            return None
        name = self._service_names.get(service_id, "")
        return {
            "id": f"dep-{service_id}-{number}",
            "status": self.build_status.get(name, "SUCCESS"),
        }

    async def service_domains(
        self, project_id: str, environment_id: str, service_id: str
    ) -> list[str]:
        self._record("service_domains", service_id)
        return list(self.domains.get(service_id, []))

    async def create_service_domain(self, environment_id: str, service_id: str) -> str:
        self._record("create_service_domain", service_id)
        name = self._service_names.get(service_id, service_id)
        domain = f"{name}-{service_id}.up.railway.app"
        self.domains.setdefault(service_id, []).append(domain)
        return domain

    async def custom_domains(
        self, project_id: str, environment_id: str, service_id: str
    ) -> list[dict[str, Any]]:
        self._record("custom_domains", service_id)
        return list(self.custom_domains_by_service.get(service_id, []))

    async def create_custom_domain(
        self, project_id: str, environment_id: str, service_id: str, domain: str
    ) -> dict[str, Any]:
        self._record("create_custom_domain", service_id, domain)
        entry_id = self._next_id("cd")
        entry = {"id": entry_id, "domain": domain, "target": f"{entry_id}.railway-edge.net"}
        self.custom_domains_by_service.setdefault(service_id, []).append(entry)
        return entry

    def service_id(self, name: str) -> str:
        return next(sid for sid, sname in self._service_names.items() if sname == name)


class FakeCloudflare(FakePlatform):
    def __init__(self):
        super().__init__()
        self.records: dict[str, list[dict[str, Any]]] = {}

    async def list_records(self, zone_id: str, name: str) -> list[dict[str, Any]]:
        self._record("list_records", zone_id, name)
        return [r for r in self.records.get(zone_id, []) if r["name"] == name]

    async def delete_record(self, zone_id: str, record_id: str) -> None:
        self._record("delete_record", zone_id, record_id)
        self.records[zone_id] = [r for r in self.records.get(zone_id, []) if r["id"] != record_id]

    async def create_record(
        self,
        zone_id: str,
        record_type: str,
        name: str,
        content: str,
        proxied: bool = False,
        ttl: int = 1,
    ) -> dict[str, Any]:
        self._record("create_record", zone_id, record_type, name, content)
        record = {
            "id": self._next_id("rec"),
            "type": record_type,
            "name": name,
            "content": content,
            "proxied": proxied,
        }
        self.records.setdefault(zone_id, []).append(record)
        return record

    def named(self, zone_id: str, name: str) -> list[dict[str, Any]]:
        return [r for r in self.records.get(zone_id, []) if r["name"] == name]


def transient(platform: str = "railway") -> PlatformError:
    """A failure the retry policy repeats."""
    return PlatformError(platform, "503 upstream unavailable", status_code=503, retryable=True)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with fabricated credentials and no waiting."""
    return Settings(
        github_token="ghp_test_token",
        railway_token="railway-test-token",
        cloudflare_token="cf-test-token",
        cloudflare_zone_id="zone-io",
        cloudflare_zone_id_app="zone-app",
        retry_max_attempts=3,
        retry_base_delay_seconds=0,
        retry_max_delay_seconds=0,
        compute_settle_seconds=0,
        build_poll_interval_seconds=0,
        build_timeout_seconds=0.05,
        log_directory=str(tmp_path / "logs"),
    )


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def git() -> FakeGitPusher:
    return FakeGitPusher()


@pytest.fixture
def railway() -> FakeRailway:
    return FakeRailway()


@pytest.fixture
def cloudflare() -> FakeCloudflare:
    return FakeCloudflare()


@pytest.fixture
def orchestrator(
    settings: Settings,
    github: FakeGitHub,
    git: FakeGitPusher,
    railway: FakeRailway,
    cloudflare: FakeCloudflare,
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(
        settings, github=github, railway=railway, cloudflare=cloudflare, git=git
    )


def write_package(directory: Path, name: str, scripts: dict[str, str] | None = None) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    package = {"name": name, "scripts": scripts or {"build": "vite build"}}
    (directory / "package.json").write_text(json.dumps(package, indent=2))


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A generated full-stack site as the page generator leaves it."""
    root = tmp_path / "acme-cafe"
    write_package(root / "backend", "backend", {"start": "node server.js"})
    write_package(root / "frontend", "frontend")

    (root / "backend" / ".env").write_text(
        "PORT=5000\nDATABASE_URL=postgresql://postgres:pw@localhost:5432/app\n"
    )
    (root / "frontend" / "node_modules" / "react").mkdir(parents=True)
    (root / "frontend" / "dist").mkdir()
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/master\n")
    return root


@pytest.fixture
def companion_dir(tmp_path: Path) -> Path:
    """A generated companion app: a single static frontend at the root."""
    root = tmp_path / "acme-cafe-app"
    write_package(root, "acme-cafe-app")
    return root


@pytest.fixture
def website_request(project_dir: Path) -> DeploymentRequest:
    return DeploymentRequest(project_path=str(project_dir), project_name="Acme Cafe")


@pytest.fixture
async def client(settings: Settings, orchestrator: DeploymentOrchestrator) -> AsyncClient:
    """Create an async test client wired to the fake platforms."""
    from launchpad.api.deps import get_app_settings, get_orchestrator
    from launchpad.core.events import get_event_bus
    from launchpad.core.session import get_session_manager
    from launchpad.main import app

    manager = get_session_manager()
    bus = get_event_bus()
    manager._records.clear()
    bus._reporters.clear()

    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    manager._records.clear()
    bus._reporters.clear()
