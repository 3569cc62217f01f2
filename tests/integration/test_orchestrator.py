"""Integration tests for the deployment orchestrator."""

from pathlib import Path

import pytest

from launchpad.config import Settings
from launchpad.core.events import ProgressReporter
from launchpad.core.exceptions import PlatformAuthError
from launchpad.deploy.orchestrator import DeploymentOrchestrator
from launchpad.models.deployment import (
    AppType,
    DeploymentRequest,
    DeploymentStage,
    ErrorKind,
    EventState,
    ProgressEvent,
    ResourceKind,
    ResourceState,
)
from tests.conftest import FakeCloudflare, FakeGitHub, FakeGitPusher, FakeRailway, transient

FRONTEND_HOST = "acme-cafe.be1st.io"


def platform_calls(*fakes) -> int:
    return sum(len(fake.calls) for fake in fakes)


class TestSuccessfulDeployment:
    """Tests for a clean first deployment."""

    async def test_website(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        github: FakeGitHub,
        cloudflare: FakeCloudflare,
    ):
        """Test a new website deploys end to end onto its custom hostname."""
        result = await orchestrator.deploy(website_request)

        assert result.success is True
        assert result.fatal_errors == []
        assert result.urls.frontend == f"https://{FRONTEND_HOST}"
        assert result.urls.backend == f"https://api.{FRONTEND_HOST}"
        assert result.urls.repositories == {
            "backend": "https://github.com/be1st-sites/acme-cafe-backend",
            "frontend": "https://github.com/be1st-sites/acme-cafe-frontend",
        }
        assert result.urls.railway.startswith("https://railway.app/project/")
        assert set(result.urls.direct) == {"backend", "frontend"}
        assert result.railway_project_id is not None
        assert result.credentials is not None
        assert result.credentials.admin_email == "admin@be1st.io"
        assert result.duration_ms >= 0

        assert set(github.repos) == {"acme-cafe-backend", "acme-cafe-frontend"}
        assert len(cloudflare.named("zone-io", FRONTEND_HOST)) == 1
        assert all(r.state == ResourceState.CREATED for r in result.resources)

    async def test_custom_domain_registered_before_dns(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        railway: FakeRailway,
        cloudflare: FakeCloudflare,
    ):
        """Test the public hostname is attached on Railway and its CNAME follows Railway's target."""
        result = await orchestrator.deploy(website_request)

        registered = {call[2] for call in railway.called("create_custom_domain")}
        assert registered == {FRONTEND_HOST, f"api.{FRONTEND_HOST}"}

        frontend_id = railway.service_id("frontend")
        [domain] = railway.custom_domains_by_service[frontend_id]
        [record] = cloudflare.named("zone-io", FRONTEND_HOST)
        assert record["content"] == domain["target"]
        assert result.urls.frontend == f"https://{FRONTEND_HOST}"
        kinds = [r.kind for r in result.resources]
        assert kinds.count(ResourceKind.CUSTOM_DOMAIN) == 2

    async def test_progress_events(
        self, orchestrator: DeploymentOrchestrator, website_request: DeploymentRequest
    ):
        """Test every stage reports start and finish, ending with complete."""
        received: list[ProgressEvent] = []
        request = website_request.model_copy(update={"on_progress": received.append})

        result = await orchestrator.deploy(request)

        for stage in DeploymentStage:
            states = [e.state for e in received if e.step == stage.value]
            assert states == [EventState.STARTED, EventState.SUCCEEDED], stage

        final = received[-1]
        assert final.step == "complete"
        assert final.progress == 100
        assert final.result["success"] is True
        assert final.result["urls"]["frontend"] == result.urls.frontend

    async def test_explicit_reporter(
        self, orchestrator: DeploymentOrchestrator, website_request: DeploymentRequest
    ):
        reporter = ProgressReporter()
        await orchestrator.deploy(website_request, reporter)
        assert reporter.finished is True

    async def test_companion_app(
        self, orchestrator: DeploymentOrchestrator, companion_dir: Path, cloudflare: FakeCloudflare
    ):
        request = DeploymentRequest(
            project_path=str(companion_dir),
            project_name="Acme Cafe App",
            app_type=AppType.COMPANION_APP,
            parent_site_subdomain="acme-cafe",
        )

        result = await orchestrator.deploy(request)

        assert result.success is True
        assert result.urls.frontend == "https://acme-cafe-app.be1st.app"
        assert result.urls.companion_url == result.urls.frontend
        assert result.urls.parent_site == "https://acme-cafe.be1st.io"
        assert result.urls.parent_api == "https://api.acme-cafe.be1st.io"
        assert result.urls.backend is None
        assert result.credentials is None
        assert len(cloudflare.named("zone-app", "acme-cafe-app.be1st.app")) == 1


class TestCredentialFailures:
    """Tests for pre-flight credential checks."""

    async def test_missing_dns_token(
        self,
        settings: Settings,
        website_request: DeploymentRequest,
        github: FakeGitHub,
        git: FakeGitPusher,
        railway: FakeRailway,
        cloudflare: FakeCloudflare,
    ):
        """Test a missing DNS token fails before any provisioning call."""
        orchestrator = DeploymentOrchestrator(
            settings.model_copy(update={"cloudflare_token": ""}),
            github=github,
            railway=railway,
            cloudflare=cloudflare,
            git=git,
        )
        received: list[ProgressEvent] = []
        request = website_request.model_copy(update={"on_progress": received.append})

        result = await orchestrator.deploy(request)

        assert result.success is False
        [error] = result.errors
        assert error.kind == ErrorKind.CREDENTIAL_MISSING
        assert error.stage == DeploymentStage.CREDENTIALS
        assert "CLOUDFLARE_TOKEN" in error.message
        assert platform_calls(github, git, railway, cloudflare) == 0
        assert result.resources == []

        skipped = [e.step for e in received if e.state == EventState.SKIPPED]
        assert skipped == ["prepare", "repositories", "compute", "dns", "finalizing"]
        assert received[-1].step == "complete"

    async def test_all_missing_names_reported(
        self, settings: Settings, website_request: DeploymentRequest
    ):
        orchestrator = DeploymentOrchestrator(
            settings.model_copy(update={"github_token": "", "railway_token": ""})
        )
        result = await orchestrator.deploy(website_request)

        [error] = result.errors
        assert "GITHUB_TOKEN" in error.message
        assert "RAILWAY_TOKEN" in error.message


class TestStageFailures:
    """Tests for fatal and advisory failures."""

    async def test_workspace_failure(
        self, orchestrator: DeploymentOrchestrator, tmp_path: Path, github: FakeGitHub
    ):
        request = DeploymentRequest(project_path=str(tmp_path / "missing"), project_name="Acme Cafe")

        result = await orchestrator.deploy(request)

        assert result.success is False
        assert result.errors[0].kind == ErrorKind.WORKSPACE_PREP_FAILURE
        assert github.calls == []

    async def test_repository_failure_skips_compute(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        github: FakeGitHub,
        railway: FakeRailway,
    ):
        github.fail("get_owner", PlatformAuthError("github", "Bad credentials", 401))

        result = await orchestrator.deploy(website_request)

        assert result.success is False
        assert any(e.kind == ErrorKind.REPOSITORY_PROVISION_FAILURE for e in result.errors)
        assert railway.calls == []

    async def test_compute_failure_never_touches_dns(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        railway: FakeRailway,
        cloudflare: FakeCloudflare,
    ):
        """Test a compute failure before any build leaves DNS alone."""
        railway.fail("find_project", transient(), transient(), transient())

        result = await orchestrator.deploy(website_request)

        assert result.success is False
        assert result.fatal_errors[0].kind == ErrorKind.COMPUTE_PROVISION_FAILURE
        assert cloudflare.calls == []
        # Repositories created before the failure are still reported
        repos = [r for r in result.resources if r.kind == ResourceKind.REPOSITORY]
        assert len(repos) == 2
        assert all(r.state == ResourceState.CREATED for r in repos)

    async def test_build_timeout_is_not_fatal(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        railway: FakeRailway,
    ):
        railway.build_status["frontend"] = "DEPLOYING"

        result = await orchestrator.deploy(website_request)

        assert result.success is True
        [warning] = result.warnings
        assert warning.kind == ErrorKind.BUILD_TIMEOUT

    async def test_dns_failure_falls_back_to_generated_endpoint(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        cloudflare: FakeCloudflare,
    ):
        """Test a DNS outage still yields a reachable frontend URL."""
        cloudflare.fail("list_records", *[transient("cloudflare") for _ in range(6)])

        result = await orchestrator.deploy(website_request)

        assert result.success is True
        assert result.urls.frontend.endswith(".up.railway.app")
        assert {e.kind for e in result.warnings} == {ErrorKind.DNS_RECONCILE_FAILURE}

    async def test_malformed_dns_response_is_not_fatal(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        cloudflare: FakeCloudflare,
    ):
        """Test a Cloudflare body that is not JSON only warns."""
        cloudflare.fail("list_records", ValueError("Expecting value: line 1 column 1 (char 0)"))

        result = await orchestrator.deploy(website_request)

        assert result.success is True
        assert result.fatal_errors == []
        [warning] = result.warnings
        assert warning.stage == DeploymentStage.DNS
        assert warning.kind == ErrorKind.DNS_RECONCILE_FAILURE
        assert "Expecting value" in warning.message

    async def test_crashing_dns_stage_is_not_fatal(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test an exception escaping the DNS stage keeps the advisory kind."""

        async def crash(plan, compute):
            raise RuntimeError("zone lookup exploded")

        monkeypatch.setattr(orchestrator.dns, "configure", crash)

        result = await orchestrator.deploy(website_request)

        assert result.success is True
        [warning] = result.warnings
        assert warning.stage == DeploymentStage.DNS
        assert warning.kind == ErrorKind.DNS_RECONCILE_FAILURE
        assert warning.fatal is False
        assert result.urls.frontend.endswith(".up.railway.app")

    async def test_finalize_failure_is_attributed(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test a crash while assembling URLs is reported under finalizing."""

        def crash(run):
            raise RuntimeError("no urls")

        monkeypatch.setattr(orchestrator, "build_urls", crash)

        result = await orchestrator.deploy(website_request)

        assert result.success is False
        [error] = result.fatal_errors
        assert error.stage == DeploymentStage.FINALIZING
        assert error.kind == ErrorKind.FINALIZE_FAILURE
        assert "no urls" in error.message

    async def test_unregistered_custom_domain_falls_back(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        railway: FakeRailway,
        cloudflare: FakeCloudflare,
    ):
        """Test a hostname Railway refused is never reported as the frontend URL."""
        railway.fail(
            "create_custom_domain",
            PlatformAuthError("railway", "Not Authorized"),
            PlatformAuthError("railway", "Not Authorized"),
        )

        result = await orchestrator.deploy(website_request)

        assert result.success is True
        assert result.urls.frontend.endswith(".up.railway.app")
        assert result.urls.backend.endswith(".up.railway.app")
        assert {e.kind for e in result.warnings} == {ErrorKind.DNS_RECONCILE_FAILURE}
        # The record still points somewhere that answers
        [record] = cloudflare.named("zone-io", FRONTEND_HOST)
        assert record["content"] == result.urls.frontend.removeprefix("https://")

    async def test_unexpected_exception_becomes_fatal_error(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        railway: FakeRailway,
    ):
        """Test deploy never raises, even on a programming error."""
        railway.fail("find_project", KeyError("environments"))

        result = await orchestrator.deploy(website_request)

        assert result.success is False
        [error] = result.fatal_errors
        assert error.stage == DeploymentStage.COMPUTE
        assert "environments" in error.message


class TestRerun:
    """Tests for re-running the same request."""

    async def test_rerun_is_idempotent(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        github: FakeGitHub,
        railway: FakeRailway,
        cloudflare: FakeCloudflare,
    ):
        """Test a second run reuses every resource and keeps one record per host."""
        first = await orchestrator.deploy(website_request)
        second = await orchestrator.deploy(website_request)

        assert first.success and second.success
        assert second.urls.frontend == first.urls.frontend
        assert second.railway_project_id == first.railway_project_id
        assert len(github.called("create_repository")) == 2
        assert len(railway.called("create_project")) == 1
        assert len(railway.called("create_service")) == 3
        for host in (FRONTEND_HOST, f"api.{FRONTEND_HOST}"):
            assert len(cloudflare.named("zone-io", host)) == 1
        assert all(r.state == ResourceState.REUSED for r in second.resources)
        assert second.credentials is None

    async def test_rerun_after_dns_failure(
        self,
        orchestrator: DeploymentOrchestrator,
        website_request: DeploymentRequest,
        cloudflare: FakeCloudflare,
    ):
        """Test a re-run replaces stale records before creating the new one."""
        cloudflare.records["zone-io"] = [
            {"id": "stale", "type": "A", "name": FRONTEND_HOST, "content": "192.0.2.7", "proxied": False}
        ]
        cloudflare.fail("create_record", *[transient("cloudflare") for _ in range(6)])

        first = await orchestrator.deploy(website_request)
        assert first.success is True
        assert first.warnings

        second = await orchestrator.deploy(website_request)

        assert second.success is True
        assert second.warnings == []
        assert second.urls.frontend == f"https://{FRONTEND_HOST}"
        [record] = cloudflare.named("zone-io", FRONTEND_HOST)
        assert record["type"] == "CNAME"
        assert ("delete_record", "zone-io", "stale") in cloudflare.calls

    @pytest.mark.parametrize("app_type", [AppType.WEBSITE, AppType.ADVANCED_APP])
    async def test_zone_follows_app_type(
        self,
        orchestrator: DeploymentOrchestrator,
        project_dir: Path,
        cloudflare: FakeCloudflare,
        app_type: AppType,
    ):
        request = DeploymentRequest(
            project_path=str(project_dir), project_name="Acme Cafe", app_type=app_type
        )
        result = await orchestrator.deploy(request)

        zone, domain = ("zone-io", "be1st.io") if app_type == AppType.WEBSITE else ("zone-app", "be1st.app")
        assert result.urls.frontend == f"https://acme-cafe.{domain}"
        assert cloudflare.named(zone, f"acme-cafe.{domain}")
