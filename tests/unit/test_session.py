"""Unit tests for session management."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from launchpad.core.session import DeploymentSessionManager
from launchpad.models.deployment import DeploymentResult, DeploymentUrls, ProgressEvent
from launchpad.models.record import DeploymentCreate, DeploymentStatus


class TestDeploymentSessionManager:
    """Tests for DeploymentSessionManager."""

    @pytest.fixture
    def manager(self) -> DeploymentSessionManager:
        """Create a fresh session manager."""
        return DeploymentSessionManager()

    @pytest.fixture
    def deployment_data(self) -> DeploymentCreate:
        return DeploymentCreate(project_path="/tmp/acme-cafe", project_name="Acme Cafe")

    async def test_create(self, manager: DeploymentSessionManager, deployment_data: DeploymentCreate):
        record = await manager.create(deployment_data)

        assert record.project_name == "Acme Cafe"
        assert record.status == DeploymentStatus.QUEUED
        assert await manager.get(record.id) is record

    async def test_get_nonexistent(self, manager: DeploymentSessionManager):
        assert await manager.get(uuid4()) is None

    async def test_record_event_marks_running(
        self, manager: DeploymentSessionManager, deployment_data: DeploymentCreate
    ):
        """Test the first progress event moves a deployment to running."""
        record = await manager.create(deployment_data)

        await manager.record_event(record.id, ProgressEvent(step="prepare", status="Preparing", progress=5))

        assert record.status == DeploymentStatus.RUNNING
        assert record.current_step == "prepare"
        assert record.progress == 5

    async def test_finish(self, manager: DeploymentSessionManager, deployment_data: DeploymentCreate):
        record = await manager.create(deployment_data)
        record.finish(
            DeploymentResult(success=True, urls=DeploymentUrls(frontend="https://acme-cafe.be1st.io"))
        )

        assert record.status == DeploymentStatus.SUCCEEDED
        assert record.completed_at is not None
        assert record.error is None

    async def test_list_newest_first(self, manager: DeploymentSessionManager):
        first = await manager.create(DeploymentCreate(project_path="/tmp/a", project_name="First"))
        second = await manager.create(DeploymentCreate(project_path="/tmp/b", project_name="Second"))
        first.created_at = datetime.utcnow() - timedelta(minutes=5)

        records, total = await manager.list_deployments()

        assert total == 2
        assert [r.id for r in records] == [second.id, first.id]

    async def test_list_filters_by_status(self, manager: DeploymentSessionManager):
        queued = await manager.create(DeploymentCreate(project_path="/tmp/a", project_name="Queued"))
        running = await manager.create(DeploymentCreate(project_path="/tmp/b", project_name="Running"))
        running.status = DeploymentStatus.RUNNING

        records, total = await manager.list_deployments(status=DeploymentStatus.QUEUED)

        assert total == 1
        assert records[0].id == queued.id

    async def test_expired_records_removed(self, deployment_data: DeploymentCreate):
        manager = DeploymentSessionManager(ttl_hours=1)
        old = await manager.create(deployment_data)
        old.created_at = datetime.utcnow() - timedelta(hours=2)
        fresh = await manager.create(deployment_data)

        assert await manager.cleanup_expired() == 1
        assert await manager.get(old.id) is None
        assert await manager.get(fresh.id) is fresh
