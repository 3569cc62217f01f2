"""Session management for deployments."""

from datetime import datetime, timedelta
from uuid import UUID

from launchpad.config import get_settings
from launchpad.models.deployment import ProgressEvent
from launchpad.models.record import DeploymentCreate, DeploymentRecord, DeploymentStatus


class DeploymentSessionManager:
    """Keeps deployment records in memory.

    Records outlive their deployment by ``ttl_hours`` so clients can fetch
    the result after the stream has closed.
    """

    def __init__(self, ttl_hours: int = 24):
        self._records: dict[UUID, DeploymentRecord] = {}
        self._ttl = timedelta(hours=ttl_hours)

    async def create(self, data: DeploymentCreate) -> DeploymentRecord:
        """Register a queued deployment."""
        record = DeploymentRecord(
            project_name=data.project_name,
            app_type=data.app_type,
            request=data,
        )
        self._records[record.id] = record
        return record

    async def get(self, deployment_id: UUID) -> DeploymentRecord | None:
        record = self._records.get(deployment_id)
        if record:
            # Check if expired
            if datetime.utcnow() - record.created_at > self._ttl:
                del self._records[deployment_id]
                return None
        return record

    async def update(self, record: DeploymentRecord) -> DeploymentRecord:
        record.updated_at = datetime.utcnow()
        self._records[record.id] = record
        return record

    async def record_event(self, deployment_id: UUID, event: ProgressEvent) -> None:
        """Track the latest step of a running deployment."""
        record = self._records.get(deployment_id)
        if record is None:
            return
        if record.status == DeploymentStatus.QUEUED:
            record.status = DeploymentStatus.RUNNING
        record.current_step = event.step
        record.progress = event.progress
        record.updated_at = datetime.utcnow()

    async def list_deployments(
        self,
        status: DeploymentStatus | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> tuple[list[DeploymentRecord], int]:
        """List deployments, newest first."""
        records = list(self._records.values())

        if status:
            records = [r for r in records if r.status == status]

        records.sort(key=lambda r: r.created_at, reverse=True)

        total = len(records)
        return records[offset : offset + limit], total

    async def cleanup_expired(self) -> int:
        """Remove expired records. Returns count of removed records."""
        now = datetime.utcnow()
        expired = [
            rid for rid, record in self._records.items() if now - record.created_at > self._ttl
        ]
        for rid in expired:
            del self._records[rid]
        return len(expired)


# Singleton instance
_session_manager: DeploymentSessionManager | None = None


def get_session_manager() -> DeploymentSessionManager:
    """Get the session manager singleton."""
    global _session_manager
    if _session_manager is None:
        _session_manager = DeploymentSessionManager(get_settings().deployment_ttl_hours)
    return _session_manager
