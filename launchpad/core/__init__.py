"""Core functionality for Launchpad."""

from launchpad.core.events import EventBus, ProgressReporter, get_event_bus
from launchpad.core.exceptions import (
    CredentialMissingError,
    DeploymentNotFoundError,
    GitCommandError,
    LaunchpadError,
    PlatformAuthError,
    PlatformError,
    PlatformTimeoutError,
    ValidationError,
    WorkspacePreparationError,
)
from launchpad.core.retry import RetryPolicy, retry_async
from launchpad.core.session import DeploymentSessionManager, get_session_manager

__all__ = [
    "LaunchpadError",
    "ValidationError",
    "DeploymentNotFoundError",
    "CredentialMissingError",
    "WorkspacePreparationError",
    "PlatformError",
    "PlatformAuthError",
    "PlatformTimeoutError",
    "GitCommandError",
    "RetryPolicy",
    "retry_async",
    "EventBus",
    "ProgressReporter",
    "get_event_bus",
    "DeploymentSessionManager",
    "get_session_manager",
]
