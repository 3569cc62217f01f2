"""Custom exceptions for Launchpad."""

from typing import Any


class LaunchpadError(Exception):
    """Base exception for Launchpad."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(LaunchpadError):
    """Validation error."""

    pass


class DeploymentNotFoundError(LaunchpadError):
    """Deployment not found."""

    def __init__(self, deployment_id: str):
        super().__init__(
            f"Deployment not found: {deployment_id}",
            {"deployment_id": deployment_id},
        )


class CredentialMissingError(LaunchpadError):
    """One or more provider credentials are not configured."""

    def __init__(self, app_type: str, missing: list[str]):
        super().__init__(
            f"Missing credentials for {app_type}: {', '.join(missing)}",
            {"app_type": app_type, "missing": missing},
        )
        self.missing = missing


class WorkspacePreparationError(LaunchpadError):
    """The project directory could not be made deployable."""

    def __init__(self, message: str, path: str | None = None):
        details = {}
        if path is not None:
            details["path"] = path
        super().__init__(f"Workspace preparation failed: {message}", details)


class PlatformError(LaunchpadError):
    """An external platform call failed.

    ``retryable`` tells the retry policy whether repeating the same call
    can succeed (network faults, timeouts, 5xx, rate limits).
    """

    def __init__(
        self,
        platform: str,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        details: dict[str, Any] = {"platform": platform}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(f"{platform}: {message}", details)
        self.platform = platform
        self.status_code = status_code
        self.retryable = retryable


class PlatformAuthError(PlatformError):
    """Credentials were rejected. Never retried."""

    def __init__(self, platform: str, message: str, status_code: int | None = None):
        super().__init__(platform, message, status_code=status_code, retryable=False)


class PlatformTimeoutError(PlatformError):
    """A platform call exceeded its timeout."""

    def __init__(self, platform: str, message: str):
        super().__init__(platform, message, retryable=True)


class GitCommandError(PlatformError):
    """A git subprocess failed while pushing a workspace."""

    def __init__(self, command: str, message: str, retryable: bool = True):
        super().__init__("git", f"'{command}' failed: {message}", retryable=retryable)
        self.command = command
