"""GitHub REST client for repository lookup and creation."""

from typing import Any

import httpx

from launchpad.clients.base import PlatformClient
from launchpad.config import Settings


class GitHubClient(PlatformClient):
    """Minimal GitHub v3 client.

    Only the three calls the deployer needs: who am I, does a repository
    exist, and create one.
    """

    platform = "github"

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(
            settings.github_api_url,
            headers={
                "Authorization": f"token {settings.github_token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": "launchpad-deployer",
            },
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )
        self.org = settings.github_org
        self.private = settings.github_private_repos
        self._owner: str | None = None

    async def get_owner(self) -> str:
        """Login of the organization (if configured) or the token's user."""
        if self.org:
            return self.org
        if self._owner is None:
            response = await self._request("GET", "/user")
            self._owner = response.json()["login"]
        return self._owner

    async def get_repository(self, owner: str, name: str) -> dict[str, Any] | None:
        """Return the repository payload, or None when it does not exist."""
        response = await self._request("GET", f"/repos/{owner}/{name}", allow_status=(404,))
        if response.status_code == 404:
            return None
        return response.json()

    async def create_repository(self, name: str, description: str = "") -> dict[str, Any] | None:
        """Create a repository.

        Returns None when GitHub reports the name is already taken, which
        happens when a concurrent or earlier run created it first.
        """
        path = f"/orgs/{self.org}/repos" if self.org else "/user/repos"
        response = await self._request(
            "POST",
            path,
            json={
                "name": name,
                "private": self.private,
                "auto_init": False,
                "description": description,
            },
            allow_status=(422,),
        )
        if response.status_code == 422:
            errors = response.json().get("errors") or []
            if any("already exists" in (err.get("message") or "") for err in errors):
                return None
            self._raise_for_status(response, "POST", path)
        return response.json()
