"""Platform API clients."""

from launchpad.clients.base import PlatformClient
from launchpad.clients.cloudflare import CloudflareClient
from launchpad.clients.git import GitPusher
from launchpad.clients.github import GitHubClient
from launchpad.clients.railway import RailwayClient

__all__ = [
    "PlatformClient",
    "CloudflareClient",
    "GitPusher",
    "GitHubClient",
    "RailwayClient",
]
