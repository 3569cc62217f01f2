"""Cloudflare DNS client."""

from typing import Any

import httpx

from launchpad.clients.base import PlatformClient
from launchpad.config import Settings
from launchpad.core.exceptions import PlatformError


class CloudflareClient(PlatformClient):
    """DNS record listing, deletion and creation for a zone."""

    platform = "cloudflare"

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(
            settings.cloudflare_api_url,
            headers={
                "Authorization": f"Bearer {settings.cloudflare_token}",
                "Content-Type": "application/json",
            },
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    def _result(self, response: httpx.Response) -> Any:
        payload = response.json()
        if not payload.get("success", False):
            errors = payload.get("errors") or [{}]
            raise PlatformError(self.platform, errors[0].get("message", "request failed"))
        return payload.get("result")

    async def list_records(self, zone_id: str, name: str) -> list[dict[str, Any]]:
        response = await self._request(
            "GET",
            f"/zones/{zone_id}/dns_records",
            params={"name": name, "per_page": 100},
        )
        return self._result(response) or []

    async def delete_record(self, zone_id: str, record_id: str) -> None:
        """Delete a record. A record that is already gone counts as deleted."""
        response = await self._request(
            "DELETE", f"/zones/{zone_id}/dns_records/{record_id}", allow_status=(404,)
        )
        if response.status_code != 404:
            self._result(response)

    async def create_record(
        self,
        zone_id: str,
        record_type: str,
        name: str,
        content: str,
        proxied: bool = False,
        ttl: int = 1,
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"/zones/{zone_id}/dns_records",
            json={
                "type": record_type,
                "name": name,
                "content": content,
                "ttl": ttl,
                "proxied": proxied,
            },
        )
        return self._result(response)
