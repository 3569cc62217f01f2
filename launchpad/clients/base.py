"""Shared HTTP plumbing for platform clients."""

from typing import Any

import httpx

from launchpad.core.exceptions import PlatformAuthError, PlatformError, PlatformTimeoutError
from launchpad.utils.logging import get_logger


class PlatformClient:
    """Base class for the GitHub, Railway and Cloudflare clients.

    Every request opens a short-lived ``httpx.AsyncClient`` with an explicit
    timeout, and every failure is converted into a :class:`PlatformError`
    whose ``retryable`` flag drives the retry policy.
    """

    platform = "platform"

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str],
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = headers
        self.timeout = timeout
        self._transport = transport
        self.logger = get_logger(f"clients.{self.platform}")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        allow_status: tuple[int, ...] = (),
    ) -> httpx.Response:
        """Send a request; statuses in ``allow_status`` are returned, not raised."""
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                headers=self.headers,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, json=json, params=params)
        except httpx.TimeoutException:
            self.logger.warning("platform.request_timeout", method=method, path=path)
            raise PlatformTimeoutError(
                self.platform, f"{method} {path} timed out after {self.timeout}s"
            )
        except httpx.TransportError as e:
            self.logger.warning("platform.transport_error", method=method, path=path, error=str(e))
            raise PlatformError(self.platform, f"{method} {path}: {e}", retryable=True)

        if response.status_code in allow_status:
            return response

        self._raise_for_status(response, method, path)
        return response

    def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        code = response.status_code
        if code < 400:
            return

        body = response.text[:300]
        if code in (401, 403):
            raise PlatformAuthError(
                self.platform, f"{method} {path} rejected credentials ({code}): {body}", code
            )

        raise PlatformError(
            self.platform,
            f"{method} {path} returned {code}: {body}",
            status_code=code,
            retryable=code == 429 or code >= 500,
        )
