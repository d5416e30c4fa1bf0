"""Samsung TV REST API client (``/api/v2``).

Stateless helpers next to the WebSocket channel: device info and the
per-application status/run/close/install endpoints. Uses httpx; every public
call returns the response body, or ``None`` when the TV could not be reached.
"""

from __future__ import annotations

import logging

import httpx

from tvremote.control.protocol import SECURE_PORT

logger = logging.getLogger(__name__)


class RestClientError(Exception):
    """Base error for REST failures."""


class RestConnectionError(RestClientError):
    """Raised when the TV is network-unreachable."""


class RestClient:
    """Thin async wrapper around the TV's REST endpoints.

    A single :class:`httpx.AsyncClient` is reused across calls. Call
    :meth:`aclose` (or use as an async context manager) when done.
    """

    def __init__(
        self,
        host: str,
        port: int = SECURE_PORT,
        timeout: float = 6.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._client = client or httpx.AsyncClient(
            verify=False,  # TVs ship self-signed certificates
            timeout=timeout,
        )

    @property
    def base_url(self) -> str:
        scheme = "https" if self.port == SECURE_PORT else "http"
        return f"{scheme}://{self.host}:{self.port}/api/v2/"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RestClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def device_info(self) -> str | None:
        return await self.request("GET", "")

    async def app_status(self, app_id: str) -> str | None:
        return await self.request("GET", f"applications/{app_id}")

    async def app_run(self, app_id: str) -> str | None:
        return await self.request("POST", f"applications/{app_id}")

    async def app_close(self, app_id: str) -> str | None:
        return await self.request("DELETE", f"applications/{app_id}")

    async def app_install(self, app_id: str) -> str | None:
        return await self.request("PUT", f"applications/{app_id}")

    async def request(self, method: str, route: str) -> str | None:
        """Issue ``method`` against ``/api/v2/<route>``; body text or ``None``."""
        try:
            return await self._request(method, route)
        except RestClientError as exc:
            logger.error("HTTP_FAIL %s %s%s: %s", method, self.base_url, route, exc)
            return None

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _request(self, method: str, route: str) -> str:
        url = f"{self.base_url}{route}"
        logger.debug("HTTP %s %s", method, url)
        content = b"" if method in ("POST", "PUT") else None
        try:
            response = await self._client.request(method, url, content=content)
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            raise RestConnectionError(f"Cannot reach TV at {url}: {exc}") from exc
        body = response.text
        logger.debug("HTTP %d len=%d", response.status_code, len(body))
        if response.is_error:
            logger.error("HTTP_ERR code=%d body=%s", response.status_code, body)
        return body
