"""Shared httpx client lifecycle for the external service clients.

Each client owns one lazily created ``httpx.AsyncClient`` with connection
pooling. A transport can be injected (``httpx.MockTransport`` in tests).
Transport failures are translated into launchpad connectivity errors here so
the service clients only deal with status codes.
"""

from __future__ import annotations

from typing import Any

import httpx

from launchpad.core.errors import ConnectivityError, ConnectTimeoutError, RemoteApiError
from launchpad.core.logging import get_logger

_logger = get_logger("clients.http")


class HttpServiceClient:
    """Base class for token-authenticated JSON APIs."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {"Authorization": f"Bearer {token}", **(headers or {})}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=httpx.Timeout(self._timeout, connect=min(self._timeout, 10.0)),
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request; raise ConnectivityError on transport failure."""
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise ConnectTimeoutError(f"{operation} timed out") from exc
        except httpx.RequestError as exc:
            raise ConnectivityError(f"{operation} failed: {exc}") from exc
        _logger.debug(
            "http.response",
            operation=operation,
            method=method,
            status_code=response.status_code,
        )
        return response

    @staticmethod
    def _json(operation: str, response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body, treating anything else as an API error."""
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteApiError(operation, response.status_code, "invalid JSON body") from exc
        if not isinstance(body, dict):
            raise RemoteApiError(operation, response.status_code, "unexpected JSON body")
        return body

    @staticmethod
    def _raise_for_status(
        operation: str,
        response: httpx.Response,
        error_cls: type[RemoteApiError] = RemoteApiError,
    ) -> None:
        if not response.is_success:
            raise error_cls(operation, response.status_code, response.text[:200] or None)

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


__all__ = ["HttpServiceClient"]
