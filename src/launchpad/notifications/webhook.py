"""Webhook delivery of job update events using httpx.

Each configured webhook subscribes to the event bus and receives every
JobUpdateEvent as a JSON POST. Server errors and timeouts are retried;
client errors are not. Delivery problems are logged and never reach the job
that produced the event.
"""

from __future__ import annotations

import asyncio
import os
import re
from typing import Any

import httpx

from launchpad import __version__
from launchpad.core.config import WebhookConfig
from launchpad.core.logging import get_logger
from launchpad.core.models import JobUpdateEvent

_logger = get_logger("notifications.webhook")

# ${VAR} expansion in header values
_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


class WebhookNotifier:
    """POSTs job update events to one HTTP endpoint.

    Configuration from YAML::

        notifications:
          webhooks:
            - url_env: LAUNCHPAD_WEBHOOK_URL
              headers:
                Authorization: "Bearer ${WEBHOOK_TOKEN}"
              timeout: 10
              max_retries: 2
              retry_delay: 1.0
    """

    def __init__(
        self,
        url: str | None = None,
        url_env: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        if not self._url and url_env:
            self._url = os.environ.get(url_env, "")

        self._headers = self._expand_env_headers(headers or {})
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._transport = transport

        self._client: httpx.AsyncClient | None = None
        self._warned_no_url = False

    @staticmethod
    def _expand_env_headers(headers: dict[str, str]) -> dict[str, str]:
        """Expand ``${VAR}`` references in header values; missing vars become ''."""
        expanded: dict[str, str] = {}
        for key, value in headers.items():
            if "${" in value:
                for var_name in _ENV_VAR_PATTERN.findall(value):
                    env_value = os.environ.get(var_name)
                    if env_value is None:
                        _logger.warning("webhook.env_var_missing", header=key, var_name=var_name)
                        env_value = ""
                    value = value.replace(f"${{{var_name}}}", env_value)
            expanded[key] = value
        return expanded

    @classmethod
    def from_config(
        cls,
        config: WebhookConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> WebhookNotifier:
        return cls(
            url=config.url,
            url_env=config.url_env,
            headers=config.headers,
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            transport=transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers=self._headers,
                transport=self._transport,
            )
        return self._client

    @staticmethod
    def build_payload(event: JobUpdateEvent) -> dict[str, Any]:
        return {
            "event_type": "job_update",
            "event": event.model_dump(mode="json"),
            "metadata": {"source": "launchpad", "version": __version__},
        }

    async def _send_with_retry(
        self,
        client: httpx.AsyncClient,
        payload: dict[str, Any],
    ) -> tuple[bool, str | None]:
        """POST with retries on 5xx and transport errors.

        Returns:
            Tuple of (success, error_message).
        """
        assert self._url, "URL must be set before sending requests"
        last_error: str | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await client.post(self._url, json=payload)
                if response.is_success:
                    return True, None
                if response.status_code < 500:
                    return False, f"HTTP {response.status_code}: {response.text[:100]}"
                last_error = f"HTTP {response.status_code}: {response.text[:100]}"
                _logger.debug(
                    "webhook.retry_server_error",
                    attempt=attempt + 1,
                    status_code=response.status_code,
                )
            except httpx.TimeoutException:
                last_error = "Request timed out"
                _logger.debug("webhook.retry_timeout", attempt=attempt + 1)
            except httpx.RequestError as e:
                last_error = str(e)
                _logger.debug("webhook.retry_request_error", attempt=attempt + 1, error=last_error)

            if attempt < self._max_retries:
                await asyncio.sleep(self._retry_delay)

        return False, last_error

    async def send(self, event: JobUpdateEvent) -> bool:
        """Deliver one event. Returns False if unconfigured or delivery failed."""
        if not self._url:
            if not self._warned_no_url:
                _logger.warning("webhook.url_not_configured")
                self._warned_no_url = True
            return False

        client = await self._get_client()
        success, error = await self._send_with_retry(client, self.build_payload(event))
        if success:
            _logger.debug("webhook.sent", job_id=event.id, status=event.status.value)
        else:
            _logger.warning("webhook.failed", job_id=event.id, error=error)
        return success

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


__all__ = ["WebhookNotifier"]
