"""Shared plumbing for calls to the OpenAI REST API.

All outbound HTTP goes through httpx. A transport can be injected so
tests can replace the network with ``httpx.MockTransport``.
"""

import json
import logging
from typing import Any

import httpx

from dpp.core.config import Settings
from dpp.core.errors import ConfigError, TransportError, UpstreamError

logger = logging.getLogger(__name__)


def extract_error_message(body: str, fallback: str = "OpenAI API error") -> str:
    """Best-effort extraction of a provider error message.

    JSON bodies yield ``error.message`` (or the fallback when absent);
    anything that is not JSON is forwarded as raw text.
    """
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        return body or fallback

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return fallback


class OpenAIUpstream:
    """Thin wrapper holding credentials, base URL and transport."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.transport = transport

    def _api_key(self) -> str:
        """Return the upstream credential. Raises ConfigError if missing."""
        if not self.settings.openai_api_key:
            raise ConfigError("OPENAI_API_KEY not configured")
        return self.settings.openai_api_key

    def headers(self) -> dict[str, str]:
        """Request headers including the bearer credential."""
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key()}",
        }

    def client(self, timeout: float | None = None) -> httpx.AsyncClient:
        """Create a client bound to the upstream base URL."""
        return httpx.AsyncClient(
            base_url=self.settings.openai_base_url,
            transport=self.transport,
            timeout=timeout if timeout is not None else self.settings.upstream_timeout_seconds,
        )

    async def post(
        self,
        path: str,
        payload: dict[str, Any],
        provider: str = "OpenAI",
        fallback_error: str = "OpenAI API error",
    ) -> httpx.Response:
        """POST and return the fully read response.

        Non-success statuses raise UpstreamError with the provider's status
        and message; network failures raise TransportError.
        """
        headers = self.headers()
        try:
            async with self.client() as client:
                response = await client.post(path, json=payload, headers=headers)
        except httpx.TransportError as e:
            logger.error(f"{provider} request to {path} failed: {e}")
            raise TransportError() from e

        if response.is_error:
            message = extract_error_message(response.text, fallback_error)
            logger.error(f"{provider} error {response.status_code}: {message}")
            raise UpstreamError(response.status_code, message)
        return response

    async def open_stream(
        self,
        path: str,
        payload: dict[str, Any],
        provider: str = "OpenAI",
    ) -> tuple[httpx.AsyncClient, httpx.Response]:
        """Send a streaming POST and return the open client and response.

        The caller owns both and must close them. On failure nothing is
        left open.
        """
        headers = self.headers()
        client = self.client()
        try:
            request = client.build_request("POST", path, json=payload, headers=headers)
            response = await client.send(request, stream=True)
        except httpx.TransportError as e:
            await client.aclose()
            logger.error(f"{provider} stream to {path} failed: {e}")
            raise TransportError() from e

        if response.is_error:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
                await client.aclose()
            message = extract_error_message(body)
            logger.error(f"{provider} error {response.status_code}: {message}")
            raise UpstreamError(response.status_code, message)

        return client, response
