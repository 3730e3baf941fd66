"""HTTP client for the bridge endpoints.

Used by the conversation, story and voice helpers. Talks to this
service only; no upstream credential ever lives on the client side.
"""

import json
import logging
from typing import Any, Callable

import httpx

from dpp.core.config import Settings, get_settings
from dpp.core.errors import TransportError, UpstreamError
from dpp.models.chat import ChatMessage
from dpp.models.realtime import RealtimeToken
from dpp.services.upstream import extract_error_message

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]

CHAT_PATH = "/api/v1/chat"
TTS_PATH = "/api/v1/tts"
TOKEN_PATH = "/api/v1/realtime/token"


def parse_stream_line(line: str) -> str | None:
    """Extract the text delta from one line of the uniform SSE stream.

    Returns None for blank lines, the ``[DONE]`` sentinel and anything
    that is not a data line carrying content.
    """
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return None
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse streaming chunk: {data[:100]}")
        return None

    try:
        content = parsed["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return content or None


class BackendClient:
    """Client for chat streaming, speech synthesis and token issuance."""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 120.0,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.base_url = (base_url or self.settings.backend_url).rstrip("/")
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            transport=self.transport,
            timeout=self.timeout,
        )

    @staticmethod
    async def _raise_for_status(response: httpx.Response, fallback: str) -> None:
        if response.is_error:
            body = (await response.aread()).decode("utf-8", errors="replace")
            raise UpstreamError(response.status_code, extract_error_message(body, fallback))

    async def stream_chat(
        self,
        messages: list[ChatMessage],
        on_chunk: ChunkCallback | None = None,
        model: str | None = None,
        max_completion_tokens: int | None = None,
    ) -> str:
        """Send a conversation to the bridge and return the full reply.

        Each non-empty delta is passed to ``on_chunk`` as it arrives.
        """
        payload: dict[str, Any] = {
            "messages": [m.model_dump() for m in messages],
            "model": model or self.settings.chat_default_model,
            "max_completion_tokens": max_completion_tokens or self.settings.chat_default_max_tokens,
        }

        parts: list[str] = []
        try:
            async with self._client() as client:
                async with client.stream("POST", CHAT_PATH, json=payload) as response:
                    await self._raise_for_status(response, "Chat request failed")
                    async for line in response.aiter_lines():
                        content = parse_stream_line(line)
                        if content is None:
                            continue
                        parts.append(content)
                        if on_chunk:
                            on_chunk(content)
        except httpx.TransportError as e:
            logger.error(f"Chat stream failed: {e}")
            raise TransportError("Chat service unreachable") from e

        return "".join(parts)

    async def synthesize_speech(
        self,
        text: str,
        voice: str = "alloy",
        model: str | None = None,
        speed: float = 1.0,
    ) -> bytes:
        """Return MP3 audio for ``text``."""
        payload: dict[str, Any] = {"text": text, "voice": voice, "speed": speed}
        if model:
            payload["model"] = model
        try:
            async with self._client() as client:
                response = await client.post(TTS_PATH, json=payload)
        except httpx.TransportError as e:
            logger.error(f"TTS request failed: {e}")
            raise TransportError("Speech service unreachable") from e

        await self._raise_for_status(response, "Speech request failed")
        return response.content

    async def fetch_realtime_token(self, model: str | None = None, voice: str | None = None) -> RealtimeToken:
        """Request an ephemeral token for the realtime socket."""
        payload = {
            "model": model or self.settings.realtime_default_model,
            "voice": voice or self.settings.realtime_default_voice,
        }
        try:
            async with self._client() as client:
                response = await client.post(TOKEN_PATH, json=payload)
        except httpx.TransportError as e:
            logger.error(f"Token request failed: {e}")
            raise TransportError("Token service unreachable") from e

        await self._raise_for_status(response, f"Failed to get token: {response.status_code}")
        data = response.json()
        if not isinstance(data, dict) or not data.get("token"):
            raise UpstreamError(502, "No token received from backend")
        return RealtimeToken.model_validate(data)

    async def check_connection(self) -> bool:
        """Return True when a minimal chat round-trip succeeds."""
        try:
            await self.stream_chat([ChatMessage(role="user", content="test")])
        except (UpstreamError, TransportError) as e:
            logger.error(f"Backend connection test failed: {e}")
            return False
        return True
