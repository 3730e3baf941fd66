"""Streaming chat bridge.

Forwards chat requests to one of two upstream streaming dialects and
republishes a single uniform SSE format to the client:

- legacy token-delta dialect (``/chat/completions``): already in the
  client wire format, forwarded line by line without reparsing.
- structured-event dialect (``/responses``): ``event:``/``data:`` blocks
  translated into chat-completions shaped delta chunks plus ``[DONE]``.
"""

import codecs
import json
import logging
from enum import Enum
from typing import Any, AsyncIterator

import httpx

from dpp.core.config import Settings
from dpp.core.errors import ClientInputError, StreamParseError
from dpp.models.chat import DONE_SENTINEL, ChatMessage, ChatRequest, StreamChunk
from dpp.services.upstream import OpenAIUpstream

logger = logging.getLogger(__name__)

# Reasoning model family served by the structured-event dialect,
# except for its chat-tuned variant.
REASONING_MODEL_PREFIX = "gpt-5"
CHAT_LATEST_MARKER = "chat-latest"

# Structured-dialect event types
OUTPUT_TEXT_DELTA = "response.output_text.delta"
CONTENT_PART_DELTA = "response.content_part.delta"
RESPONSE_COMPLETED = "response.completed"

DEFAULT_REASONING_EFFORT = "low"


class Dialect(str, Enum):
    """Upstream streaming dialect."""

    LEGACY = "legacy"
    STRUCTURED = "structured"


def select_dialect(model: str) -> Dialect:
    """Pick the upstream dialect for a model name."""
    if model.startswith(REASONING_MODEL_PREFIX) and CHAT_LATEST_MARKER not in model:
        return Dialect.STRUCTURED
    return Dialect.LEGACY


def build_legacy_payload(
    messages: list[ChatMessage],
    model: str,
    max_completion_tokens: int | None,
    reasoning_effort: str | None,
) -> dict[str, Any]:
    """Build a chat-completions request body."""
    payload: dict[str, Any] = {
        "model": model,
        "messages": [m.model_dump() for m in messages],
        "stream": True,
    }
    if max_completion_tokens:
        payload["max_completion_tokens"] = max_completion_tokens
    # Only the o1 family accepts the effort knob on this endpoint
    if model.startswith("o1-") and reasoning_effort:
        payload["reasoning_effort"] = reasoning_effort
    return payload


def build_structured_payload(
    messages: list[ChatMessage],
    model: str,
    max_completion_tokens: int | None,
    reasoning_effort: str | None,
) -> dict[str, Any]:
    """Build a responses request body.

    A leading system message becomes ``instructions``; all other messages
    are packed into ``input`` in their original order.
    """
    instructions: str | None = None
    remaining = messages
    if messages and messages[0].role == "system":
        instructions = messages[0].content
        remaining = messages[1:]

    payload: dict[str, Any] = {
        "model": model,
        "input": [{"role": m.role, "content": m.content} for m in remaining],
        "stream": True,
        "reasoning": {"effort": reasoning_effort or DEFAULT_REASONING_EFFORT},
    }
    if instructions:
        payload["instructions"] = instructions
    if max_completion_tokens:
        payload["max_output_tokens"] = max_completion_tokens
    return payload


class StructuredStreamTranslator:
    """Incremental translator from structured events to uniform chunks.

    Input may be split at arbitrary byte boundaries; the output sequence
    only depends on the concatenated bytes. After the completion event
    the sentinel is emitted once and everything else is dropped.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.completed = False

    def feed(self, data: bytes) -> list[str]:
        """Consume a chunk of upstream bytes, return translated SSE frames."""
        self._buffer = (self._buffer + self._decoder.decode(data)).replace("\r\n", "\n")
        blocks = self._buffer.split("\n\n")
        self._buffer = blocks.pop()

        output: list[str] = []
        for block in blocks:
            output.extend(self._translate_block(block))
        return output

    def flush(self) -> list[str]:
        """Translate whatever is left once the upstream body has ended."""
        self._buffer = (self._buffer + self._decoder.decode(b"", final=True)).replace("\r\n", "\n")
        remainder, self._buffer = self._buffer, ""
        return self._translate_block(remainder)

    def _translate_block(self, block: str) -> list[str]:
        if self.completed or not block.strip():
            return []

        try:
            event_type, event = parse_event_block(block)
        except StreamParseError as e:
            logger.warning(f"Skipping malformed event block: {e.message}")
            return []
        if event is None:
            return []

        kinds = {str(event.get("type") or ""), event_type}

        if OUTPUT_TEXT_DELTA in kinds:
            delta = event.get("delta")
            if isinstance(delta, str) and delta:
                return [StreamChunk(text_delta=delta).to_sse()]
            return []

        if CONTENT_PART_DELTA in kinds:
            delta = event.get("delta")
            text = delta.get("text") if isinstance(delta, dict) else None
            if isinstance(text, str) and text:
                return [StreamChunk(text_delta=text).to_sse()]
            return []

        if RESPONSE_COMPLETED in kinds:
            logger.info("Structured response completed")
            self.completed = True
            return [DONE_SENTINEL]

        logger.debug(f"Ignoring structured event: {event.get('type') or event_type}")
        return []


def parse_event_block(block: str) -> tuple[str, dict[str, Any] | None]:
    """Split one SSE block into its event type and decoded data object.

    Returns ``(event_type, None)`` for blocks without data or with the
    ``[DONE]`` marker. Raises StreamParseError for undecodable data.
    """
    event_type = ""
    data_lines: list[str] = []
    for line in block.split("\n"):
        if line.startswith("event:"):
            event_type = line[len("event:"):].strip()
        elif line.startswith("data:"):
            value = line[len("data:"):]
            data_lines.append(value[1:] if value.startswith(" ") else value)

    data = "\n".join(data_lines)
    if not data or data == "[DONE]":
        return event_type, None

    try:
        event = json.loads(data)
    except json.JSONDecodeError as e:
        raise StreamParseError(f"invalid JSON in data line: {data[:100]!r}") from e
    if not isinstance(event, dict):
        raise StreamParseError(f"data is not an object: {data[:100]!r}")
    return event_type, event


class ChatBridge:
    """Service that opens an upstream stream and yields client frames."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.upstream = OpenAIUpstream(settings, transport=transport)

    async def open_stream(self, request: ChatRequest) -> AsyncIterator[str]:
        """Validate, call upstream and return the client frame iterator.

        Every failure that can still be reported with a status code
        (input, configuration, upstream status, transport) is raised here,
        before the first byte of the event stream.
        """
        if not request.messages:
            raise ClientInputError("Messages array is required and cannot be empty")

        model = request.model or self.settings.chat_default_model
        max_tokens = request.max_completion_tokens or self.settings.chat_default_max_tokens
        effort = request.reasoning_effort or self.settings.chat_default_reasoning_effort
        dialect = select_dialect(model)

        logger.info(
            f"Chat request: {len(request.messages)} messages, model={model}",
            extra={"dialect": dialect.value},
        )

        if dialect is Dialect.STRUCTURED:
            payload = build_structured_payload(request.messages, model, max_tokens, effort)
            client, response = await self.upstream.open_stream("/responses", payload, "OpenAI Responses")
            return self._translate_structured(client, response)

        payload = build_legacy_payload(request.messages, model, max_tokens, effort)
        client, response = await self.upstream.open_stream("/chat/completions", payload, "OpenAI Chat")
        return self._passthrough_legacy(client, response)

    async def _passthrough_legacy(
        self, client: httpx.AsyncClient, response: httpx.Response
    ) -> AsyncIterator[str]:
        try:
            async for line in response.aiter_lines():
                yield line + "\n"
        except httpx.HTTPError as e:
            logger.error(f"Legacy stream interrupted: {e}")
        finally:
            await response.aclose()
            await client.aclose()

    async def _translate_structured(
        self, client: httpx.AsyncClient, response: httpx.Response
    ) -> AsyncIterator[str]:
        translator = StructuredStreamTranslator()
        try:
            async for data in response.aiter_bytes():
                for frame in translator.feed(data):
                    yield frame
            for frame in translator.flush():
                yield frame
        except httpx.HTTPError as e:
            logger.error(f"Structured stream interrupted: {e}")
        finally:
            await response.aclose()
            await client.aclose()
