"""Chat models shared by the bridge and the chat client."""

import json
from typing import Literal

from pydantic import BaseModel

Role = Literal["system", "user", "assistant"]
ReasoningEffort = Literal["minimal", "low", "medium", "high"]

# Terminal sentinel of the uniform client wire format
DONE_SENTINEL = "data: [DONE]\n\n"


class ChatMessage(BaseModel):
    """A single message of a conversation."""

    role: Role
    content: str


class ChatRequest(BaseModel):
    """Request body for the chat bridge.

    ``messages`` is optional at the schema level so that a missing array
    is reported with the same client error as an empty one.
    """

    messages: list[ChatMessage] | None = None
    model: str | None = None
    max_completion_tokens: int | None = None
    reasoning_effort: ReasoningEffort | None = None


class StreamChunk(BaseModel):
    """Normalized unit of streamed text emitted to the client."""

    text_delta: str

    def to_sse(self) -> str:
        """Serialize in the uniform (chat-completions shaped) wire format."""
        payload = {"choices": [{"delta": {"content": self.text_delta}}]}
        return f"data: {json.dumps(payload)}\n\n"
