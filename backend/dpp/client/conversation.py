"""Chat conversation with a product persona."""

import logging
from typing import Any

from dpp.client.backend import BackendClient, ChunkCallback
from dpp.models.chat import ChatMessage

logger = logging.getLogger(__name__)


class Conversation:
    """Ordered message history bound to one chat session.

    The first message is always the system prompt. One caller at a time:
    there is no locking, and mutating the history while ``send_message``
    is in flight is the caller's problem.
    """

    def __init__(self, system_prompt: str, client: BackendClient) -> None:
        self.client = client
        self._messages: list[ChatMessage] = [ChatMessage(role="system", content=system_prompt)]

    @property
    def messages(self) -> list[ChatMessage]:
        """Copy of the current history."""
        return list(self._messages)

    @property
    def metadata(self) -> dict[str, Any]:
        """Message count (system prompt excluded) and system prompt."""
        return {
            "message_count": len(self._messages) - 1,
            "system_prompt": self._messages[0].content,
        }

    async def send_message(
        self,
        text: str,
        on_chunk: ChunkCallback | None = None,
        model: str | None = None,
        max_completion_tokens: int | None = None,
    ) -> str:
        """Send a user message and return the assistant reply.

        On failure the user message is rolled back so the history is
        exactly what it was before the call, then the error propagates.
        """
        self._messages.append(ChatMessage(role="user", content=text))
        try:
            reply = await self.client.stream_chat(
                self._messages,
                on_chunk=on_chunk,
                model=model,
                max_completion_tokens=max_completion_tokens,
            )
        except Exception:
            self._messages.pop()
            logger.warning("Chat request failed, user message rolled back")
            raise

        self._messages.append(ChatMessage(role="assistant", content=reply))
        return reply

    def reset(self) -> None:
        """Drop everything but the system prompt."""
        del self._messages[1:]

    def update_system_prompt(self, system_prompt: str) -> None:
        """Replace the leading system message."""
        self._messages[0] = ChatMessage(role="system", content=system_prompt)
