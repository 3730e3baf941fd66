"""Chat bridge endpoint.

POST /api/v1/chat - stream a chat completion as uniform SSE chunks
"""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from dpp.core.config import get_settings
from dpp.models.chat import ChatRequest
from dpp.services.chat_bridge import ChatBridge

router = APIRouter(tags=["chat"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_chat_bridge() -> ChatBridge:
    """Provide the chat bridge bound to current settings."""
    return ChatBridge(get_settings())


@router.post("/chat")
async def chat(
    request: ChatRequest,
    bridge: ChatBridge = Depends(get_chat_bridge),
) -> StreamingResponse:
    """Stream a chat completion.

    Errors detected before streaming starts are answered with a JSON
    ``{"error": ...}`` body and the matching status code.
    """
    stream = await bridge.open_stream(request)
    return StreamingResponse(stream, media_type="text/event-stream", headers=STREAM_HEADERS)
