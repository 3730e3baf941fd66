"""Realtime voice models: token issuance and UI-facing session events."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel

from dpp.models.base import BaseSchema


class RealtimeTokenRequest(BaseModel):
    """Request for an ephemeral realtime credential."""

    model: str | None = None
    voice: str | None = None


class RealtimeToken(BaseModel):
    """Ephemeral credential returned to the voice client."""

    token: str
    expires_at: int | None = None
    model: str | None = None


class ConnectionState(str, Enum):
    """Voice session connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class TranscriptEvent(BaseSchema):
    """Transcript update delivered to the UI.

    Non-final events are deltas: the receiver concatenates them per role
    until a final event arrives.
    """

    role: Literal["user", "assistant"]
    text: str
    is_final: bool = False


class AudioResponse(BaseSchema):
    """Notification that the assistant finished sending audio."""

    complete: bool = True
