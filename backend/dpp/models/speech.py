"""Text-to-speech request model."""

from pydantic import BaseModel

VALID_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
MAX_TTS_CHARS = 4096
MIN_SPEED = 0.25
MAX_SPEED = 4.0


class TTSRequest(BaseModel):
    """Request body for speech synthesis.

    Field constraints are checked by the speech service so that every
    violation is reported as a plain client error message.
    """

    text: str | None = None
    voice: str = "alloy"
    model: str | None = None
    speed: float = 1.0
