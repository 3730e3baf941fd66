"""Text-to-speech proxy service."""

import logging

import httpx

from dpp.core.config import Settings
from dpp.core.errors import ClientInputError
from dpp.models.speech import MAX_SPEED, MAX_TTS_CHARS, MIN_SPEED, VALID_VOICES, TTSRequest
from dpp.services.upstream import OpenAIUpstream

logger = logging.getLogger(__name__)


class SpeechService:
    """Synthesizes MP3 audio through the upstream speech endpoint."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.upstream = OpenAIUpstream(settings, transport=transport)

    @staticmethod
    def validate(request: TTSRequest) -> None:
        """Raise ClientInputError for any invalid field."""
        if not request.text:
            raise ClientInputError("Text is required")
        if len(request.text) > MAX_TTS_CHARS:
            raise ClientInputError(f"Text too long (max {MAX_TTS_CHARS} characters)")
        if request.voice not in VALID_VOICES:
            raise ClientInputError(f"Invalid voice. Must be one of: {', '.join(VALID_VOICES)}")
        if not MIN_SPEED <= request.speed <= MAX_SPEED:
            raise ClientInputError(f"Speed must be between {MIN_SPEED} and {MAX_SPEED}")

    async def synthesize(self, request: TTSRequest) -> bytes:
        """Return MP3 bytes for the requested text."""
        self.validate(request)
        model = request.model or self.settings.tts_default_model

        logger.info(f"TTS request: {len(request.text)} chars, voice={request.voice}, model={model}")

        response = await self.upstream.post(
            "/audio/speech",
            {
                "model": model,
                "input": request.text,
                "voice": request.voice,
                "speed": request.speed,
                "response_format": "mp3",
            },
            provider="OpenAI TTS",
            fallback_error="OpenAI TTS API error",
        )
        return response.content
