"""Text-to-speech endpoint.

POST /api/v1/tts - synthesize MP3 audio for a piece of text
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from dpp.core.config import get_settings
from dpp.models.speech import TTSRequest
from dpp.services.speech_service import SpeechService

router = APIRouter(tags=["speech"])


def get_speech_service() -> SpeechService:
    """Provide the speech service bound to current settings."""
    return SpeechService(get_settings())


@router.post("/tts")
async def text_to_speech(
    request: TTSRequest,
    service: SpeechService = Depends(get_speech_service),
) -> Response:
    """Return the synthesized speech as ``audio/mpeg``."""
    audio = await service.synthesize(request)
    return Response(
        content=audio,
        media_type="audio/mpeg",
        headers={"Content-Length": str(len(audio))},
    )
