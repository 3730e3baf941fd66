"""Ephemeral token issuance for realtime voice sessions."""

import logging

import httpx

from dpp.core.config import Settings
from dpp.core.errors import UpstreamError
from dpp.models.realtime import RealtimeToken, RealtimeTokenRequest
from dpp.services.upstream import OpenAIUpstream

logger = logging.getLogger(__name__)


class RealtimeTokenService:
    """Mints short-lived credentials so browsers never see the API key."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.upstream = OpenAIUpstream(settings, transport=transport)

    async def issue(self, request: RealtimeTokenRequest) -> RealtimeToken:
        """Create an upstream realtime session and return its client secret."""
        model = request.model or self.settings.realtime_default_model
        voice = request.voice or self.settings.realtime_default_voice

        logger.info(f"Realtime token request: model={model}, voice={voice}")

        response = await self.upstream.post(
            "/realtime/sessions",
            {"model": model, "voice": voice},
            provider="OpenAI Realtime",
            fallback_error="Failed to create realtime session",
        )
        data = response.json()

        secret = data.get("client_secret")
        token = secret.get("value") if isinstance(secret, dict) else secret
        if not token:
            logger.error("Realtime session response carried no client secret")
            raise UpstreamError(502, "Failed to generate token")

        return RealtimeToken(
            token=token,
            expires_at=data.get("expires_at") or (secret.get("expires_at") if isinstance(secret, dict) else None),
            model=data.get("model", model),
        )
