"""Realtime voice endpoints.

POST /api/v1/realtime/token - issue an ephemeral realtime credential
"""

from fastapi import APIRouter, Depends

from dpp.core.config import get_settings
from dpp.models.realtime import RealtimeToken, RealtimeTokenRequest
from dpp.services.realtime_token_service import RealtimeTokenService

router = APIRouter(prefix="/realtime", tags=["realtime"])


def get_token_service() -> RealtimeTokenService:
    """Provide the token service bound to current settings."""
    return RealtimeTokenService(get_settings())


@router.post("/token", response_model=RealtimeToken)
async def issue_token(
    request: RealtimeTokenRequest | None = None,
    service: RealtimeTokenService = Depends(get_token_service),
) -> RealtimeToken:
    """Issue a short-lived token for the realtime socket."""
    return await service.issue(request or RealtimeTokenRequest())
