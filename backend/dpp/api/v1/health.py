"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter

from dpp.core.config import settings
from dpp.models.base import BaseSchema


router = APIRouter(tags=["health"])

VERSION = "0.1.0"


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    service_name: str
    timestamp: str
    version: str
    upstream_configured: bool


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health."""
    return HealthResponse(
        status="healthy",
        service_name=settings.app_name,
        timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
        version=VERSION,
        upstream_configured=bool(settings.openai_api_key),
    )
