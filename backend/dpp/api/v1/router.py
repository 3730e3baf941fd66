"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from .chat import router as chat_router
from .health import router as health_router
from .realtime import router as realtime_router
from .tts import router as tts_router

router = APIRouter(prefix="/api/v1")

router.include_router(health_router)
router.include_router(chat_router)
router.include_router(tts_router)
router.include_router(realtime_router)
