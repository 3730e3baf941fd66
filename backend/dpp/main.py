"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dpp.api.v1 import router as api_router
from dpp.api.v1.health import VERSION
from dpp.core.config import settings
from dpp.core.errors import register_exception_handlers
from dpp.core.logging import setup_logging
from dpp.core.request_logging import RequestLoggingMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    setup_logging(debug=settings.debug)
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; proxy endpoints will answer 500")
    logger.info(f"{settings.app_name} {VERSION} started")
    yield


app = FastAPI(
    title=settings.app_name,
    description="Digital Product Passport AI bridge - streaming chat, speech and realtime voice tokens",
    version=VERSION,
    lifespan=lifespan,
)

# Note: When allow_credentials=True, origins/methods/headers must be explicit (not wildcards)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"],
    expose_headers=["X-Request-ID"],
)

app.add_middleware(
    RequestLoggingMiddleware,
    exclude_paths=["/health", "/api/v1/health"],
)

register_exception_handlers(app)

app.include_router(api_router.router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"service": settings.app_name, "status": "running"}


def run() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run("dpp.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
