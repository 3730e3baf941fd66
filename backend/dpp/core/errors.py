"""Error taxonomy shared by the bridge and the client helpers.

Every error carries the HTTP status it maps to and the message that is
safe to show to a caller. Handlers render them as ``{"error": message}``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors surfaced to callers."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        self.message = message or self.public_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ClientInputError(AppError):
    """Bad or missing request fields. Never retried."""

    status_code = 400
    public_message = "Invalid request"


class UpstreamError(AppError):
    """Non-success answer from the upstream provider.

    Status code and extracted message are passed through unchanged.
    """

    public_message = "OpenAI API error"

    def __init__(self, status_code: int, message: str | None = None) -> None:
        super().__init__(message, status_code=status_code)


class ConfigError(AppError):
    """Server is missing configuration (e.g. the upstream credential).

    The detailed reason is only logged; callers get a generic message.
    """

    status_code = 500
    public_message = "Server configuration error"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(self.public_message)


class TransportError(AppError):
    """Network, socket or media-device failure."""

    status_code = 502
    public_message = "Failed to reach upstream service"


class StreamParseError(AppError):
    """Malformed event block or JSON payload inside a stream.

    Always recovered locally: the unit is skipped and the stream goes on.
    """

    status_code = 502
    public_message = "Malformed upstream event"


def register_exception_handlers(app: FastAPI) -> None:
    """Render the error taxonomy as ``{"error": message}`` responses."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if isinstance(exc, ConfigError):
            logger.error(f"Configuration error on {request.url.path}: {exc.reason}")
        elif exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        else:
            logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "Invalid request")
        else:
            message = "Invalid request"
        logger.info(f"Rejected request to {request.url.path}: {message}")
        return JSONResponse(status_code=400, content={"error": message})
