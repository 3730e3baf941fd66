"""Request logging middleware.

Every proxied call is logged with a short request id that is echoed
back in ``X-Request-ID`` so client reports can be matched to log lines.
"""

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log HTTP requests and responses."""

    def __init__(
        self,
        app,
        exclude_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.exclude_paths = exclude_paths or ["/health", "/api/v1/health"]

    async def dispatch(self, request: Request, call_next) -> Response:
        """Log request and response details."""
        if any(request.url.path.startswith(p) for p in self.exclude_paths):
            return await call_next(request)

        request_id = str(uuid.uuid4())[:8]
        request.state.request_id = request_id

        forwarded = request.headers.get("x-forwarded-for")
        client_ip = (
            forwarded.split(",")[0].strip()
            if forwarded
            else (request.client.host if request.client else "unknown")
        )

        start_time = time.time()
        logger.info(
            f"{request.method} {request.url.path} from={client_ip}",
            extra={"request_id": request_id},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"ERROR {type(e).__name__}: {str(e)[:100]} duration={duration_ms:.1f}ms",
                extra={"request_id": request_id},
            )
            raise

        # For event streams this is time-to-first-byte, not stream length
        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"{response.status_code} {response.headers.get('content-type', '-')} "
            f"duration={duration_ms:.1f}ms",
            extra={"request_id": request_id},
        )
        response.headers["X-Request-ID"] = request_id
        return response
