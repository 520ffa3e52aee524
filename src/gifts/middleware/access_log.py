"""Slow request logging."""

import time
from typing import Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log requests that took at least ``slow_ms`` milliseconds as ``api_slow``."""

    def __init__(self, app: Any, slow_ms: int = 400) -> None:  # noqa: ANN401
        super().__init__(app)
        self.slow_ms = slow_ms

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if elapsed_ms >= self.slow_ms:
            logger.info(
                "api_slow",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                elapsed_ms=elapsed_ms,
            )
        return response
