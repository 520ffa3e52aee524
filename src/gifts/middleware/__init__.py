"""Middleware registration."""

from fastapi import FastAPI

from gifts.config import Settings
from gifts.middleware.access_log import AccessLogMiddleware
from gifts.middleware.body_limit import BodyLimitMiddleware
from gifts.middleware.cors import setup_cors
from gifts.middleware.error_handler import setup_error_handlers
from gifts.middleware.logging import setup_logging
from gifts.middleware.rate_limit import RateLimitMiddleware, build_tiers
from gifts.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    FastAPI/Starlette executes middleware in reverse-add order (last added = outermost).
    CORS must be outermost so it wraps error responses from inner middleware (e.g. 429, 413).
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(AccessLogMiddleware, slow_ms=settings.slow_request_ms)
    app.add_middleware(
        RateLimitMiddleware,
        tiers=build_tiers(settings),
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(BodyLimitMiddleware, max_bytes=settings.body_limit_bytes)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
