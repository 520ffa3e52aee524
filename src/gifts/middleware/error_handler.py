"""Global error handlers: every error is rendered as ``{"detail": ...}``."""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gifts.rowstore import TransportError, UniqueViolation

logger = structlog.get_logger()

STORE_UNAVAILABLE_MESSAGE = "后端与数据库通信异常，请稍后重试"
EMAIL_TAKEN_MESSAGE = "该邮箱已完成注册，请直接登录。"


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle HTTP exceptions with consistent JSON format."""
        detail = exc.detail
        if exc.status_code == 404 and detail == "Not Found":
            detail = f"Route not found: {request.method} {request.url.path}"
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed bodies are client errors like any other bad input."""
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request body", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(TransportError)
    async def store_unavailable_handler(request: Request, exc: TransportError) -> JSONResponse:
        logger.error("store_unavailable", path=request.url.path, method=request.method, error=str(exc))
        return JSONResponse(status_code=503, content={"detail": STORE_UNAVAILABLE_MESSAGE})

    @app.exception_handler(UniqueViolation)
    async def unique_violation_handler(request: Request, exc: UniqueViolation) -> JSONResponse:
        logger.warning("unique_violation", path=request.url.path, constraint=exc.constraint, error=str(exc))
        if exc.touches("email"):
            return JSONResponse(status_code=409, content={"detail": EMAIL_TAKEN_MESSAGE})
        return JSONResponse(status_code=409, content={"detail": "Conflict"})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
