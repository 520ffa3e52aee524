"""HTTP-facing error types.

Services raise these directly; the global handlers in
``gifts.middleware.error_handler`` render them as ``{"detail": ...}``.
"""

from __future__ import annotations

from fastapi import HTTPException


class AppError(HTTPException):
    """Base class for errors that carry their own status code."""

    status_code_default = 500

    def __init__(self, detail: str, headers: dict[str, str] | None = None) -> None:
        super().__init__(status_code=self.status_code_default, detail=detail, headers=headers)


class BadRequest(AppError):
    status_code_default = 400


class Unauthorized(AppError):
    status_code_default = 401


class Forbidden(AppError):
    status_code_default = 403


class NotFound(AppError):
    status_code_default = 404


class RequestTimeout(AppError):
    status_code_default = 408


class Conflict(AppError):
    status_code_default = 409


class PayloadTooLarge(AppError):
    status_code_default = 413


class TooManyRequests(AppError):
    status_code_default = 429


class ServiceUnavailable(AppError):
    status_code_default = 503
