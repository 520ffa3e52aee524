"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
import structlog
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gifts.auth.jwt import normalize_token_version, verify_token
from gifts.errors import ServiceUnavailable, Unauthorized
from gifts.rowstore import RowStore, TransportError, eq, get_store

logger = structlog.get_logger()

INVALID_TOKEN_MESSAGE = "Invalid or expired token"

_bearer = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    store: RowStore = Depends(get_store),
) -> str:
    """
    Resolve the caller's user id from a bearer token.

    The token's version is checked against the live row on every request, so
    a password reset revokes outstanding sessions immediately. Every failure
    mode yields the same 401 message; a store outage yields 503.
    """
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise Unauthorized("Unauthorized")

    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise Unauthorized(INVALID_TOKEN_MESSAGE) from e

    user_id = str(payload["sub"]).strip()
    try:
        row = await store.get("users", where=eq("id", user_id), columns=["id", "token_version"])
    except TransportError as e:
        logger.error("auth_token_version_lookup_failed", user_id=user_id, error=str(e))
        raise ServiceUnavailable("Authentication service temporarily unavailable") from e

    if row is None:
        raise Unauthorized(INVALID_TOKEN_MESSAGE)
    if normalize_token_version(payload.get("tv")) != normalize_token_version(row.get("token_version")):
        raise Unauthorized(INVALID_TOKEN_MESSAGE)
    return row["id"]
