"""
HS256 JWT session tokens.

Tokens carry a ``tv`` (token version) claim. Bumping ``users.token_version``
revokes every token issued before the bump.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from gifts.config import get_settings


def normalize_token_version(value: Any) -> int:  # noqa: ANN401
    """Coerce a stored or claimed version to a non-negative int (garbage becomes 0)."""
    try:
        parsed = int(str(value if value is not None else 0), 10)
    except ValueError:
        return 0
    return parsed if parsed >= 0 else 0


def create_access_token(user_id: str, token_version: int = 0) -> str:
    """
    Create a session token.

    Args:
        user_id: The user's id.
        token_version: The user's current ``token_version``.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "tv": normalize_token_version(token_version),
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_expire_minutes),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode a session token.

    Returns:
        Decoded payload dictionary.

    Raises:
        jwt.InvalidTokenError: If the signature, issuer, audience or expiry is wrong,
            or the subject is missing.
    """
    settings = get_settings()
    payload: dict[str, Any] = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
    )
    if not str(payload.get("sub") or "").strip():
        msg = "Token has no subject"
        raise jwt.InvalidTokenError(msg)
    return payload
