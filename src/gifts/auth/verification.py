"""Email verification codes (signup and password reset).

One row per (email, purpose) holds the SHA-256 of the outstanding six-digit
code, an attempt counter, and for signups the argon2 hash of the candidate
password. Codes are single use and expire after a configurable TTL.

Attempts are reserved with a compare-and-swap increment *before* the hash is
compared, so concurrent guesses can never run more comparisons than the
ceiling allows. Every failure produces the same message.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

import structlog

from gifts.config import get_settings
from gifts.db.base import as_utc, utcnow
from gifts.errors import BadRequest, TooManyRequests
from gifts.rowstore import Row, RowStore, all_of, eq

logger = structlog.get_logger()

SIGNUP = "signup"
RESET_PASSWORD = "reset_password"
PURPOSES = (SIGNUP, RESET_PASSWORD)

VERIFY_FAILED_MESSAGE = "验证码错误或已失效，请重新发送验证码。"
TOO_FREQUENT_MESSAGE = "请求过于频繁，请稍后重试。"


def generate_verification_code() -> str:
    """Six decimal digits from a CSPRNG, never starting with 0."""
    return str(100000 + secrets.randbelow(900000))


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


def cooldown_for(purpose: str) -> int:
    settings = get_settings()
    if purpose == SIGNUP:
        return settings.signup_code_cooldown_seconds
    return settings.reset_code_cooldown_seconds


def ensure_not_frequent(last_sent_at: datetime | None, cooldown_seconds: int, now: datetime | None = None) -> None:
    """Raise 429 when the previous code for this slot was sent inside the cooldown."""
    if last_sent_at is None:
        return
    now = now or utcnow()
    if now - as_utc(last_sent_at) < timedelta(seconds=cooldown_seconds):  # type: ignore[operator]
        raise TooManyRequests(TOO_FREQUENT_MESSAGE)


async def get_verification(store: RowStore, email: str, purpose: str) -> Row | None:
    return await store.get("email_verifications", where=all_of(eq("email", email), eq("purpose", purpose)))


async def issue_code(
    store: RowStore,
    email: str,
    purpose: str,
    *,
    password_hash: str | None,
    deliverable: bool,
) -> str | None:
    """Store a fresh code for (email, purpose), replacing any previous one.

    When ``deliverable`` is false a random decoy hash is stored instead, so
    the row looks the same whether or not anyone will ever receive a code.

    Returns:
        The plaintext code to send, or None for a decoy.
    """
    settings = get_settings()
    code = generate_verification_code()
    stored_code = code if deliverable else generate_verification_code()
    now = utcnow()
    await store.upsert(
        "email_verifications",
        {
            "email": email,
            "purpose": purpose,
            "code_hash": hash_code(stored_code),
            "password_hash": password_hash,
            "expires_at": now + timedelta(minutes=settings.verification_code_ttl_minutes),
            "attempts": 0,
            "last_sent_at": now,
        },
        conflict=["email", "purpose"],
    )
    return code if deliverable else None


async def _reserve_attempt(store: RowStore, row: Row, max_attempts: int) -> bool:
    """Atomically take one attempt slot. False once the ceiling is reached."""
    current = row
    for _ in range(max_attempts + 1):
        attempts = int(current.get("attempts") or 0)
        if attempts >= max_attempts:
            return False
        updated = await store.update(
            "email_verifications",
            {"attempts": attempts + 1},
            where=all_of(eq("id", current["id"]), eq("attempts", attempts)),
        )
        if updated:
            return True
        refreshed = await store.get("email_verifications", where=eq("id", current["id"]))
        if refreshed is None:
            return False
        current = refreshed
    return False


async def consume_code(store: RowStore, email: str, purpose: str, code: str) -> Row:
    """Check ``code`` for (email, purpose) and return the verification row.

    The row is not deleted here; callers delete it once their own write
    succeeded.

    Raises:
        BadRequest: Missing, expired, exhausted or wrong code (one message for all).
    """
    settings = get_settings()
    row = await get_verification(store, email, purpose)
    if row is None:
        raise BadRequest(VERIFY_FAILED_MESSAGE)

    if as_utc(row["expires_at"]) < utcnow():  # type: ignore[operator]
        await store.delete("email_verifications", where=eq("id", row["id"]))
        raise BadRequest(VERIFY_FAILED_MESSAGE)

    if not await _reserve_attempt(store, row, settings.verification_max_attempts):
        logger.info("verification_attempts_exhausted", purpose=purpose)
        raise BadRequest(VERIFY_FAILED_MESSAGE)

    if not hmac.compare_digest(hash_code(code), str(row["code_hash"])):
        raise BadRequest(VERIFY_FAILED_MESSAGE)
    return row


async def discard(store: RowStore, verification_id: str) -> None:
    await store.delete("email_verifications", where=eq("id", verification_id))
