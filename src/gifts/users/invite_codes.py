"""Invite code generation for partner binding.

Codes look like ``GIFT-7KQ3``: a fixed prefix and four characters from an
alphabet without the easily-confused 0/O and 1/I. A couple of hand-issued
legacy codes are also accepted on input.
"""

from __future__ import annotations

import re
import secrets

from gifts.errors import BadRequest
from gifts.rowstore import RowStore, eq

INVITE_CHARSET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
INVITE_PREFIX = "GIFT-"
INVITE_LENGTH = 4
INVITE_CODE_RE = re.compile(r"^GIFT-[A-Z0-9]{4}$")
SPECIAL_INVITE_CODES = frozenset({"XHB-LLQ", "LLQ-XHB"})
MAX_GENERATION_ATTEMPTS = 12


class InviteCodeExhaustedError(RuntimeError):
    """No free code was found within the attempt budget."""


def generate_invite_code() -> str:
    """Generate a cryptographically random ``GIFT-XXXX`` code."""
    return INVITE_PREFIX + "".join(secrets.choice(INVITE_CHARSET) for _ in range(INVITE_LENGTH))


def normalize_invite_code(code: object) -> str:
    """Uppercase and validate an invite code supplied by a user."""
    normalized = str(code or "").strip().upper()
    if not INVITE_CODE_RE.match(normalized) and normalized not in SPECIAL_INVITE_CODES:
        raise BadRequest("邀请码格式不正确")
    return normalized


async def generate_unique_invite_code(store: RowStore) -> str:
    """Generate an invite code no existing user holds."""
    for _ in range(MAX_GENERATION_ATTEMPTS):
        code = generate_invite_code()
        existing = await store.get("users", where=eq("invitation_code", code), columns=["id"])
        if existing is None:
            return code
    msg = f"Failed to generate unique invite code after {MAX_GENERATION_ATTEMPTS} attempts"
    raise InviteCodeExhaustedError(msg)
