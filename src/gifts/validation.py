"""Input normalization shared by the routers.

Every helper either returns the normalized value or raises ``BadRequest``
with a message meant for the end user.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

from gifts.errors import BadRequest

SIMPLE_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
OTP_RE = re.compile(r"^\d{6}$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
LOOSE_YMD_RE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})")


def normalize_email(value: object) -> str:
    email = str(value or "").strip().lower()
    if not email or not SIMPLE_EMAIL_RE.match(email):
        raise BadRequest("邮箱格式不正确")
    return email


def check_password(value: object, min_length: int = 6) -> str:
    password = str(value or "")
    if len(password) < min_length:
        raise BadRequest(f"密码至少 {min_length} 位")
    return password


def check_verification_code(value: object) -> str:
    code = str(value or "").strip()
    if not OTP_RE.match(code):
        raise BadRequest("验证码格式不正确")
    return code


def parse_iso_date(value: object, field_name: str = "date") -> date:
    """Accept only ``YYYY-MM-DD`` and return it as a ``date``."""
    raw = str(value or "").strip()
    if not ISO_DATE_RE.match(raw):
        raise BadRequest(f"{field_name} 必须是 YYYY-MM-DD 格式")
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise BadRequest(f"{field_name} 必须是 YYYY-MM-DD 格式") from None


def normalize_loose_date(value: object) -> str:
    """Coerce ``2024/3/5``-style or ISO datetime strings to ``YYYY-MM-DD``.

    Anything unrecognised is returned unchanged so the strict check can reject it.
    """
    raw = str(value or "").strip()
    if not raw:
        return ""
    match = LOOSE_YMD_RE.match(raw)
    if match:
        year, month, day = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return raw
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date().isoformat()


def required_text(value: object, field_name: str, max_length: int) -> str:
    text = str(value or "").strip()
    if not text:
        raise BadRequest(f"{field_name} is required")
    if len(text) > max_length:
        raise BadRequest(f"{field_name} must be at most {max_length} characters")
    return text


def optional_text(value: object, field_name: str, max_length: int) -> str:
    text = str(value or "").strip()
    if len(text) > max_length:
        raise BadRequest(f"{field_name} must be at most {max_length} characters")
    return text
