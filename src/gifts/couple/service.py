"""Per-user relationship settings (together date, connection flag)."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any

import structlog

from gifts.config import get_settings
from gifts.db.base import to_iso, utcnow
from gifts.errors import BadRequest
from gifts.rowstore import Row, RowStore, UniqueViolation, eq
from gifts.users.service import require_user
from gifts.validation import parse_iso_date

logger = structlog.get_logger()


def default_together_date() -> date:
    return date.fromisoformat(get_settings().default_together_date)


async def ensure_user_settings(store: RowStore, user_id: str, is_connected: bool = False) -> Row:
    """Return the settings row, creating it with defaults when absent."""
    existing = await store.get("user_settings", where=eq("user_id", user_id))
    if existing:
        return existing
    try:
        rows = await store.insert(
            "user_settings",
            {
                "user_id": user_id,
                "together_date": default_together_date(),
                "is_connected": bool(is_connected),
            },
        )
        return rows[0]
    except UniqueViolation:
        # Created concurrently by another request.
        row = await store.get("user_settings", where=eq("user_id", user_id))
        if row is None:
            raise
        return row


async def sync_connection_settings(store: RowStore, user_id: str, is_connected: bool) -> None:
    await store.upsert(
        "user_settings",
        {"user_id": user_id, "is_connected": bool(is_connected)},
        conflict=["user_id"],
    )


async def settle_connection_sync(store: RowStore, user_ids: list[str], is_connected: bool, label: str) -> None:
    """Sync every user's connection flag; failures are logged, never raised."""
    results = await asyncio.gather(
        *(sync_connection_settings(store, uid, is_connected) for uid in user_ids),
        return_exceptions=True,
    )
    for uid, result in zip(user_ids, results):
        if isinstance(result, BaseException):
            logger.error("settings_sync_failed", step=label, user_id=uid, error=str(result))


async def update_together_date(store: RowStore, user_id: str, together_date: object) -> tuple[Row, Row]:
    """Set the together date for the caller and, if bound, their partner.

    Returns:
        The caller's settings row and user row.
    """
    if not together_date:
        raise BadRequest("togetherDate is required")
    parsed = parse_iso_date(together_date, "togetherDate")
    user = await require_user(store, user_id)

    is_connected = bool(user.get("partner_id"))
    target_ids = [user_id, user["partner_id"]] if is_connected else [user_id]
    now = utcnow()
    rows = await store.upsert(
        "user_settings",
        [
            {"user_id": uid, "together_date": parsed, "is_connected": is_connected, "updated_at": now}
            for uid in target_ids
        ],
        conflict=["user_id"],
    )
    own = next(
        (row for row in rows if row["user_id"] == user_id),
        {"user_id": user_id, "together_date": parsed, "is_connected": is_connected},
    )
    return own, user


async def load_settings(store: RowStore, user: Row) -> Row:
    """Settings row for ``user`` or an unsaved default."""
    row = await store.get("user_settings", where=eq("user_id", user["id"]))
    if row is not None:
        return row
    return {
        "user_id": user["id"],
        "together_date": default_together_date(),
        "is_connected": bool(user.get("partner_id")),
    }


def map_settings(settings_row: Row | None, user_row: Row | None) -> dict[str, Any]:
    settings_row = settings_row or {}
    user_row = user_row or {}
    return {
        "togetherDate": to_iso(settings_row.get("together_date")),
        "isConnected": bool(settings_row.get("is_connected")),
        "inviteCode": user_row.get("invitation_code") or None,
        "boundInviteCode": user_row.get("bound_invitation_code") or None,
    }
