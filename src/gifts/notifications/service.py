"""Notification persistence.

Types: interaction (something a partner did), system (everything else).
Notifications created as a side effect of another operation are spawned as
detached tasks by the caller; the functions here just talk to the store.
"""

from __future__ import annotations

import logging
from typing import Any

from gifts.db.base import to_iso
from gifts.errors import BadRequest, NotFound
from gifts.rowstore import Row, RowStore, all_of, desc, eq

logger = logging.getLogger(__name__)

VALID_TYPES = ("system", "interaction")


def normalize_type(value: object) -> str:
    """Anything other than ``interaction`` is a system notification."""
    return "interaction" if value == "interaction" else "system"


async def add_notification(
    store: RowStore,
    user_id: str,
    title: str,
    message: str,
    type_: str = "system",
) -> Row:
    """Persist a notification for ``user_id``."""
    rows = await store.insert(
        "notifications",
        {
            "user_id": user_id,
            "title": title,
            "message": message,
            "type": normalize_type(type_),
            "read": False,
        },
    )
    logger.debug("Notification created: user=%s type=%s title=%s", user_id, type_, title)
    return rows[0]


async def list_notifications(store: RowStore, user_id: str) -> list[Row]:
    return await store.select(
        "notifications",
        where=eq("user_id", user_id),
        order_by=[desc("created_at"), desc("id")],
    )


async def create_from_request(store: RowStore, user_id: str, body: dict[str, Any]) -> Row:
    title = str(body.get("title") or "").strip()
    message = str(body.get("message") or "").strip()
    if not title or not message:
        raise BadRequest("title and message are required")
    return await add_notification(store, user_id, title, message, normalize_type(body.get("type")))


async def mark_as_read(store: RowStore, user_id: str, notification_id: str) -> Row:
    """Mark one of the caller's notifications read.

    Raises:
        NotFound: If the notification does not exist or belongs to someone else.
    """
    rows = await store.update(
        "notifications",
        {"read": True},
        where=all_of(eq("id", notification_id), eq("user_id", user_id)),
    )
    if not rows:
        raise NotFound("Notification not found")
    return rows[0]


async def clear_notifications(store: RowStore, user_id: str) -> int:
    """Delete every notification the caller owns. Returns the number removed."""
    rows = await store.delete("notifications", where=eq("user_id", user_id))
    return len(rows)


def map_notification(row: Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "title": row["title"],
        "message": row["message"],
        "type": row["type"],
        "read": bool(row.get("read")),
        "createdAt": to_iso(row.get("created_at")),
    }
