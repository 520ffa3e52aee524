"""Shared timeline events (anniversaries, trips, milestones)."""

from __future__ import annotations

from typing import Any

import structlog

from gifts.config import get_settings
from gifts.db.base import to_iso
from gifts.errors import BadRequest, NotFound
from gifts.idempotency.dedup import Deduplicator, event_fingerprint
from gifts.rowstore import Row, RowStore, all_of, desc, eq, in_
from gifts.users.service import load_author_map, map_author, shared_user_ids
from gifts.validation import normalize_loose_date, optional_text, parse_iso_date, required_text

logger = structlog.get_logger()

TITLE_MAX_LENGTH = 120
SUBTITLE_MAX_LENGTH = 160
TYPE_MAX_LENGTH = 32

_deduplicator: Deduplicator[str, dict[str, Any]] | None = None


def get_create_deduplicator() -> Deduplicator[str, dict[str, Any]]:
    global _deduplicator  # noqa: PLW0603
    if _deduplicator is None:
        _deduplicator = Deduplicator(get_settings().event_create_dedup_ttl_seconds)
    return _deduplicator


def reset_create_deduplicator() -> None:
    global _deduplicator  # noqa: PLW0603
    _deduplicator = None


def map_event(row: Row, author: Row | None = None) -> dict[str, Any]:
    return {
        "id": row["id"],
        "title": row["title"],
        "subtitle": row.get("subtitle") or "",
        "date": to_iso(row.get("date")),
        "type": row["type"],
        "image": row.get("image") or "",
        "userId": row.get("user_id") or "",
        "author": map_author(author),
    }


async def load_events(store: RowStore, user_ids: list[str]) -> list[Row]:
    if not user_ids:
        return []
    return await store.select("events", where=in_("user_id", user_ids), order_by=[desc("created_at")])


async def list_events(store: RowStore, user: Row) -> list[dict[str, Any]]:
    user_ids = shared_user_ids(user)
    rows = await load_events(store, user_ids)
    authors = await load_author_map(store, user_ids)
    return [map_event(row, authors.get(row.get("user_id"))) for row in rows]


async def create_event(store: RowStore, user_id: str, body: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Create an event; an identical create within the dedup window returns the first one."""
    title, date, type_ = body.get("title"), body.get("date"), body.get("type")
    if not title or not date or not type_:
        raise BadRequest("title, date and type are required")

    title = required_text(title, "title", TITLE_MAX_LENGTH)
    date = parse_iso_date(normalize_loose_date(date), "date").isoformat()
    type_ = required_text(type_, "type", TYPE_MAX_LENGTH)
    subtitle = optional_text(body.get("subtitle"), "subtitle", SUBTITLE_MAX_LENGTH)
    image = body.get("image") or ""

    async def create() -> dict[str, Any]:
        rows = await store.insert(
            "events",
            {
                "user_id": user_id,
                "title": title,
                "subtitle": subtitle,
                "date": parse_iso_date(date),
                "type": type_,
                "image": str(image),
            },
        )
        logger.info("event_created", user_id=user_id, event_id=rows[0]["id"])
        return map_event(rows[0])

    key = event_fingerprint(user_id, date, type_, title, subtitle)
    return await get_create_deduplicator().run(key, create)


async def update_event(store: RowStore, user_id: str, event_id: str, body: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if isinstance(body.get("title"), str):
        payload["title"] = required_text(body["title"], "title", TITLE_MAX_LENGTH)
    if isinstance(body.get("subtitle"), str):
        payload["subtitle"] = optional_text(body["subtitle"], "subtitle", SUBTITLE_MAX_LENGTH)
    if isinstance(body.get("date"), str):
        payload["date"] = parse_iso_date(normalize_loose_date(body["date"]), "date")
    if isinstance(body.get("type"), str):
        payload["type"] = required_text(body["type"], "type", TYPE_MAX_LENGTH)
    if isinstance(body.get("image"), str):
        payload["image"] = body["image"]
    if not payload:
        raise BadRequest("No fields to update")

    rows = await store.update("events", payload, where=all_of(eq("id", event_id), eq("user_id", user_id)))
    if not rows:
        raise NotFound("Event not found")
    return map_event(rows[0])


async def delete_event(store: RowStore, user_id: str, event_id: str) -> None:
    await store.delete("events", where=all_of(eq("id", event_id), eq("user_id", user_id)))
