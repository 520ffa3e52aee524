"""Shared period and mood calendar."""

from __future__ import annotations

import asyncio
from typing import Any

from gifts.db.base import to_iso
from gifts.errors import BadRequest
from gifts.period.mood import normalize_flow, normalize_mood
from gifts.rowstore import Row, RowStore, all_of, desc, eq, gte, in_, lte
from gifts.users.service import load_author_map, map_author, require_user, shared_user_ids
from gifts.validation import parse_iso_date

ENTRY_LIMIT = 1500


def map_entry(row: Row, author: Row | None = None) -> dict[str, Any]:
    return {
        "id": row["id"],
        "date": to_iso(row.get("entry_date")),
        "userId": row["user_id"],
        "isPeriod": bool(row.get("is_period")),
        "mood": normalize_mood(row.get("mood")),
        "flow": row.get("flow") or None,
        "createdAt": to_iso(row.get("created_at")),
        "updatedAt": to_iso(row.get("updated_at")),
        "author": map_author(author),
    }


async def list_entries(store: RowStore, user_id: str, start: object = None, end: object = None) -> list[dict]:
    """Entries for the caller and their partner, newest date first, optionally bounded."""
    user = await require_user(store, user_id)
    filters = []
    if start:
        filters.append(gte("entry_date", parse_iso_date(start, "start")))
    if end:
        filters.append(lte("entry_date", parse_iso_date(end, "end")))

    user_ids = shared_user_ids(user)
    rows, authors = await asyncio.gather(
        store.select(
            "period_tracker_entries",
            where=all_of(in_("user_id", user_ids), *filters),
            order_by=[desc("entry_date"), desc("updated_at")],
            limit=ENTRY_LIMIT,
        ),
        load_author_map(store, user_ids),
    )
    return [map_entry(row, authors.get(row["user_id"])) for row in rows]


async def save_entry(store: RowStore, user_id: str, entry_date: str, body: dict[str, Any]) -> dict[str, Any] | None:
    """Upsert the caller's entry for ``entry_date``.

    An entry with no period flag, mood or flow is deleted instead, and None is
    returned. Flow only sticks on period days.

    Raises:
        BadRequest: If the date is malformed or a male account marks a period day.
    """
    user = await require_user(store, user_id)
    day = parse_iso_date(entry_date, "date")

    is_period = body.get("isPeriod") is True
    mood = normalize_mood(body.get("mood") if isinstance(body.get("mood"), str) else None)
    flow = normalize_flow(body.get("flow")) if is_period else None

    if (user.get("gender") or "male") == "male" and is_period:
        raise BadRequest("Male account cannot mark period status")

    where = all_of(eq("user_id", user_id), eq("entry_date", day))
    if not is_period and not mood and not flow:
        await store.delete("period_tracker_entries", where=where)
        return None

    rows = await store.upsert(
        "period_tracker_entries",
        {"user_id": user_id, "entry_date": day, "is_period": is_period, "mood": mood, "flow": flow},
        conflict=["user_id", "entry_date"],
    )
    return map_entry(rows[0], user)
