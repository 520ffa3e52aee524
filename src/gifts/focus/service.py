"""Focus statistics persistence."""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Any

import structlog

from gifts.db.base import to_iso, utcnow
from gifts.focus.streak import FocusSnapshot, complete_session, has_stale_today, parse_focus_minutes
from gifts.rowstore import Row, RowStore, UniqueViolation, eq

logger = structlog.get_logger()


def today_utc() -> date:
    return utcnow().date()


def map_stats(row: Row) -> dict[str, Any]:
    snapshot = FocusSnapshot.from_row(row)
    return {
        "userId": row["user_id"],
        "todayFocusTime": snapshot.today_focus_minutes,
        "todaySessions": snapshot.today_sessions,
        "streak": snapshot.streak,
        "totalSessions": snapshot.total_sessions,
        "lastFocusDate": to_iso(snapshot.last_focus_date),
        "updatedAt": to_iso(row.get("updated_at")),
    }


async def ensure_stats_row(store: RowStore, user_id: str) -> Row:
    existing = await store.get("focus_stats", where=eq("user_id", user_id))
    if existing:
        return existing
    try:
        rows = await store.insert("focus_stats", {"user_id": user_id, **FocusSnapshot().as_row()})
        return rows[0]
    except UniqueViolation:
        row = await store.get("focus_stats", where=eq("user_id", user_id))
        if row is None:
            raise
        return row


async def _write(store: RowStore, user_id: str, snapshot: FocusSnapshot) -> Row:
    rows = await store.update(
        "focus_stats",
        {**snapshot.as_row(), "updated_at": utcnow()},
        where=eq("user_id", user_id),
    )
    return rows[0]


async def get_stats(store: RowStore, user_id: str, today: date | None = None) -> Row:
    """The caller's stats row; yesterday's "today" counters are zeroed on read."""
    today = today or today_utc()
    row = await ensure_stats_row(store, user_id)
    snapshot = FocusSnapshot.from_row(row)
    if has_stale_today(snapshot, today):
        reset = replace(snapshot, today_focus_minutes=0, today_sessions=0)
        row = await _write(store, user_id, reset)
    return row


async def record_session(store: RowStore, user_id: str, focus_minutes: object, today: date | None = None) -> Row:
    minutes = parse_focus_minutes(focus_minutes)
    today = today or today_utc()
    row = await ensure_stats_row(store, user_id)
    updated = complete_session(FocusSnapshot.from_row(row), today, minutes)
    logger.info("focus_session_completed", user_id=user_id, minutes=minutes, streak=updated.streak)
    return await _write(store, user_id, updated)
