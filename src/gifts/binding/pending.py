"""The pending-request ledger.

A pair's binding state is never stored; it is derived from the newest live
pending row on each side by ``pending_state``. Expired rows are swept lazily
by the read paths, never by a background job.
"""

from __future__ import annotations

import asyncio
from enum import Enum

from gifts.db.base import as_utc, utcnow
from gifts.rowstore import Row, RowStore, all_of, any_of, desc, eq, gte, lt

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"
EXPIRED = "expired"

LEDGER_COLUMNS = ["id", "requester_user_id", "target_user_id", "expires_at", "created_at"]


class PendingState(str, Enum):
    NONE = "none"
    SAME_PAIR = "same_pair"
    REQUESTER_BUSY = "requester_busy"
    TARGET_BUSY = "target_busy"


def pending_state(
    requester_pending: Row | None,
    target_pending: Row | None,
    requester_id: str,
    target_id: str,
) -> PendingState:
    """Classify a (requester, target) pair from each side's live pending row.

    A row linking exactly this pair, in either direction, wins over "busy".
    """
    same_pair = (requester_pending is not None and requester_pending.get("target_user_id") == target_id) or (
        target_pending is not None and target_pending.get("requester_user_id") == requester_id
    )
    if same_pair:
        return PendingState.SAME_PAIR
    if requester_pending is not None:
        return PendingState.REQUESTER_BUSY
    if target_pending is not None:
        return PendingState.TARGET_BUSY
    return PendingState.NONE


async def _latest_pending(store: RowStore, column: str, user_id: str) -> Row | None:
    rows = await store.select(
        "binding_requests",
        where=all_of(eq(column, user_id), eq("status", PENDING), gte("expires_at", utcnow())),
        columns=LEDGER_COLUMNS,
        order_by=[desc("created_at")],
        limit=1,
    )
    return rows[0] if rows else None


async def latest_pending_by_requester(store: RowStore, requester_id: str) -> Row | None:
    return await _latest_pending(store, "requester_user_id", requester_id)


async def latest_pending_by_target(store: RowStore, target_id: str) -> Row | None:
    return await _latest_pending(store, "target_user_id", target_id)


async def pending_between(store: RowStore, user_a: str, user_b: str) -> Row | None:
    """The newest live pending row linking the two users, whichever of them sent it."""
    rows = await store.select(
        "binding_requests",
        where=all_of(
            any_of(
                all_of(eq("requester_user_id", user_a), eq("target_user_id", user_b)),
                all_of(eq("requester_user_id", user_b), eq("target_user_id", user_a)),
            ),
            eq("status", PENDING),
            gte("expires_at", utcnow()),
        ),
        columns=LEDGER_COLUMNS,
        order_by=[desc("created_at")],
        limit=1,
    )
    return rows[0] if rows else None


async def resolve_pending_state(store: RowStore, requester_id: str, target_id: str) -> PendingState:
    pair_pending, requester_pending, target_pending = await asyncio.gather(
        pending_between(store, requester_id, target_id),
        latest_pending_by_requester(store, requester_id),
        latest_pending_by_target(store, target_id),
    )
    if pair_pending is not None:
        return PendingState.SAME_PAIR
    return pending_state(requester_pending, target_pending, requester_id, target_id)


async def expire_stale_for_pair(store: RowStore, requester_id: str, target_id: str) -> list[Row]:
    """Expire past-due pending rows held by the requester or aimed at the target."""
    return await store.update(
        "binding_requests",
        {"status": EXPIRED},
        where=all_of(
            eq("status", PENDING),
            lt("expires_at", utcnow()),
            any_of(eq("requester_user_id", requester_id), eq("target_user_id", target_id)),
        ),
    )


async def expire_stale_for_target(store: RowStore, target_id: str) -> list[Row]:
    return await store.update(
        "binding_requests",
        {"status": EXPIRED},
        where=all_of(eq("target_user_id", target_id), eq("status", PENDING), lt("expires_at", utcnow())),
    )


async def set_status(
    store: RowStore, request_id: str, status: str, *, only_if: str | None = None, **extra: object
) -> list[Row]:
    """Move a request to ``status``; with ``only_if`` the row must still be in that state."""
    where = eq("id", request_id) if only_if is None else all_of(eq("id", request_id), eq("status", only_if))
    return await store.update("binding_requests", {"status": status, **extra}, where=where)


def is_expired(request: Row) -> bool:
    return as_utc(request["expires_at"]) < utcnow()  # type: ignore[operator]
