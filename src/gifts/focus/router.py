"""Focus stats router."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from gifts.auth.dependencies import get_current_user_id
from gifts.focus.service import get_stats, map_stats, record_session
from gifts.rowstore import RowStore, get_store
from gifts.schemas import CamelModel

router = APIRouter(prefix="/api/focus", tags=["Focus"])


class CompleteSessionRequest(CamelModel):
    focus_minutes: Any = None


@router.get("/stats")
async def focus_stats(
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    return {"stats": map_stats(await get_stats(store, user_id))}


@router.patch("/stats/complete-session")
async def complete_session(
    body: CompleteSessionRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    row = await record_session(store, user_id, body.focus_minutes)
    return {"ok": True, "stats": map_stats(row)}
