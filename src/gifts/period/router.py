"""Period tracker router."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from gifts.auth.dependencies import get_current_user_id
from gifts.period.service import list_entries, save_entry
from gifts.rowstore import RowStore, get_store
from gifts.schemas import CamelModel

router = APIRouter(prefix="/api/period-tracker", tags=["Period Tracker"])


class PeriodEntryRequest(CamelModel):
    is_period: Any = None
    mood: Any = None
    flow: Any = None


@router.get("")
async def get_entries(
    start: str | None = None,
    end: str | None = None,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    return {"entries": await list_entries(store, user_id, (start or "").strip(), (end or "").strip())}


@router.patch("/{entry_date}")
async def patch_entry(
    entry_date: str,
    body: PeriodEntryRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    """Set or clear the caller's entry for one day."""
    entry = await save_entry(store, user_id, entry_date.strip(), body.payload())
    return {"ok": True, "entry": entry}
