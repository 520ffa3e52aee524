"""Relationship settings router."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from gifts.auth.dependencies import get_current_user_id
from gifts.couple.service import map_settings, update_together_date
from gifts.rowstore import RowStore, get_store
from gifts.schemas import CamelModel

router = APIRouter(prefix="/api/settings", tags=["Settings"])


class SettingsUpdateRequest(CamelModel):
    together_date: str | None = None


@router.patch("")
async def patch_settings(
    body: SettingsUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    """Set the together date for the caller and their partner."""
    settings_row, user = await update_together_date(store, user_id, body.together_date)
    return {"settings": map_settings(settings_row, user)}
