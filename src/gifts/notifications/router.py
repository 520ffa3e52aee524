"""Notifications router."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response

from gifts.auth.dependencies import get_current_user_id
from gifts.notifications.service import (
    clear_notifications,
    create_from_request,
    list_notifications,
    map_notification,
    mark_as_read,
)
from gifts.rowstore import RowStore, get_store
from gifts.schemas import CamelModel

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


class NotificationRequest(CamelModel):
    title: Any = None
    message: Any = None
    type: Any = None


@router.get("")
async def get_notifications(
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    """List the caller's notifications, newest first."""
    rows = await list_notifications(store, user_id)
    return {"notifications": [map_notification(row) for row in rows]}


@router.post("", status_code=201)
async def create_notification(
    body: NotificationRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    row = await create_from_request(store, user_id, body.payload())
    return {"notification": map_notification(row)}


@router.patch("/{notification_id}/read")
async def read_notification(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    row = await mark_as_read(store, user_id, notification_id)
    return {"notification": map_notification(row)}


@router.delete("", status_code=204)
async def delete_notifications(
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> Response:
    await clear_notifications(store, user_id)
    return Response(status_code=204)
