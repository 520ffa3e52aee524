"""Events router."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response

from gifts.auth.dependencies import get_current_user_id
from gifts.events import service
from gifts.rowstore import RowStore, get_store
from gifts.schemas import CamelModel
from gifts.users.service import require_user

router = APIRouter(prefix="/api/events", tags=["Events"])


class EventRequest(CamelModel):
    title: Any = None
    subtitle: Any = None
    date: Any = None
    type: Any = None
    image: Any = None


@router.get("")
async def list_events(
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    user = await require_user(store, user_id)
    return {"events": await service.list_events(store, user)}


@router.post("", status_code=201)
async def create_event(
    body: EventRequest,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    event, deduped = await service.create_event(store, user_id, body.payload())
    if deduped:
        response.status_code = 200
        return {"event": event, "deduped": True}
    return {"event": event}


@router.patch("/{event_id}")
async def update_event(
    event_id: str,
    body: EventRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    return {"event": await service.update_event(store, user_id, event_id, body.payload())}


@router.delete("/{event_id}", status_code=204)
async def delete_event(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> Response:
    await service.delete_event(store, user_id, event_id)
    return Response(status_code=204)
