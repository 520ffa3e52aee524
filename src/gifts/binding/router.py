"""Binding router: connect/disconnect under /api/settings, requests under /api/bindings."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from gifts.auth.dependencies import get_current_user_id
from gifts.binding import service
from gifts.binding.schemas import ConnectRequest, RespondRequest
from gifts.rowstore import RowStore, get_store

router = APIRouter(prefix="/api", tags=["Binding"])


@router.post("/settings/connect", status_code=202)
async def connect(
    body: ConnectRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    """Ask the owner of an invite code to bind. Safe to retry."""
    return await service.connect(store, user_id, body.payload())


@router.post("/settings/disconnect")
async def disconnect(
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    return await service.disconnect(store, user_id)


@router.get("/bindings/pending")
async def pending_requests(
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    return await service.list_pending(store, user_id)


@router.get("/bindings/confirm", response_class=HTMLResponse)
async def confirm_by_link(
    token: str = "",
    store: RowStore = Depends(get_store),
) -> HTMLResponse:
    """Landing page for the emailed confirmation link (no bearer token)."""
    status_code, html = await service.confirm(store, token)
    return HTMLResponse(content=html, status_code=status_code)


@router.post("/bindings/{request_id}/respond")
async def respond(
    request_id: str,
    body: RespondRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    return await service.respond(store, user_id, request_id, body.payload())
