"""Memories router."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Response

from gifts.auth.dependencies import get_current_user_id
from gifts.config import get_settings
from gifts.memories import service
from gifts.memories.pagination import parse_pagination
from gifts.rowstore import RowStore, get_store
from gifts.schemas import CamelModel
from gifts.storage.service import ImageStorage, get_image_storage
from gifts.users.service import require_user

router = APIRouter(prefix="/api/memories", tags=["Memories"])


class MemoryRequest(CamelModel):
    title: Any = None
    date: Any = None
    image: Any = None
    rotation: Any = None


class MemoryBatchRequest(CamelModel):
    memories: Any = None


@router.get("")
async def list_memories(
    page: str | None = None,
    limit: str | None = None,
    include_year_stats: str | None = Query(None, alias="includeYearStats"),
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
    images: ImageStorage = Depends(get_image_storage),
) -> dict:
    """Own and partner memories, newest first.

    Pagination is opt-in: it applies only when ``page`` or ``limit`` is given.
    Year stats are always included for full lists and on request for pages.
    """
    settings = get_settings()
    pagination = parse_pagination(
        page, limit, settings.memory_page_default_limit, settings.memory_page_max_limit
    )
    user = await require_user(store, user_id)
    return await service.list_memories(
        store,
        images,
        user,
        pagination,
        include_year_stats=not pagination.enabled or include_year_stats == "1",
    )


@router.post("", status_code=201)
async def create_memory(
    body: MemoryRequest,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
    images: ImageStorage = Depends(get_image_storage),
) -> dict:
    memory, deduped = await service.create_memory(store, images, user_id, body.payload())
    if deduped:
        response.status_code = 200
        return {"memory": memory, "deduped": True}
    return {"memory": memory}


@router.post("/batch", status_code=201)
async def create_batch(
    body: MemoryBatchRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
    images: ImageStorage = Depends(get_image_storage),
) -> dict:
    return {"memories": await service.create_batch(store, images, user_id, body.payload())}


@router.patch("/{memory_id}")
async def update_memory(
    memory_id: str,
    body: MemoryRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
    images: ImageStorage = Depends(get_image_storage),
) -> dict:
    return {"memory": await service.update_memory(store, images, user_id, memory_id, body.payload())}


@router.delete("/{memory_id}", status_code=204)
async def delete_memory(
    memory_id: str,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
    images: ImageStorage = Depends(get_image_storage),
) -> Response:
    await service.delete_memory(store, images, user_id, memory_id)
    return Response(status_code=204)
