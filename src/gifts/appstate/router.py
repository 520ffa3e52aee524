"""Aggregate app state: everything the client needs after sign-in, in one round trip."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Query

from gifts import tasks
from gifts.auth.dependencies import get_current_user_id
from gifts.config import get_settings
from gifts.couple.service import ensure_user_settings, load_settings, map_settings
from gifts.events.service import load_events, map_event
from gifts.memories.pagination import compute_year_stats, parse_pagination
from gifts.memories.service import load_memories, load_year_stats, map_memories
from gifts.rowstore import RowStore, get_store
from gifts.storage.service import ImageStorage, get_image_storage
from gifts.users.service import load_author_map, require_user, shared_user_ids

router = APIRouter(prefix="/api/app", tags=["App State"])


async def _none() -> None:
    return None


@router.get("/state")
async def app_state(
    page: str | None = None,
    limit: str | None = None,
    include_year_stats: str | None = Query(None, alias="includeYearStats"),
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
    images: ImageStorage = Depends(get_image_storage),
) -> dict:
    """Memories, events, settings and year stats for the caller and their partner.

    Year stats are on unless ``includeYearStats=0``. For a paginated request
    they cover every memory; otherwise they are computed from the returned rows.
    """
    settings = get_settings()
    user = await require_user(store, user_id)
    user_ids = shared_user_ids(user)
    pagination = parse_pagination(
        page, limit, settings.memory_page_default_limit, settings.memory_page_max_limit
    )
    with_stats = (include_year_stats or "").strip() != "0"

    (memory_rows, meta), event_rows, settings_row, year_stats, authors = await asyncio.gather(
        load_memories(store, user_ids, pagination),
        load_events(store, user_ids),
        load_settings(store, user),
        load_year_stats(store, user_ids) if with_stats and pagination.enabled else _none(),
        load_author_map(store, user_ids),
    )

    tasks.spawn(
        ensure_user_settings(store, user_id, bool(user.get("partner_id"))),
        "ensure-settings-app-state",
    )

    response = {
        "memories": await map_memories(images, memory_rows, authors),
        "events": [map_event(row, authors.get(row.get("user_id"))) for row in event_rows],
        "settings": map_settings(settings_row, user),
        "memoryPagination": meta,
    }
    if with_stats:
        response["yearStats"] = year_stats if year_stats is not None else compute_year_stats(memory_rows)
    return response
