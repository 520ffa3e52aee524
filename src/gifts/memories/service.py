"""Photo memories shared between partners.

Creates are deduplicated per owner and content for a few seconds, so a client
retrying after a lost response gets the first result back (200,
``deduped: true``) instead of a second row.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import structlog

from gifts import tasks
from gifts.config import get_settings
from gifts.db.base import to_iso
from gifts.errors import BadRequest, NotFound
from gifts.idempotency.dedup import Deduplicator, memory_fingerprint
from gifts.memories.pagination import Pagination, compute_year_stats, pagination_meta
from gifts.rowstore import Row, RowStore, all_of, desc, eq, in_
from gifts.storage.images import validate_image_input
from gifts.storage.service import ImageStorage
from gifts.users.service import load_author_map, map_author, shared_user_ids
from gifts.validation import normalize_loose_date, parse_iso_date, required_text

logger = structlog.get_logger()

ROTATIONS = ("rotate-1", "-rotate-1")
TITLE_MAX_LENGTH = 120
BATCH_MAX_ITEMS = 30
BATCH_CONCURRENCY = 2

T = TypeVar("T")
R = TypeVar("R")

_deduplicator: Deduplicator[str, dict[str, Any]] | None = None


def get_create_deduplicator() -> Deduplicator[str, dict[str, Any]]:
    global _deduplicator  # noqa: PLW0603
    if _deduplicator is None:
        _deduplicator = Deduplicator(get_settings().memory_create_dedup_ttl_seconds)
    return _deduplicator


def reset_create_deduplicator() -> None:
    """Forget every remembered create (for testing)."""
    global _deduplicator  # noqa: PLW0603
    _deduplicator = None


def normalize_rotation(value: object) -> str | None:
    """None for blank input; 400 for anything outside the allowed set."""
    if not isinstance(value, str) or not value.strip():
        return None
    rotation = value.strip()
    if rotation not in ROTATIONS:
        raise BadRequest("rotation is invalid")
    return rotation


def _normalize_date(value: object) -> str:
    normalized = normalize_loose_date(value)
    return parse_iso_date(normalized, "date").isoformat()


class _Skipped(Exception):
    """An item that never started because an earlier one failed."""


async def map_with_concurrency(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """``worker`` over ``items`` with at most ``limit`` running; results keep input order.

    After the first failure no further item starts, and the items already
    running are awaited before that failure is raised, so their side effects
    are complete when the caller cleans up.
    """
    semaphore = asyncio.Semaphore(limit)
    failed = asyncio.Event()

    async def run(item: T, index: int) -> R:
        async with semaphore:
            if failed.is_set():
                raise _Skipped
            try:
                return await worker(item, index)
            except Exception:
                failed.set()
                raise

    results = await asyncio.gather(*(run(item, i) for i, item in enumerate(items)), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, _Skipped):
            raise result
    return results  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


def map_memory(row: Row, author: Row | None = None) -> dict[str, Any]:
    return {
        "id": row["id"],
        "title": row["title"],
        "date": to_iso(row.get("date")),
        "image": row.get("image") or "",
        "rotation": row.get("rotation") or "",
        "userId": row.get("user_id") or "",
        "author": map_author(author),
    }


async def map_memories(images: ImageStorage, rows: list[Row], authors: dict[str, Row] | None = None) -> list[dict]:
    """Map rows and resolve their image references to deliverable URLs."""
    authors = authors or {}
    mapped = [map_memory(row, authors.get(row.get("user_id"))) for row in rows]
    resolved = await images.resolve_many([m["image"] for m in mapped])
    for memory, url in zip(mapped, resolved):
        memory["image"] = url
    return mapped


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def load_memories(
    store: RowStore, user_ids: list[str], pagination: Pagination
) -> tuple[list[Row], dict[str, Any]]:
    default_limit = get_settings().memory_page_default_limit
    if not user_ids:
        return [], pagination_meta(1, default_limit, 0)

    where = in_("user_id", user_ids)
    order = [desc("created_at"), desc("id")]
    if pagination.enabled:
        rows, total = await asyncio.gather(
            store.select(
                "memories", where=where, order_by=order, limit=pagination.limit, offset=pagination.offset
            ),
            store.count("memories", where=where),
        )
        return rows, pagination_meta(pagination.page, pagination.limit, total)

    rows = await store.select("memories", where=where, order_by=order)
    return rows, pagination_meta(1, len(rows) or default_limit, len(rows))


async def load_year_stats(store: RowStore, user_ids: list[str]) -> list[dict[str, Any]]:
    if not user_ids:
        return []
    rows = await store.select(
        "memories",
        where=in_("user_id", user_ids),
        columns=["id", "date"],
        order_by=[desc("date"), desc("id")],
    )
    return compute_year_stats(rows)


async def list_memories(
    store: RowStore,
    images: ImageStorage,
    user: Row,
    pagination: Pagination,
    include_year_stats: bool,
) -> dict[str, Any]:
    """Memories visible to ``user`` (their own and their partner's)."""
    user_ids = shared_user_ids(user)
    (rows, meta), year_stats = await asyncio.gather(
        load_memories(store, user_ids, pagination),
        load_year_stats(store, user_ids) if include_year_stats else _no_stats(),
    )
    authors = await load_author_map(store, [row.get("user_id") for row in rows])
    result: dict[str, Any] = {
        "memories": await map_memories(images, rows, authors),
        "memoryPagination": meta,
    }
    if include_year_stats:
        result["yearStats"] = year_stats
    return result


async def _no_stats() -> list[dict[str, Any]]:
    return []


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def create_memory(
    store: RowStore, images: ImageStorage, user_id: str, body: dict[str, Any]
) -> tuple[dict[str, Any], bool]:
    """Create one memory.

    Returns:
        The mapped memory and whether it was served from the dedup tables.
    """
    title, date, image = body.get("title"), body.get("date"), body.get("image")
    if not title or not date or not image:
        raise BadRequest("title, date and image are required")

    title = required_text(title, "title", TITLE_MAX_LENGTH)
    date = _normalize_date(date)
    rotation = normalize_rotation(body.get("rotation"))
    validate_image_input(image, images.max_image_bytes)

    async def create() -> dict[str, Any]:
        persisted = await images.persist_or_inline(image, user_id, "memory-create")
        try:
            rows = await store.insert(
                "memories",
                {
                    "user_id": user_id,
                    "title": title,
                    "date": parse_iso_date(date),
                    "image": persisted.image,
                    "rotation": rotation or random.choice(ROTATIONS),  # noqa: S311
                },
            )
        except Exception:
            await images.cleanup([persisted.storage_key], "memory-create-cleanup")
            raise
        return (await map_memories(images, rows))[0]

    key = memory_fingerprint(user_id, date, title, image)
    return await get_create_deduplicator().run(key, create)


async def create_batch(
    store: RowStore, images: ImageStorage, user_id: str, body: dict[str, Any]
) -> list[dict[str, Any]]:
    """Create up to ``BATCH_MAX_ITEMS`` memories in one insert.

    Images are uploaded two at a time; if validation, an upload or the insert
    fails, everything uploaded for the batch is removed again.
    """
    items = body.get("memories")
    items = items if isinstance(items, list) else []
    if not items:
        raise BadRequest("memories is required")
    if len(items) > BATCH_MAX_ITEMS:
        raise BadRequest(f"You can upload up to {BATCH_MAX_ITEMS} images per batch")

    uploaded: list[str] = []

    async def prepare(item: Any, index: int) -> dict[str, Any]:  # noqa: ANN401
        item = item if isinstance(item, dict) else {}
        title = required_text(item.get("title"), "title", TITLE_MAX_LENGTH)
        date = normalize_loose_date(item.get("date"))
        image = str(item.get("image") or "")
        rotation = normalize_rotation(item.get("rotation"))
        if not title or not date or not image:
            raise BadRequest(f"Item {index + 1} is missing title, date or image")
        parsed_date = parse_iso_date(date, "date")
        validate_image_input(image, images.max_image_bytes)

        persisted = await images.persist_or_inline(image, user_id, "memory-create-batch")
        if persisted.storage_key:
            uploaded.append(persisted.storage_key)
        return {
            "user_id": user_id,
            "title": title,
            "date": parsed_date,
            "image": persisted.image,
            "rotation": rotation or random.choice(ROTATIONS),  # noqa: S311
        }

    try:
        rows = await map_with_concurrency(items, BATCH_CONCURRENCY, prepare)
    except Exception:
        await images.cleanup(uploaded, "memory-batch-preprocess-cleanup")
        raise

    try:
        created = await store.insert("memories", rows)
    except Exception:
        await images.cleanup(uploaded, "memory-batch-create-cleanup")
        raise
    logger.info("memory_batch_created", user_id=user_id, count=len(created))
    return await map_memories(images, created)


# ---------------------------------------------------------------------------
# Update / delete
# ---------------------------------------------------------------------------


async def _owned(store: RowStore, user_id: str, memory_id: str) -> Row:
    row = await store.get(
        "memories", where=all_of(eq("id", memory_id), eq("user_id", user_id)), columns=["id", "user_id", "image"]
    )
    if row is None:
        raise NotFound("Memory not found")
    return row


async def update_memory(
    store: RowStore, images: ImageStorage, user_id: str, memory_id: str, body: dict[str, Any]
) -> dict[str, Any]:
    """Owner-only partial update. A replaced stored image is removed after the response."""
    existing = await _owned(store, user_id, memory_id)

    payload: dict[str, Any] = {}
    if isinstance(body.get("title"), str):
        payload["title"] = required_text(body["title"], "title", TITLE_MAX_LENGTH)
    if isinstance(body.get("date"), str):
        payload["date"] = parse_iso_date(_normalize_date(body["date"]))
    uploaded_key: str | None = None
    if isinstance(body.get("image"), str):
        validate_image_input(body["image"], images.max_image_bytes)
        persisted = await images.persist_or_inline(body["image"], user_id, "memory-update")
        payload["image"] = persisted.image
        uploaded_key = persisted.storage_key
    if isinstance(body.get("rotation"), str):
        rotation = normalize_rotation(body["rotation"])
        if rotation is None:
            raise BadRequest("rotation is invalid")
        payload["rotation"] = rotation
    if not payload:
        raise BadRequest("No fields to update")

    previous_key = images.key_of(existing.get("image"))
    try:
        rows = await store.update("memories", payload, where=all_of(eq("id", memory_id), eq("user_id", user_id)))
        if not rows:
            raise NotFound("Memory not found")
    except Exception:
        await images.cleanup([uploaded_key], "memory-update-cleanup")
        raise

    updated = rows[0]
    if previous_key and previous_key != images.key_of(updated.get("image")):
        tasks.spawn(
            images.cleanup([previous_key], "memory-update-previous-image-cleanup"),
            "memory-update-previous-image-cleanup",
        )
    return (await map_memories(images, [updated]))[0]


async def delete_memory(store: RowStore, images: ImageStorage, user_id: str, memory_id: str) -> None:
    existing = await _owned(store, user_id, memory_id)
    previous_key = images.key_of(existing.get("image"))
    await store.delete("memories", where=all_of(eq("id", memory_id), eq("user_id", user_id)))
    await images.cleanup([previous_key], "memory-delete-cleanup")
