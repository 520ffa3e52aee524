"""Adaptive chunking for batch memory uploads.

Items are packed into chunks of at most ``MAX_ITEMS_PER_REQUEST`` whose
encoded body stays under ``PAYLOAD_SOFT_LIMIT``. A chunk the server still
rejects as too large (413) is split in half and both halves are retried, down
to single items.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from gifts.client.api import ApiError

MAX_ITEMS_PER_REQUEST = 4
PAYLOAD_SOFT_LIMIT = 8 * 1024 * 1024

_TOO_LARGE_MARKERS = ("payload too large", "entity too large", "request too large", "body too large")

Item = dict[str, Any]


def estimate_payload_bytes(payload: object) -> int:
    return len(json.dumps(payload, ensure_ascii=False).encode("utf-8"))


def build_adaptive_chunks(
    items: Sequence[Item],
    max_items: int = MAX_ITEMS_PER_REQUEST,
    max_bytes: int = PAYLOAD_SOFT_LIMIT,
) -> list[list[Item]]:
    """Greedy packing; a single oversized item still gets a chunk of its own."""
    chunks: list[list[Item]] = []
    current: list[Item] = []
    for item in items:
        candidate = [*current, item]
        overflow = len(candidate) > max_items or estimate_payload_bytes({"memories": candidate}) > max_bytes
        if current and overflow:
            chunks.append(current)
            current = [item]
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def is_payload_too_large(error: BaseException) -> bool:
    if isinstance(error, ApiError) and error.status == 413:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _TOO_LARGE_MARKERS)


async def upload_chunk(send: Callable[[list[Item]], Awaitable[list[Item]]], chunk: list[Item]) -> list[Item]:
    """Send ``chunk``, bisecting on 413 until each part fits."""
    try:
        return await send(chunk)
    except ApiError as exc:
        if not is_payload_too_large(exc) or len(chunk) <= 1:
            raise
    mid = (len(chunk) + 1) // 2
    left, right = await asyncio.gather(upload_chunk(send, chunk[:mid]), upload_chunk(send, chunk[mid:]))
    return [*left, *right]


class BatchUploadError(ApiError):
    """A batch upload stopped part way; ``uploaded`` items made it to the server."""

    def __init__(self, cause: ApiError | Exception, uploaded: int) -> None:
        status = cause.status if isinstance(cause, ApiError) else 500
        message = getattr(cause, "message", None) or str(cause) or "批量上传中断"
        super().__init__(f"{message}（已成功上传 {uploaded} 张）", status, getattr(cause, "details", None))
        self.uploaded = uploaded
