"""Detached background work.

Notifications, settings bootstrap, confirmation emails and blob cleanup run
after the response is decided. Their failures are logged and never reach the
request that spawned them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger()

_pending: set[asyncio.Task[Any]] = set()


def _on_done(task: asyncio.Task[Any]) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("detached_task_failed", task=task.get_name(), error=str(exc), exc_info=exc)


def spawn(coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task[Any]:
    """Schedule ``coro`` without awaiting it, keeping a strong reference until done."""
    task = asyncio.create_task(coro, name=label)
    _pending.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain(timeout: float | None = 10.0) -> None:
    """Wait for all detached tasks, including ones spawned while waiting."""
    while _pending:
        done, _ = await asyncio.wait(set(_pending), timeout=timeout)
        # Yield once so done-callbacks run and prune the set.
        await asyncio.sleep(0)
        if not done:
            logger.warning("detached_tasks_still_running", count=len(_pending))
            break


def pending_count() -> int:
    return len(_pending)
