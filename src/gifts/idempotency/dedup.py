"""Create-request deduplication.

A ``Deduplicator`` collapses identical create requests from one process:
while the first is running, duplicates await its result; after it finishes,
duplicates arriving within ``ttl`` seconds get the same result back. This is
a best-effort, single-instance shortcut for client retries. It is not a
substitute for uniqueness enforced by the store.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Deduplicator(Generic[K, V]):
    """In-flight table plus a short replay cache, keyed by request fingerprint."""

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._in_flight: dict[K, asyncio.Task[V]] = {}
        self._recent: dict[K, tuple[V, float]] = {}

    def _prune(self) -> None:
        now = self._clock()
        for key in [k for k, (_, at) in self._recent.items() if now - at > self.ttl]:
            del self._recent[key]

    async def run(self, key: K, factory: Callable[[], Awaitable[V]]) -> tuple[V, bool]:
        """Run ``factory`` once per key.

        Returns:
            The value and whether it was served from a previous or concurrent call.
        """
        self._prune()

        recent = self._recent.get(key)
        if recent is not None:
            return recent[0], True

        running = self._in_flight.get(key)
        if running is not None:
            # Shielded so a cancelled duplicate does not cancel the original.
            return await asyncio.shield(running), True

        task: asyncio.Task[V] = asyncio.ensure_future(factory())
        self._in_flight[key] = task
        try:
            value = await asyncio.shield(task)
            self._recent[key] = (value, self._clock())
            return value, False
        finally:
            self._in_flight.pop(key, None)

    def forget(self, key: K) -> None:
        self._recent.pop(key, None)

    def clear(self) -> None:
        self._recent.clear()

    def __len__(self) -> int:
        return len(self._recent) + len(self._in_flight)


def memory_fingerprint(owner_id: str, date: str, title: str, image: str) -> str:
    digest = hashlib.sha1(image.encode(), usedforsecurity=False).hexdigest()
    return f"{owner_id}:{date}:{title}:{digest}"


def event_fingerprint(owner_id: str, date: str, type_: str, title: str, subtitle: str = "") -> str:
    return f"{owner_id}:{date}:{type_}:{title}:{subtitle or ''}"
