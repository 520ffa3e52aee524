"""Client-side TTL caches for data that changes rarely.

Each cache holds one key at a time (the signed-in user), coalesces concurrent
fetches for that key and serves the last good value when a refresh fails.
Caches are plain objects built once and handed to ``AuthState``, which clears
them whenever the session changes.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from gifts.client.api import GiftsApiClient

T = TypeVar("T")

FOCUS_STATS_TTL_SECONDS = 3 * 60
PERIOD_TRACKER_TTL_SECONDS = 5 * 60

EMPTY_FOCUS_STATS: dict[str, Any] = {
    "todayFocusTime": 0,
    "todaySessions": 0,
    "streak": 0,
    "totalSessions": 0,
    "lastFocusDate": None,
}


class CachedFetch(Generic[T]):
    """A single-slot cache in front of an async fetch."""

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._key: str = ""
        self._value: T | None = None
        self._at = 0.0
        self._in_flight: tuple[str, asyncio.Task[T]] | None = None

    def peek(self, key: str) -> T | None:
        """The cached value for ``key`` regardless of age."""
        return self._value if key and key == self._key else None

    def is_fresh(self, key: str) -> bool:
        return key == self._key and self._value is not None and self._clock() - self._at < self.ttl

    def put(self, key: str, value: T) -> None:
        self._key = key
        self._value = value
        self._at = self._clock()

    def clear(self) -> None:
        self._key = ""
        self._value = None
        self._at = 0.0
        self._in_flight = None

    async def get(self, key: str, fetch: Callable[[], Awaitable[T]], *, force: bool = False) -> T:
        if not force and self.is_fresh(key):
            return self._value  # type: ignore[return-value]
        if self._in_flight is not None and self._in_flight[0] == key:
            return await asyncio.shield(self._in_flight[1])

        if key != self._key:
            self._key, self._value = key, None
        task = asyncio.ensure_future(self._load(key, fetch))
        self._in_flight = (key, task)
        try:
            return await asyncio.shield(task)
        finally:
            if self._in_flight is not None and self._in_flight[1] is task:
                self._in_flight = None

    async def _load(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        try:
            value = await fetch()
        except Exception:
            stale = self.peek(key)
            if stale is not None:
                return stale
            raise
        if key == self._key:
            self.put(key, value)
        return value


class FocusStatsCache:
    def __init__(self, client: GiftsApiClient, ttl: float = FOCUS_STATS_TTL_SECONDS) -> None:
        self.client = client
        self._cache: CachedFetch[dict[str, Any]] = CachedFetch(ttl)

    def cached(self, user_id: str | None) -> dict[str, Any] | None:
        return self._cache.peek(user_id or "")

    async def fetch(self, user_id: str | None, *, force: bool = False) -> dict[str, Any]:
        if not user_id:
            return dict(EMPTY_FOCUS_STATS)

        async def load() -> dict[str, Any]:
            result = await self.client.get("/focus/stats")
            return (result or {}).get("stats") or dict(EMPTY_FOCUS_STATS)

        return await self._cache.get(user_id, load, force=force)

    def update(self, user_id: str | None, stats: dict[str, Any] | None) -> None:
        """Store stats returned by a completed session."""
        if user_id and stats:
            self._cache.put(user_id, stats)

    def clear(self) -> None:
        self._cache.clear()


class PeriodTrackerCache:
    """Caches the shared period calendar, keyed by the (user, partner) pair."""

    def __init__(self, client: GiftsApiClient, ttl: float = PERIOD_TRACKER_TTL_SECONDS) -> None:
        self.client = client
        self._cache: CachedFetch[list[dict[str, Any]]] = CachedFetch(ttl)

    @staticmethod
    def cache_key(user_id: str | None, partner_id: str | None = None) -> str:
        return f"{user_id or ''}:{partner_id or ''}"

    def cached(self, user_id: str | None, partner_id: str | None = None) -> list[dict[str, Any]] | None:
        return self._cache.peek(self.cache_key(user_id, partner_id))

    async def fetch(
        self, user_id: str | None, partner_id: str | None = None, *, force: bool = False
    ) -> list[dict[str, Any]]:
        if not user_id:
            return []

        async def load() -> list[dict[str, Any]]:
            result = await self.client.get("/period-tracker")
            entries = (result or {}).get("entries")
            return entries if isinstance(entries, list) else []

        return await self._cache.get(self.cache_key(user_id, partner_id), load, force=force)

    def upsert_entry(
        self,
        user_id: str | None,
        partner_id: str | None,
        date_key: str,
        entry: dict[str, Any] | None,
    ) -> None:
        """Apply a saved (or cleared, when ``entry`` is None) day to the cached list."""
        key = self.cache_key(user_id, partner_id)
        current = self._cache.peek(key)
        if not user_id or current is None:
            return
        entries = list(current)
        index = next(
            (i for i, item in enumerate(entries) if item.get("userId") == user_id and item.get("date") == date_key),
            None,
        )
        if entry is not None:
            if index is None:
                entries.insert(0, entry)
            else:
                entries[index] = entry
        elif index is not None:
            del entries[index]
        self._cache.put(key, entries)

    def clear(self) -> None:
        self._cache.clear()
