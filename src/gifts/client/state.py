"""Client-side session and app state with optimistic updates."""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from gifts.client.api import ApiError, GiftsApiClient
from gifts.client.batch import BatchUploadError, build_adaptive_chunks, upload_chunk

logger = logging.getLogger(__name__)

SYNC_PAGE_SIZE = 50
SYNC_PAGE_GROUP = 8
DEFAULT_TOGETHER_DATE = "2021-10-12"
EVENT_DEDUPE_WINDOW_SECONDS = 30
VERIFY_RECOVERY_ATTEMPTS = 3
VERIFY_RECOVERY_DELAY_SECONDS = 0.7
LOGIN_REQUIRED_MESSAGE = "请先登录后再操作"


class Clearable(Protocol):
    def clear(self) -> None: ...


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class AuthState:
    """Current user, partner and notifications.

    Every change of session (sign-in, sign-out, a rejected token) clears the
    registered caches so no data leaks from one account to the next.
    """

    def __init__(
        self,
        client: GiftsApiClient,
        caches: Iterable[Clearable] = (),
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.caches = list(caches)
        self._sleep = sleep
        self.current_user: dict[str, Any] | None = None
        self.partner: dict[str, Any] | None = None
        self.notifications: list[dict[str, Any]] = []
        self.last_error: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.client.tokens.get() is not None

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.get("read"))

    def register_cache(self, cache: Clearable) -> None:
        self.caches.append(cache)

    def _reset(self) -> None:
        self.current_user = None
        self.partner = None
        self.notifications = []
        for cache in self.caches:
            cache.clear()

    def _on_auth_success(self, result: dict[str, Any]) -> None:
        self._reset()
        self.client.tokens.set(result["token"])
        self.current_user = result.get("user")
        self.partner = result.get("partner")
        self.last_error = None

    async def refresh(self) -> None:
        """Reload the session; a 401 signs out locally."""
        if not self.is_authenticated:
            self._reset()
            return
        try:
            me, notifications = await asyncio.gather(
                self.client.get("/auth/me"),
                self.client.get("/notifications"),
            )
        except ApiError as exc:
            logger.warning("Failed to refresh auth data: %s", exc)
            if exc.status == 401:
                self.client.tokens.clear()
                self._reset()
            return
        self.current_user = me.get("user")
        self.partner = me.get("partner")
        self.notifications = notifications.get("notifications") or []
        self.last_error = None

    async def request_register_code(self, email: str, password: str) -> dict[str, Any]:
        return await self._code_request("/auth/register/request-code", {"email": email, "password": password})

    async def request_password_reset_code(self, email: str) -> dict[str, Any]:
        return await self._code_request("/auth/password/request-reset-code", {"email": email})

    async def _code_request(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            result = await self.client.post(path, body)
        except ApiError as exc:
            self.last_error = exc.message
            return {"ok": False, "message": exc.message}
        self.last_error = None
        return {"ok": result.get("ok"), "message": result.get("message"), "expiresInMinutes": result.get("expiresInMinutes")}

    async def verify_register_code(self, email: str, code: str, password: str | None = None) -> bool:
        """Verify a signup code and sign in.

        A timed-out verify may still have completed on the server, so with a
        password at hand the session is recovered by retrying login briefly.
        """
        try:
            result = await self.client.post(
                "/auth/register/verify", {"email": email, "code": code, "password": password}
            )
        except ApiError as exc:
            if password and exc.status == 408:
                for attempt in range(VERIFY_RECOVERY_ATTEMPTS):
                    await self._sleep(VERIFY_RECOVERY_DELAY_SECONDS * (attempt + 1))
                    try:
                        login = await self.client.post("/auth/login", {"email": email, "password": password})
                    except ApiError:
                        continue
                    self._on_auth_success(login)
                    return True
            self.last_error = exc.message or "Verification failed"
            return False
        self._on_auth_success(result)
        return True

    async def reset_password(self, email: str, code: str, new_password: str) -> bool:
        try:
            await self.client.post("/auth/password/reset", {"email": email, "code": code, "newPassword": new_password})
        except ApiError as exc:
            self.last_error = exc.message
            return False
        self.last_error = None
        return True

    async def login(self, email: str, password: str) -> bool:
        try:
            result = await self.client.post("/auth/login", {"email": email, "password": password})
        except ApiError as exc:
            self.last_error = exc.message
            return False
        self._on_auth_success(result)
        return True

    def logout(self) -> None:
        self.client.tokens.clear()
        self.last_error = None
        self._reset()

    async def update_profile(self, updates: dict[str, Any]) -> dict[str, Any] | None:
        if self.current_user is None:
            return None
        try:
            result = await self.client.patch("/auth/profile", updates)
        except ApiError as exc:
            self.last_error = exc.message
            raise
        self.current_user = result["user"]
        self.last_error = None
        return self.current_user

    async def add_notification(self, title: str, message: str, type_: str = "system") -> None:
        if self.current_user is None:
            return
        try:
            result = await self.client.post("/notifications", {"title": title, "message": message, "type": type_})
        except ApiError as exc:
            self.last_error = exc.message
            return
        self.notifications.insert(0, result["notification"])

    async def mark_as_read(self, notification_id: str) -> None:
        """Mark read on the server; the local copy is marked read either way."""
        if self.current_user is None:
            return
        try:
            result = await self.client.patch(f"/notifications/{notification_id}/read", {})
            updated = result["notification"]
        except ApiError as exc:
            self.last_error = exc.message
            updated = None
        self.notifications = [
            (updated or {**n, "read": True}) if n.get("id") == notification_id else n for n in self.notifications
        ]

    async def clear_notifications(self) -> None:
        if self.current_user is None:
            return
        try:
            await self.client.delete("/notifications")
        except ApiError as exc:
            self.last_error = exc.message
        self.notifications = []


# ---------------------------------------------------------------------------
# App data
# ---------------------------------------------------------------------------


def compute_year_stats(memories: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    groups: dict[str, dict[str, Any]] = {}
    for memory in memories:
        year = str(memory.get("date") or "")[:4]
        if not (len(year) == 4 and year.isdigit()):
            continue
        group = groups.setdefault(year, {"year": year, "count": 0, "coverMemoryId": memory.get("id")})
        group["count"] += 1
    return sorted(groups.values(), key=lambda g: g["year"], reverse=True)


def _created_at(event: dict[str, Any]) -> float:
    raw = str(event.get("createdAt") or "")
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def dedupe_recent_events(events: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop events identical to a newer one created within a short window."""
    if len(events) <= 1:
        return list(events)
    ordered = sorted(events, key=lambda e: (_created_at(e), str(e.get("id"))), reverse=True)
    seen: dict[tuple, float] = {}
    kept: list[dict[str, Any]] = []
    for event in ordered:
        fingerprint = tuple(str(event.get(k) or "") for k in ("userId", "type", "title", "subtitle", "date", "image"))
        created = _created_at(event)
        last = seen.get(fingerprint)
        if last is not None and (created == 0 or last == 0 or abs(last - created) <= EVENT_DEDUPE_WINDOW_SECONDS):
            continue
        kept.append(event)
        seen[fingerprint] = created
    return kept


def _unique_by_id(items: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    seen: set[str] = set()
    unique = []
    for item in items:
        if item.get("id") in seen:
            continue
        seen.add(item.get("id"))
        unique.append(item)
    return unique


@dataclass
class Connection:
    is_connected: bool = False
    invite_code: str | None = None
    bound_invite_code: str | None = None
    together_date: str = DEFAULT_TOGETHER_DATE

    def apply(self, settings: dict[str, Any] | None, *, clear_bound: bool = False) -> None:
        if not settings:
            return
        self.is_connected = bool(settings.get("isConnected"))
        self.invite_code = settings.get("inviteCode") or self.invite_code
        self.bound_invite_code = settings.get("boundInviteCode") or (None if clear_bound else self.bound_invite_code)
        self.together_date = settings.get("togetherDate") or self.together_date


@dataclass
class AppState:
    """Memories, events and connection state mirrored from the server."""

    client: GiftsApiClient
    memories: list[dict[str, Any]] = field(default_factory=list)
    year_stats: list[dict[str, Any]] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    connection: Connection = field(default_factory=Connection)
    pending_requests: list[dict[str, Any]] = field(default_factory=list)
    _sync_running: bool = False
    _sync_queued: bool = False

    @property
    def has_session(self) -> bool:
        return self.client.tokens.get() is not None

    def _require_session(self) -> None:
        if not self.has_session:
            raise ApiError(LOGIN_REQUIRED_MESSAGE, 401)

    def reset(self) -> None:
        self.memories = []
        self.year_stats = []
        self.events = []
        self.connection = Connection()
        self.pending_requests = []

    def _set_memories(self, memories: list[dict[str, Any]]) -> None:
        self.memories = memories
        self.year_stats = compute_year_stats(memories)

    async def sync(self) -> None:
        """Pull the first page of state, then the remaining memory pages in groups.

        A sync requested while one is running is queued and runs once after it.
        """
        if self._sync_running:
            self._sync_queued = True
            return
        self._sync_running = True
        try:
            while True:
                self._sync_queued = False
                await self._sync_once()
                if not self._sync_queued:
                    break
        finally:
            self._sync_running = False

    async def _sync_once(self) -> None:
        if not self.has_session:
            self.reset()
            return
        try:
            first, pending = await asyncio.gather(
                self.client.get("/app/state", {"page": 1, "limit": SYNC_PAGE_SIZE, "includeYearStats": 0}),
                self._pending_or_empty(),
            )
            memories = list(first.get("memories") or [])
            self.memories = list(memories)
            self.year_stats = first.get("yearStats") or compute_year_stats(memories)
            self.events = dedupe_recent_events(first.get("events") or [])
            self.pending_requests = pending
            self.connection.apply(first.get("settings"))

            total_pages = max(1, int((first.get("memoryPagination") or {}).get("totalPages") or 1))
            pages = list(range(2, total_pages + 1))
            for start in range(0, len(pages), SYNC_PAGE_GROUP):
                group = pages[start : start + SYNC_PAGE_GROUP]
                results = await asyncio.gather(
                    *(self.client.get("/memories", {"page": p, "limit": SYNC_PAGE_SIZE}) for p in group)
                )
                for result in results:
                    memories.extend(result.get("memories") or [])

            if len(memories) != len(self.memories):
                self.memories = memories
                if not first.get("yearStats"):
                    self.year_stats = compute_year_stats(memories)
        except ApiError as exc:
            logger.warning("Failed to sync app state: %s", exc)
            if exc.status == 401:
                self.reset()

    async def _pending_or_empty(self) -> list[dict[str, Any]]:
        try:
            result = await self.client.get("/bindings/pending")
        except ApiError:
            return []
        return result.get("requests") or []

    async def refresh_pending_requests(self) -> None:
        if not self.has_session:
            self.pending_requests = []
            return
        try:
            result = await self.client.get("/bindings/pending")
        except ApiError as exc:
            logger.warning("Failed to load pending binding requests: %s", exc)
            return
        self.pending_requests = result.get("requests") or []

    # -- memories ----------------------------------------------------------

    async def add_memory(self, memory: dict[str, Any]) -> dict[str, Any]:
        """Show the memory at once under a temporary id; swap in the server copy or roll back."""
        self._require_session()
        temp_id = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"
        optimistic = {**memory, "id": temp_id, "rotation": random.choice(("rotate-1", "-rotate-1"))}  # noqa: S311
        self._set_memories([optimistic, *self.memories])
        try:
            response = await self.client.post("/memories", memory)
        except ApiError:
            self._set_memories([m for m in self.memories if m.get("id") != temp_id])
            raise
        created = response["memory"]
        self._set_memories(_unique_by_id(created if m.get("id") == temp_id else m for m in self.memories))
        return created

    async def add_memories_batch(self, items: list[dict[str, Any]]) -> int:
        """Upload ``items`` in adaptive chunks, merging each chunk as it lands.

        Raises:
            BatchUploadError: If a chunk fails after some items were uploaded.
        """
        if not items:
            return 0
        self._require_session()

        async def send(chunk: list[dict[str, Any]]) -> list[dict[str, Any]]:
            response = await self.client.post("/memories/batch", {"memories": chunk})
            return (response or {}).get("memories") or []

        uploaded = 0
        try:
            for chunk in build_adaptive_chunks(items):
                inserted = await upload_chunk(send, chunk)
                if not inserted:
                    continue
                uploaded += len(inserted)
                self._set_memories(_unique_by_id([*inserted, *self.memories]))
        except ApiError as exc:
            if uploaded:
                raise BatchUploadError(exc, uploaded) from exc
            raise
        return uploaded

    async def update_memory(self, memory_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        self._require_session()
        response = await self.client.patch(f"/memories/{memory_id}", updates)
        updated = response["memory"]
        self._set_memories([updated if m.get("id") == memory_id else m for m in self.memories])
        return updated

    async def delete_memory(self, memory_id: str) -> None:
        self._require_session()
        await self.client.delete(f"/memories/{memory_id}")
        self._set_memories([m for m in self.memories if m.get("id") != memory_id])

    # -- events ------------------------------------------------------------

    async def add_event(self, event: dict[str, Any]) -> dict[str, Any]:
        self._require_session()
        response = await self.client.post("/events", event)
        created = response["event"]
        self.events = dedupe_recent_events([created, *(e for e in self.events if e.get("id") != created["id"])])
        return created

    async def update_event(self, event_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        self._require_session()
        response = await self.client.patch(f"/events/{event_id}", updates)
        updated = response["event"]
        self.events = dedupe_recent_events([updated if e.get("id") == event_id else e for e in self.events])
        return updated

    async def delete_event(self, event_id: str) -> None:
        self._require_session()
        await self.client.delete(f"/events/{event_id}")
        self.events = [e for e in self.events if e.get("id") != event_id]

    # -- connection --------------------------------------------------------

    async def update_together_date(self, together_date: str) -> None:
        self._require_session()
        response = await self.client.patch("/settings", {"togetherDate": together_date})
        self.connection.together_date = (response.get("settings") or {}).get("togetherDate") or together_date

    async def connect(self, code: str) -> dict[str, Any]:
        """Send a binding request. Never raises; failures come back as ``ok: False``."""
        invite_code = code.strip()
        if len(invite_code) < 6:
            return {"ok": False, "message": "邀请码格式不正确"}
        if not self.has_session:
            return {"ok": False, "message": "请先登录账号后再绑定邀请码"}
        try:
            response = await self.client.post("/settings/connect", {"inviteCode": invite_code})
        except ApiError as exc:
            return {"ok": False, "message": exc.message or "绑定失败，请重试"}
        self.connection.apply(response.get("settings"))
        return {"ok": True, "pending": bool(response.get("pending")), "message": response.get("message") or "绑定请求已发送"}

    async def disconnect(self) -> None:
        self._require_session()
        response = await self.client.post("/settings/disconnect")
        self.connection.apply(response.get("settings"), clear_bound=True)

    async def respond(self, request_id: str, action: str) -> dict[str, Any]:
        if not self.has_session:
            return {"ok": False, "message": "请先登录后再处理请求"}
        try:
            response = await self.client.post(f"/bindings/{request_id}/respond", {"action": action})
        except ApiError as exc:
            return {"ok": False, "message": exc.message or "Failed to process request"}
        self.connection.apply(response.get("settings"))
        await self.refresh_pending_requests()
        default = "Binding accepted" if action == "accept" else "Request rejected"
        return {"ok": True, "message": response.get("message") or default}
