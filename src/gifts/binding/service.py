"""Partner binding: connect, respond, confirm-by-link, pending list, disconnect.

Two accounts move between "unbound" and "bound to each other" without a
multi-row transaction. Races are settled by the pending-request unique
indexes and by guarded updates that match zero rows when another request got
there first; both outcomes are ordinary 409s, not errors.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from datetime import timedelta
from typing import Any

import structlog

from gifts import tasks
from gifts.binding import pages
from gifts.binding.pending import (
    ACCEPTED,
    EXPIRED,
    PENDING,
    REJECTED,
    PendingState,
    expire_stale_for_pair,
    expire_stale_for_target,
    is_expired,
    resolve_pending_state,
    set_status,
)
from gifts.binding.saga import Saga
from gifts.config import get_settings
from gifts.couple.service import ensure_user_settings, map_settings, settle_connection_sync
from gifts.db.base import to_iso, utcnow
from gifts.email.service import get_email_service
from gifts.errors import AppError, BadRequest, Conflict, Forbidden, NotFound
from gifts.notifications.service import add_notification
from gifts.redis_client import get_redis
from gifts.rowstore import (
    Row,
    RowStore,
    TransportError,
    UniqueViolation,
    all_of,
    any_of,
    desc,
    eq,
    gte,
    in_,
    is_null,
)
from gifts.rowstore.filters import AllOf
from gifts.users.invite_codes import normalize_invite_code
from gifts.users.service import get_user_by_id, get_user_by_invite_code, require_user

logger = structlog.get_logger()

SENT_MESSAGE = "Connect request sent. Please ask your partner to confirm inside the app."
ALREADY_SENT_MESSAGE = "Connect request already sent. Please ask your partner to confirm inside the app."
RECEIVED_MESSAGE = "Connect request received. Please ask your partner to confirm inside the app."
REQUESTER_BUSY_MESSAGE = "You already have a pending binding request. Please resolve it first."
TARGET_BUSY_MESSAGE = "Target account already has another pending request. Please try later."
STILL_PENDING_MESSAGE = "There is already a pending binding request. Please wait for confirmation."
ALREADY_CONNECTED_MESSAGE = "At least one account is already connected"
PROCESSED_MESSAGE = "Binding request not found or already processed"

PENDING_UNIQUE_MARKERS = (
    "idx_binding_requests_requester_pending_unique",
    "idx_binding_requests_target_pending_unique",
    "requester_user_id",
    "target_user_id",
)
PENDING_LIST_LIMIT = 30


class _LostRace(Exception):
    """A guarded update matched no rows."""


def _display_name(user: Row) -> str:
    return user.get("name") or user.get("email") or ""


def is_pending_conflict(exc: UniqueViolation) -> bool:
    return exc.touches(*PENDING_UNIQUE_MARKERS)


def _raise_for_state(state: PendingState) -> None:
    if state is PendingState.REQUESTER_BUSY:
        raise Conflict(REQUESTER_BUSY_MESSAGE)
    if state is PendingState.TARGET_BUSY:
        raise Conflict(TARGET_BUSY_MESSAGE)


def _pending_response(message: str) -> dict[str, Any]:
    return {"ok": True, "pending": True, "message": message}


# ---------------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------------


async def _insert_request(store: RowStore, requester: Row, target: Row, invite_code: str) -> Row:
    settings = get_settings()
    rows = await store.insert(
        "binding_requests",
        {
            "requester_user_id": requester["id"],
            "target_user_id": target["id"],
            "invite_code": invite_code,
            "confirm_token": secrets.token_hex(32),
            "status": PENDING,
            "expires_at": utcnow() + timedelta(hours=settings.binding_request_ttl_hours),
        },
    )
    return rows[0]


async def _send_confirmation_email(requester: Row, target: Row, request: Row) -> None:
    settings = get_settings()
    confirm_url = f"{settings.backend_public_url.rstrip('/')}/api/bindings/confirm?token={request['confirm_token']}"
    try:
        redis = get_redis()
    except RuntimeError:
        redis = None
    sent = await get_email_service(redis).send_template(
        target["email"],
        "binding_confirm",
        {
            "requester_name": _display_name(requester),
            "requester_email": requester.get("email") or "",
            "invite_code": request["invite_code"],
            "confirm_url": confirm_url,
            "ttl_hours": settings.binding_request_ttl_hours,
        },
    )
    if not sent:
        logger.warning("binding_confirm_email_not_sent", request_id=request["id"])


async def _recover_unacknowledged_insert(
    store: RowStore, requester: Row, target: Row, exc: TransportError
) -> dict[str, Any]:
    """The insert may have landed even though the acknowledgement was lost."""
    state = await resolve_pending_state(store, requester["id"], target["id"])
    if state is PendingState.SAME_PAIR:
        logger.info("binding_request_recovered", requester_id=requester["id"], target_id=target["id"])
        return _pending_response(RECEIVED_MESSAGE)
    _raise_for_state(state)
    raise exc


async def connect(store: RowStore, user_id: str, body: dict[str, Any]) -> dict[str, Any]:
    """Open a binding request from the caller to the owner of ``inviteCode``.

    Repeating the call for a pair that already has a live request is a no-op
    that answers the same way, so client retries are safe.

    Raises:
        BadRequest: Malformed code, or the caller's own code.
        Forbidden: The caller has not verified their email.
        NotFound: The caller vanished, or no verified account owns the code.
        Conflict: Either side is already bound or busy with another request.
    """
    started = time.monotonic()
    invite_code = normalize_invite_code(body.get("inviteCode"))

    requester, target = await asyncio.gather(
        get_user_by_id(store, user_id),
        get_user_by_invite_code(store, invite_code),
    )
    if requester is None:
        raise NotFound("User not found")
    if not requester.get("email_verified"):
        raise Forbidden("Please verify your email first")
    if requester.get("partner_id") or requester.get("bound_invitation_code"):
        raise Conflict("You are already connected. Disconnect first.")
    if invite_code == requester.get("invitation_code"):
        raise BadRequest("Cannot connect to your own invite code")
    if target is None or not target.get("email_verified"):
        raise NotFound("Invite code does not exist")
    if target.get("partner_id") or target.get("bound_invitation_code"):
        raise Conflict("Target account is already connected")

    state = await resolve_pending_state(store, requester["id"], target["id"])
    if state is PendingState.SAME_PAIR:
        return _pending_response(ALREADY_SENT_MESSAGE)
    _raise_for_state(state)

    try:
        request = await _insert_request(store, requester, target, invite_code)
    except UniqueViolation as exc:
        if not is_pending_conflict(exc):
            raise
        # Another request for one side landed first; it may be stale.
        await expire_stale_for_pair(store, requester["id"], target["id"])
        state = await resolve_pending_state(store, requester["id"], target["id"])
        if state is PendingState.SAME_PAIR:
            return _pending_response(ALREADY_SENT_MESSAGE)
        _raise_for_state(state)
        try:
            request = await _insert_request(store, requester, target, invite_code)
        except UniqueViolation as retry_exc:
            if is_pending_conflict(retry_exc):
                raise Conflict(STILL_PENDING_MESSAGE) from retry_exc
            raise
        except TransportError as retry_exc:
            return await _recover_unacknowledged_insert(store, requester, target, retry_exc)
    except TransportError as exc:
        return await _recover_unacknowledged_insert(store, requester, target, exc)

    tasks.spawn(
        add_notification(
            store,
            requester["id"],
            "Connect request sent",
            f"A binding request has been sent to {target['email']}.",
            "system",
        ),
        "notify-bind-request",
    )
    tasks.spawn(
        add_notification(
            store,
            target["id"],
            "Pending binding request",
            f"{_display_name(requester)} wants to connect with you. "
            "Open the Relationship page to accept or reject.",
            "interaction",
        ),
        "notify-bind-target-pending",
    )
    tasks.spawn(ensure_user_settings(store, requester["id"], False), "ensure-settings-connect")
    tasks.spawn(_send_confirmation_email(requester, target, request), "send-binding-confirm")

    logger.info(
        "binding_request_created",
        requester_id=requester["id"],
        target_id=target["id"],
        request_id=request["id"],
        total_ms=round((time.monotonic() - started) * 1000),
    )
    return _pending_response(SENT_MESSAGE)


# ---------------------------------------------------------------------------
# Acceptance
# ---------------------------------------------------------------------------


def _bind_guard(user_id: str) -> AllOf:
    return all_of(eq("id", user_id), is_null("partner_id"), is_null("bound_invitation_code"))


async def _mark_rejected_quietly(store: RowStore, request_id: str) -> None:
    try:
        await set_status(store, request_id, REJECTED, only_if=PENDING)
    except TransportError as exc:
        logger.error("binding_request_reject_failed", request_id=request_id, error=str(exc))


async def accept_request(store: RowStore, request: Row) -> tuple[Row, Row]:
    """Bind the two sides of a pending request.

    Returns:
        The requester and target rows as updated.

    Raises:
        NotFound: One side no longer exists (request marked expired).
        Conflict: One side is already bound, or lost a race while binding
            (request marked rejected, partial writes undone), or the request
            left ``pending`` before it could be marked accepted (both sides
            unbound again).
        TransportError: The request row could not be marked accepted
            (both sides unbound again).
    """
    requester, target = await asyncio.gather(
        get_user_by_id(store, request["requester_user_id"]),
        get_user_by_id(store, request["target_user_id"]),
    )
    if requester is None or target is None:
        await set_status(store, request["id"], EXPIRED, only_if=PENDING)
        raise NotFound("User not found")

    if any(
        side.get("partner_id") or side.get("bound_invitation_code") for side in (requester, target)
    ):
        await set_status(store, request["id"], REJECTED, only_if=PENDING)
        raise Conflict(ALREADY_CONNECTED_MESSAGE)

    async def bind(user: Row, other: Row) -> Row:
        rows = await store.update(
            "users",
            {"partner_id": other["id"], "bound_invitation_code": other.get("invitation_code")},
            where=_bind_guard(user["id"]),
        )
        if not rows:
            raise _LostRace(user["id"])
        return rows[0]

    async def unbind(user: Row, other: Row) -> None:
        # Only undo a binding this saga made.
        await store.update(
            "users",
            {"partner_id": None, "bound_invitation_code": None},
            where=all_of(eq("id", user["id"]), eq("partner_id", other["id"])),
        )
        logger.warning("binding_rolled_back", user_id=user["id"], request_id=request["id"])

    saga = Saga("binding_accept")
    try:
        requester_updated = await saga.step(
            "bind_requester", lambda: bind(requester, target), lambda: unbind(requester, target)
        )
    except _LostRace as exc:
        await set_status(store, request["id"], REJECTED, only_if=PENDING)
        raise Conflict(ALREADY_CONNECTED_MESSAGE) from exc

    try:
        target_updated = await saga.step(
            "bind_target", lambda: bind(target, requester), lambda: unbind(target, requester)
        )
    except (_LostRace, TransportError) as exc:
        logger.warning(
            "binding_second_half_failed",
            request_id=request["id"],
            reason="lost_race" if isinstance(exc, _LostRace) else "transport",
        )
        await _mark_rejected_quietly(store, request["id"])
        raise Conflict(ALREADY_CONNECTED_MESSAGE) from exc

    async def mark_accepted() -> None:
        if not await set_status(store, request["id"], ACCEPTED, only_if=PENDING, confirmed_at=utcnow()):
            raise _LostRace(request["id"])

    try:
        await saga.step("mark_accepted", mark_accepted)
    except _LostRace as exc:
        # Rejected or expired while both sides were being bound.
        logger.warning("binding_request_resolved_elsewhere", request_id=request["id"])
        raise Conflict(PROCESSED_MESSAGE) from exc

    await settle_connection_sync(store, [requester_updated["id"], target_updated["id"]], True, "binding-accept")

    tasks.spawn(
        add_notification(
            store,
            requester_updated["id"],
            "Binding confirmed",
            f"{_display_name(target_updated)} accepted your binding request.",
            "interaction",
        ),
        "notify-bind-requester",
    )
    tasks.spawn(
        add_notification(
            store,
            target_updated["id"],
            "Binding completed",
            f"You have connected with {_display_name(requester_updated)}.",
            "interaction",
        ),
        "notify-bind-target",
    )
    logger.info("binding_accepted", request_id=request["id"])
    return requester_updated, target_updated


# ---------------------------------------------------------------------------
# Respond / confirm / list
# ---------------------------------------------------------------------------


async def respond(store: RowStore, user_id: str, request_id: str, body: dict[str, Any]) -> dict[str, Any]:
    """Accept or reject a request addressed to the caller."""
    request_id = str(request_id or "").strip()
    action = str(body.get("action") or "").strip().lower()
    if not request_id:
        raise BadRequest("Missing request id")
    if action not in ("accept", "reject"):
        raise BadRequest("action must be accept or reject")

    request = await store.get(
        "binding_requests",
        where=all_of(eq("id", request_id), eq("target_user_id", user_id), eq("status", PENDING)),
    )
    if request is None:
        raise NotFound(PROCESSED_MESSAGE)
    if is_expired(request):
        await set_status(store, request["id"], EXPIRED, only_if=PENDING)
        raise BadRequest("Binding request expired")

    if action == "reject":
        if not await set_status(store, request["id"], REJECTED, only_if=PENDING, confirmed_at=utcnow()):
            raise NotFound(PROCESSED_MESSAGE)
        requester, target = await asyncio.gather(
            get_user_by_id(store, request["requester_user_id"]),
            get_user_by_id(store, request["target_user_id"]),
        )
        if requester and target:
            tasks.spawn(
                add_notification(
                    store,
                    requester["id"],
                    "Binding request rejected",
                    f"{_display_name(target)} rejected your binding request.",
                    "interaction",
                ),
                "notify-bind-reject-requester",
            )
        current = await get_user_by_id(store, user_id)
        settings_row = await ensure_user_settings(store, user_id, bool(current and current.get("partner_id")))
        return {
            "ok": True,
            "action": action,
            "message": "Request rejected",
            "settings": map_settings(settings_row, current),
        }

    _, target = await accept_request(store, request)
    settings_row = await ensure_user_settings(store, target["id"], True)
    return {
        "ok": True,
        "action": action,
        "message": "Binding accepted",
        "settings": map_settings(settings_row, target),
    }


async def confirm(store: RowStore, token: object) -> tuple[int, str]:
    """Accept a request through its emailed link.

    Returns:
        HTTP status and the HTML page to show.
    """
    token = str(token or "").strip()
    if not token:
        return 400, pages.render_page(*pages.MISSING_TOKEN)

    request = await store.get("binding_requests", where=all_of(eq("confirm_token", token), eq("status", PENDING)))
    if request is None:
        return 404, pages.render_page(*pages.NOT_FOUND)
    if is_expired(request):
        await set_status(store, request["id"], EXPIRED, only_if=PENDING)
        return 400, pages.render_page(*pages.EXPIRED)

    try:
        await accept_request(store, request)
    except AppError as exc:
        if exc.status_code == 404:
            return 404, pages.render_page(*pages.USER_GONE)
        if exc.status_code == 409:
            return 409, pages.render_page(*pages.CANNOT_BIND)
        raise
    return 200, pages.render_page(*pages.SUCCESS)


async def list_pending(store: RowStore, user_id: str) -> dict[str, Any]:
    """Live pending requests addressed to the caller, newest per requester."""
    tasks.spawn(expire_stale_for_target(store, user_id), "expire-target-pending-bindings")

    rows = await store.select(
        "binding_requests",
        where=all_of(eq("target_user_id", user_id), eq("status", PENDING), gte("expires_at", utcnow())),
        columns=["id", "requester_user_id", "invite_code", "created_at", "expires_at"],
        order_by=[desc("created_at")],
        limit=PENDING_LIST_LIMIT,
    )
    newest: dict[str, Row] = {}
    for row in rows:
        newest.setdefault(row["requester_user_id"], row)

    requesters: dict[str, Row] = {}
    if newest:
        found = await store.select(
            "users",
            where=in_("id", list(newest)),
            columns=["id", "name", "email", "invitation_code"],
        )
        requesters = {r["id"]: r for r in found}

    requests = []
    for requester_id, row in newest.items():
        requester = requesters.get(requester_id)
        if requester is None:
            continue
        requests.append(
            {
                "id": row["id"],
                "inviteCode": row["invite_code"],
                "createdAt": to_iso(row["created_at"]),
                "expiresAt": to_iso(row["expires_at"]),
                "requester": {
                    "id": requester["id"],
                    "name": requester.get("name") or "",
                    "email": requester.get("email"),
                    "invitationCode": requester.get("invitation_code") or "",
                },
            }
        )
    return {"requests": requests}


# ---------------------------------------------------------------------------
# Disconnect
# ---------------------------------------------------------------------------


async def disconnect(store: RowStore, user_id: str) -> dict[str, Any]:
    """Clear the binding on both sides in one guarded multi-row update."""
    user = await require_user(store, user_id)
    partner = await get_user_by_id(store, user["partner_id"]) if user.get("partner_id") else None

    if partner is not None:
        # The partner is only cleared if they still point back at the caller.
        where = any_of(eq("id", user["id"]), all_of(eq("id", partner["id"]), eq("partner_id", user["id"])))
    else:
        where = eq("id", user["id"])
    updated = await store.update("users", {"partner_id": None, "bound_invitation_code": None}, where=where)

    self_updated = next((row for row in updated if row["id"] == user["id"]), None)
    if self_updated is None:
        raise NotFound("User not found")

    cleared_ids = [row["id"] for row in updated]
    await settle_connection_sync(store, cleared_ids, False, "disconnect")

    if partner is not None:
        tasks.spawn(
            add_notification(
                store,
                partner["id"],
                "Relationship disconnected",
                f"{_display_name(user)} removed the binding relationship.",
                "interaction",
            ),
            "notify-partner-disconnect",
        )
    tasks.spawn(
        add_notification(store, user["id"], "Disconnected", "You have disconnected the current relationship.", "system"),
        "notify-self-disconnect",
    )

    settings_row = await ensure_user_settings(store, user["id"], False)
    logger.info("binding_disconnected", user_id=user["id"], partner_id=partner["id"] if partner else None)
    return {"settings": map_settings(settings_row, self_updated)}
