"""User lookups, profile updates and response mappers."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from gifts.db.base import to_iso
from gifts.errors import BadRequest, NotFound
from gifts.rowstore import Row, RowStore, eq, in_

GENDERS = ("male", "female")
PROFILE_NAME_MAX_LENGTH = 64
AUTHOR_COLUMNS = ["id", "name", "email", "avatar", "gender"]


async def get_user_by_id(store: RowStore, user_id: str) -> Row | None:
    return await store.get("users", where=eq("id", user_id))


async def get_user_by_email(store: RowStore, email: str) -> Row | None:
    return await store.get("users", where=eq("email", email))


async def get_user_by_invite_code(store: RowStore, invite_code: str) -> Row | None:
    return await store.get("users", where=eq("invitation_code", invite_code))


async def require_user(store: RowStore, user_id: str) -> Row:
    """Load the caller's row or raise 404."""
    user = await get_user_by_id(store, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def get_partner(store: RowStore, user: Row | None) -> Row | None:
    if not user or not user.get("partner_id"):
        return None
    return await get_user_by_id(store, user["partner_id"])


def shared_user_ids(user: Row) -> list[str]:
    """The caller plus their current partner, if any."""
    ids = [user["id"]]
    partner_id = user.get("partner_id")
    if partner_id and partner_id not in ids:
        ids.append(partner_id)
    return ids


async def load_author_map(store: RowStore, user_ids: Iterable[str]) -> dict[str, Row]:
    ids = [uid for uid in dict.fromkeys(user_ids) if uid]
    if not ids:
        return {}
    rows = await store.select("users", where=in_("id", ids), columns=AUTHOR_COLUMNS)
    return {row["id"]: row for row in rows}


async def update_profile(store: RowStore, user_id: str, body: dict[str, Any]) -> Row:
    """Apply name/avatar/gender changes; other keys are ignored.

    Raises:
        BadRequest: If nothing updatable was supplied.
        NotFound: If the user no longer exists.
    """
    payload: dict[str, Any] = {}
    name = body.get("name")
    if isinstance(name, str):
        payload["name"] = name.strip()[:PROFILE_NAME_MAX_LENGTH]
    avatar = body.get("avatar")
    if isinstance(avatar, str):
        payload["avatar"] = avatar
    gender = body.get("gender")
    if gender in GENDERS:
        payload["gender"] = gender
    if not payload:
        raise BadRequest("没有可更新的字段")

    rows = await store.update("users", payload, where=eq("id", user_id))
    if not rows:
        raise NotFound("User not found")
    return rows[0]


def map_user(row: Row | None) -> dict[str, Any] | None:
    if not row:
        return None
    return {
        "id": row["id"],
        "email": row.get("email"),
        "invitationCode": row.get("invitation_code") or "",
        "boundInvitationCode": row.get("bound_invitation_code") or "",
        "emailVerified": bool(row.get("email_verified")),
        "createdAt": to_iso(row.get("created_at")),
        "name": row.get("name") or "",
        "avatar": row.get("avatar") or "",
        "gender": row.get("gender") or "male",
        "partnerId": row.get("partner_id") or None,
    }


def map_author(row: Row | None) -> dict[str, Any] | None:
    if not row:
        return None
    return {
        "id": row["id"],
        "name": row.get("name") or "",
        "email": row.get("email") or "",
        "avatar": row.get("avatar") or "",
        "gender": row.get("gender") or "male",
    }
