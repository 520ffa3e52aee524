"""Authentication flows: signup by emailed code, login, password reset, session info."""

from __future__ import annotations

import hashlib
from typing import Any

import structlog

from gifts import tasks
from gifts.auth import verification
from gifts.auth.jwt import create_access_token, normalize_token_version
from gifts.auth.latency import uniform_latency
from gifts.auth.password import check_needs_rehash, hash_password, verify_password
from gifts.config import get_settings
from gifts.couple.service import ensure_user_settings
from gifts.db.base import utcnow
from gifts.email.service import EmailService, get_email_service
from gifts.errors import BadRequest, NotFound, Unauthorized
from gifts.notifications.service import add_notification
from gifts.redis_client import get_redis
from gifts.rowstore import Row, RowStore, UniqueViolation, all_of, eq
from gifts.users.invite_codes import generate_unique_invite_code
from gifts.users.service import get_partner, get_user_by_email, map_user, require_user
from gifts.validation import check_password, check_verification_code, normalize_email

logger = structlog.get_logger()

REGISTER_CODE_RESPONSE_MESSAGE = "如果邮箱可用于注册，验证码将发送到该邮箱；若已注册，请直接登录或使用忘记密码。"
RESET_CODE_RESPONSE_MESSAGE = "如果邮箱已注册，验证码将发送到该邮箱"
RESET_DONE_MESSAGE = "密码重置成功，请使用新密码登录"
LOGIN_FAILED_MESSAGE = "邮箱或密码错误"
LEGACY_REGISTER_MESSAGE = (
    "注册流程已升级，请先调用 /api/auth/register/request-code 再调用 /api/auth/register/verify。"
)


def _email_service() -> EmailService:
    try:
        redis = get_redis()
    except RuntimeError:
        redis = None
    return get_email_service(redis)


async def _send_code(to: str, template_name: str, code: str) -> None:
    ttl = get_settings().verification_code_ttl_minutes
    sent = await _email_service().send_template(to, template_name, {"code": code, "ttl_minutes": ttl})
    if not sent:
        logger.warning("verification_email_not_sent", template=template_name)


async def build_auth_payload(store: RowStore, user: Row) -> dict[str, Any]:
    partner = await get_partner(store, user)
    return {
        "token": create_access_token(user["id"], normalize_token_version(user.get("token_version"))),
        "user": map_user(user),
        "partner": map_user(partner),
    }


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


async def request_signup_code(store: RowStore, body: dict[str, Any]) -> dict[str, Any]:
    """Send a signup code unless the email already belongs to a verified account.

    The response is identical either way.
    """
    settings = get_settings()
    async with uniform_latency(settings.auth_uniform_min_latency_ms):
        email = normalize_email(body.get("email"))
        password = check_password(body.get("password"), settings.password_min_length)

        existing_user = await get_user_by_email(store, email)
        existing_code = await verification.get_verification(store, email, verification.SIGNUP)
        verification.ensure_not_frequent(
            existing_code["last_sent_at"] if existing_code else None,
            verification.cooldown_for(verification.SIGNUP),
        )

        deliverable = not (existing_user and existing_user.get("email_verified"))
        code = await verification.issue_code(
            store,
            email,
            verification.SIGNUP,
            password_hash=hash_password(password),
            deliverable=deliverable,
        )
        if code is not None:
            tasks.spawn(_send_code(email, "signup_code", code), "send-signup-code")

        return {
            "ok": True,
            "message": REGISTER_CODE_RESPONSE_MESSAGE,
            "expiresInMinutes": settings.verification_code_ttl_minutes,
        }


async def _promote_or_create_user(store: RowStore, email: str, existing: Row | None, password_hash: str) -> Row:
    if existing is not None:
        invitation_code = existing.get("invitation_code") or await generate_unique_invite_code(store)
        rows = await store.update(
            "users",
            {
                "password_hash": password_hash,
                "email_verified": True,
                "invitation_code": invitation_code,
                "name": existing.get("name") or email.split("@")[0],
            },
            where=eq("id", existing["id"]),
        )
        if not rows:
            raise NotFound("User not found")
        return rows[0]

    invitation_code = await generate_unique_invite_code(store)
    try:
        rows = await store.insert(
            "users",
            {
                "email": email,
                "password_hash": password_hash,
                "invitation_code": invitation_code,
                "bound_invitation_code": None,
                "email_verified": True,
                "name": email.split("@")[0],
                "gender": "male",
            },
        )
        return rows[0]
    except UniqueViolation as exc:
        if not exc.touches("email"):
            raise
        # A concurrent verify for the same email won the insert.
        winner = await get_user_by_email(store, email)
        if winner is None or not winner.get("email_verified"):
            raise
        return winner


async def verify_signup(store: RowStore, body: dict[str, Any]) -> tuple[dict[str, Any], int]:
    """Redeem a signup code and log the user in.

    Returns:
        The auth payload and the HTTP status (201 for a new account, 200 when
        the email was already verified).
    """
    settings = get_settings()
    async with uniform_latency(settings.auth_uniform_min_latency_ms):
        email = normalize_email(body.get("email"))
        code = check_verification_code(body.get("code"))

        record = await verification.consume_code(store, email, verification.SIGNUP, code)
        existing = await get_user_by_email(store, email)

        if existing and existing.get("email_verified"):
            await verification.discard(store, record["id"])
            tasks.spawn(
                ensure_user_settings(store, existing["id"], bool(existing.get("partner_id"))),
                "ensure-settings-register-duplicate-verify",
            )
            return await build_auth_payload(store, existing), 200

        password_hash = record.get("password_hash")
        if not password_hash:
            raise BadRequest(verification.VERIFY_FAILED_MESSAGE)

        user = await _promote_or_create_user(store, email, existing, password_hash)
        await verification.discard(store, record["id"])

        tasks.spawn(
            ensure_user_settings(store, user["id"], bool(user.get("partner_id"))),
            "ensure-settings-register-verify",
        )
        payload = await build_auth_payload(store, user)
        tasks.spawn(
            add_notification(
                store,
                user["id"],
                "注册成功",
                f"邮箱验证完成。你的专属邀请码是 {user.get('invitation_code')}。",
                "system",
            ),
            "notify-register",
        )
        logger.info("user_registered", user_id=user["id"])
        return payload, 201


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


async def request_reset_code(store: RowStore, body: dict[str, Any]) -> dict[str, Any]:
    """Send a reset code if the email is a verified account; respond identically otherwise."""
    settings = get_settings()
    async with uniform_latency(settings.auth_uniform_min_latency_ms):
        email = normalize_email(body.get("email"))

        user = await get_user_by_email(store, email)
        existing_code = await verification.get_verification(store, email, verification.RESET_PASSWORD)
        verification.ensure_not_frequent(
            existing_code["last_sent_at"] if existing_code else None,
            verification.cooldown_for(verification.RESET_PASSWORD),
        )

        deliverable = bool(user and user.get("email_verified"))
        password_hash = (
            user.get("password_hash") if deliverable else hashlib.sha256(utcnow().isoformat().encode()).hexdigest()
        )
        code = await verification.issue_code(
            store,
            email,
            verification.RESET_PASSWORD,
            password_hash=password_hash,
            deliverable=deliverable,
        )
        if code is not None:
            tasks.spawn(_send_code(email, "reset_code", code), "send-reset-password-code")

        return {
            "ok": True,
            "message": RESET_CODE_RESPONSE_MESSAGE,
            "expiresInMinutes": settings.verification_code_ttl_minutes,
        }


async def reset_password(store: RowStore, body: dict[str, Any]) -> dict[str, Any]:
    """Redeem a reset code, replace the password and revoke every existing session."""
    settings = get_settings()
    async with uniform_latency(settings.auth_uniform_min_latency_ms):
        email = normalize_email(body.get("email"))
        code = check_verification_code(body.get("code"))
        new_password = check_password(body.get("newPassword"), settings.password_min_length)

        record = await verification.consume_code(store, email, verification.RESET_PASSWORD, code)
        user = await get_user_by_email(store, email)
        if not user or not user.get("email_verified"):
            raise BadRequest(verification.VERIFY_FAILED_MESSAGE)

        new_hash = hash_password(new_password)
        current_version = normalize_token_version(user.get("token_version"))
        updated = await store.update(
            "users",
            {"password_hash": new_hash, "token_version": current_version + 1},
            where=all_of(eq("id", user["id"]), eq("token_version", user.get("token_version") or 0)),
        )
        if not updated:
            # token_version moved under us; bump from the live value instead.
            live = await require_user(store, user["id"])
            await store.update(
                "users",
                {
                    "password_hash": new_hash,
                    "token_version": normalize_token_version(live.get("token_version")) + 1,
                },
                where=eq("id", user["id"]),
            )
        await verification.discard(store, record["id"])

        tasks.spawn(
            add_notification(store, user["id"], "密码已重置", "你已成功重置登录密码。", "system"),
            "notify-reset-password",
        )
        logger.info("password_reset", user_id=user["id"])
        return {"ok": True, "message": RESET_DONE_MESSAGE}


# ---------------------------------------------------------------------------
# Login & session
# ---------------------------------------------------------------------------


async def login(store: RowStore, body: dict[str, Any]) -> dict[str, Any]:
    """Password login. Unverified accounts and wrong passwords look the same."""
    settings = get_settings()
    email = normalize_email(body.get("email"))
    password = check_password(body.get("password"), settings.password_min_length)

    user = await get_user_by_email(store, email)
    if not user or not user.get("email_verified"):
        raise Unauthorized(LOGIN_FAILED_MESSAGE)
    if not verify_password(password, user.get("password_hash")):
        raise Unauthorized(LOGIN_FAILED_MESSAGE)

    if check_needs_rehash(user["password_hash"]):
        tasks.spawn(
            store.update("users", {"password_hash": hash_password(password)}, where=eq("id", user["id"])),
            "rehash-password",
        )

    payload = await build_auth_payload(store, user)
    tasks.spawn(ensure_user_settings(store, user["id"], bool(user.get("partner_id"))), "ensure-settings-login")
    tasks.spawn(add_notification(store, user["id"], "登录成功", "欢迎回来，数据已同步。", "system"), "notify-login")
    return payload


async def current_session(store: RowStore, user_id: str) -> dict[str, Any]:
    user = await store.get("users", where=eq("id", user_id))
    if user is None:
        raise NotFound("用户不存在")
    partner = await get_partner(store, user)
    tasks.spawn(ensure_user_settings(store, user["id"], bool(user.get("partner_id"))), "ensure-settings-me")
    return {"user": map_user(user), "partner": map_user(partner)}
