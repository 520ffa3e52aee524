"""Authentication router: all /api/auth/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from gifts.auth import service
from gifts.auth.dependencies import get_current_user_id
from gifts.auth.schemas import (
    AuthResponse,
    CodeSentResponse,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    RequestCodeRequest,
    ResetCodeRequest,
    ResetPasswordRequest,
    SessionResponse,
    VerifyCodeRequest,
)
from gifts.errors import BadRequest
from gifts.rowstore import RowStore, get_store
from gifts.users.service import map_user, update_profile

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


@router.post("/register/request-code", response_model=CodeSentResponse)
async def request_register_code(
    body: RequestCodeRequest,
    store: RowStore = Depends(get_store),
) -> dict:
    """Email a signup code. The answer never reveals whether the email is taken."""
    return await service.request_signup_code(store, body.payload())


@router.post("/register/verify", response_model=AuthResponse, status_code=201)
async def verify_register_code(
    body: VerifyCodeRequest,
    response: Response,
    store: RowStore = Depends(get_store),
) -> dict:
    """Redeem a signup code. 201 for a new account, 200 if it was already verified."""
    payload, status_code = await service.verify_signup(store, body.payload())
    response.status_code = status_code
    return payload


@router.post("/register")
async def legacy_register() -> None:
    """One-step registration has been retired."""
    raise BadRequest(service.LEGACY_REGISTER_MESSAGE)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/password/request-reset-code", response_model=CodeSentResponse)
async def request_reset_code(
    body: ResetCodeRequest,
    store: RowStore = Depends(get_store),
) -> dict:
    return await service.request_reset_code(store, body.payload())


@router.post("/password/reset", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    store: RowStore = Depends(get_store),
) -> dict:
    """Set a new password with a reset code. Every existing session is revoked."""
    return await service.reset_password(store, body.payload())


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    store: RowStore = Depends(get_store),
) -> dict:
    return await service.login(store, body.payload())


@router.get("/me", response_model=SessionResponse)
async def me(
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    return await service.current_session(store, user_id)


@router.patch("/profile", response_model=ProfileResponse)
async def patch_profile(
    body: ProfileUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
) -> dict:
    """Update name, avatar or gender."""
    row = await update_profile(store, user_id, body.payload())
    return {"user": map_user(row)}
