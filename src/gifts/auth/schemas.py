"""Request/response schemas for authentication endpoints.

Request fields are deliberately loose (optional strings); the services
validate them and own the user-facing messages.
"""

from __future__ import annotations

from gifts.schemas import CamelModel

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RequestCodeRequest(CamelModel):
    """Signup code request: the candidate password travels with the email."""

    email: str | None = None
    password: str | None = None


class VerifyCodeRequest(CamelModel):
    email: str | None = None
    code: str | None = None
    password: str | None = None


class ResetCodeRequest(CamelModel):
    email: str | None = None


class ResetPasswordRequest(CamelModel):
    email: str | None = None
    code: str | None = None
    new_password: str | None = None


class LoginRequest(CamelModel):
    email: str | None = None
    password: str | None = None


class ProfileUpdateRequest(CamelModel):
    name: str | None = None
    avatar: str | None = None
    gender: str | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserResponse(CamelModel):
    id: str
    email: str | None = None
    invitation_code: str = ""
    bound_invitation_code: str = ""
    email_verified: bool = False
    created_at: str | None = None
    name: str = ""
    avatar: str = ""
    gender: str = "male"
    partner_id: str | None = None


class AuthResponse(CamelModel):
    """Session token plus the caller and their partner."""

    token: str
    user: UserResponse
    partner: UserResponse | None = None


class SessionResponse(CamelModel):
    user: UserResponse
    partner: UserResponse | None = None


class CodeSentResponse(CamelModel):
    ok: bool = True
    message: str
    expires_in_minutes: int


class MessageResponse(CamelModel):
    ok: bool = True
    message: str


class ProfileResponse(CamelModel):
    user: UserResponse
