"""Request schemas for the binding endpoints."""

from __future__ import annotations

from gifts.schemas import CamelModel


class ConnectRequest(CamelModel):
    invite_code: str | None = None


class RespondRequest(CamelModel):
    action: str | None = None
