"""Test doubles and request helpers shared across suites."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from unittest.mock import MagicMock

from httpx import AsyncClient

from gifts import tasks
from gifts.auth.jwt import create_access_token
from gifts.rowstore import Row
from gifts.storage.blob import BlobStore, BlobStoreError

TEST_PASSWORD = "SecureP@ss1"
TINY_PNG = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)


class FakeBlobStore(BlobStore):
    """In-memory bucket that records every call."""

    def __init__(self, bucket: str = "gifts-memories", *, public: bool = False) -> None:
        self.bucket = bucket
        self.public = public
        self.objects: dict[str, bytes] = {}
        self.removed: list[str] = []
        self.fail_uploads = False
        self.fail_removes = False
        self.upload_delay = 0.0

    async def ensure_bucket(self) -> None:
        return None

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        if self.upload_delay:
            await asyncio.sleep(self.upload_delay)
        if self.fail_uploads:
            raise BlobStoreError("upload failed")
        self.objects[key] = data

    async def remove(self, keys: Sequence[str]) -> None:
        if self.fail_removes:
            raise BlobStoreError("remove failed")
        for key in keys:
            self.objects.pop(key, None)
            self.removed.append(key)

    async def signed_url(self, key: str, ttl_seconds: int) -> str:
        return f"https://blobs.test/signed/{key}?ttl={ttl_seconds}"

    def public_url(self, key: str) -> str:
        return f"https://blobs.test/storage/v1/object/public/{self.bucket}/{key}"


def auth_headers(user: Row) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user['id'], user.get('token_version') or 0)}"}


def sent_code(mock_service: MagicMock, email: str, template: str = "signup_code") -> str:
    """The most recent code emailed to ``email`` with ``template``."""
    for call in reversed(mock_service.send_template.call_args_list):
        to, name, context = call.args
        if to == email and name == template:
            return context["code"]
    msg = f"No {template} email sent to {email}"
    raise AssertionError(msg)


async def register_via_api(client: AsyncClient, mock_service: MagicMock, email: str) -> dict:
    """Full signup: request a code, read it from the mocked mailer, verify."""
    response = await client.post(
        "/api/auth/register/request-code", json={"email": email, "password": TEST_PASSWORD}
    )
    assert response.status_code == 200, response.text
    await tasks.drain()
    code = sent_code(mock_service, email)
    response = await client.post(
        "/api/auth/register/verify", json={"email": email, "code": code, "password": TEST_PASSWORD}
    )
    assert response.status_code == 201, response.text
    return response.json()
