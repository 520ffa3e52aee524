"""
Blob storage for memory images.

``BlobStore`` is the capability the services need; ``SupabaseBlobStore``
talks to a Supabase-compatible Storage REST API over httpx.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import httpx
import structlog

logger = structlog.get_logger()

BUCKET_FILE_SIZE_LIMIT = "20MB"
CACHE_CONTROL_SECONDS = 31536000


class BlobStoreError(Exception):
    """The blob service refused or failed a request."""


class BlobStore(ABC):
    """Abstract bucket-scoped object store."""

    bucket: str
    public: bool

    @abstractmethod
    async def ensure_bucket(self) -> None:
        """Create the bucket if missing and align its visibility."""

    @abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        """Store ``data`` at ``key``; never overwrites."""

    @abstractmethod
    async def remove(self, keys: Sequence[str]) -> None:
        """Delete the given keys."""

    @abstractmethod
    async def signed_url(self, key: str, ttl_seconds: int) -> str:
        """Time-limited URL for a private object."""

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Permanent URL for an object in a public bucket."""

    async def aclose(self) -> None:  # noqa: B027
        """Release network resources."""


class SupabaseBlobStore(BlobStore):
    """Storage REST API client (``/storage/v1``)."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        *,
        public: bool = False,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.public = public
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {service_key}", "apikey": service_key}
        self._bucket_ready = False
        self._bucket_lock = asyncio.Lock()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/{path}"

    def _object_path(self, key: str) -> str:
        return f"{quote(self.bucket)}/{quote(key)}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,  # noqa: ANN401
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method, self._url(path), headers={**self._headers, **(headers or {})}, **kwargs
            )
        except httpx.HTTPError as exc:
            raise BlobStoreError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        raise BlobStoreError(f"{action} failed with {response.status_code}: {response.text[:200]}")

    async def ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        async with self._bucket_lock:
            if self._bucket_ready:
                return
            response = await self._request("GET", f"bucket/{quote(self.bucket)}")
            if response.status_code in (400, 404):
                created = await self._request(
                    "POST",
                    "bucket",
                    json={
                        "id": self.bucket,
                        "name": self.bucket,
                        "public": self.public,
                        "file_size_limit": BUCKET_FILE_SIZE_LIMIT,
                    },
                )
                if not created.is_success and "already exists" not in created.text.lower():
                    self._raise_for_status(created, "create bucket")
                logger.info("blob_bucket_created", bucket=self.bucket, public=self.public)
            else:
                self._raise_for_status(response, "get bucket")
                if bool(response.json().get("public")) != self.public:
                    updated = await self._request(
                        "PUT", f"bucket/{quote(self.bucket)}", json={"public": self.public}
                    )
                    self._raise_for_status(updated, "update bucket")
            self._bucket_ready = True

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        response = await self._request(
            "POST",
            f"object/{self._object_path(key)}",
            content=data,
            headers={
                "Content-Type": content_type,
                "Cache-Control": f"max-age={CACHE_CONTROL_SECONDS}",
                "x-upsert": "false",
            },
        )
        self._raise_for_status(response, "upload")

    async def remove(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        response = await self._request("DELETE", f"object/{quote(self.bucket)}", json={"prefixes": list(keys)})
        self._raise_for_status(response, "remove")

    async def signed_url(self, key: str, ttl_seconds: int) -> str:
        response = await self._request(
            "POST", f"object/sign/{self._object_path(key)}", json={"expiresIn": ttl_seconds}
        )
        self._raise_for_status(response, "sign")
        signed = response.json().get("signedURL") or response.json().get("signedUrl")
        if not signed:
            raise BlobStoreError("sign returned no URL")
        return f"{self.base_url}/storage/v1{signed}" if signed.startswith("/") else signed

    def public_url(self, key: str) -> str:
        return self._url(f"object/public/{self._object_path(key)}")

    async def aclose(self) -> None:
        await self._client.aclose()
