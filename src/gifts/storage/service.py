"""Image persistence for memories.

Data-URL images are uploaded to the blob store and replaced by a
``storage:<key>`` reference; everything else is stored as given. At read time
references are resolved to a signed (private bucket) or public URL, falling
back to the raw value when resolution fails.

Uploads made for a row write that then fails are removed again best effort
(``cleanup``); a failed cleanup is logged and never changes the response.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from gifts.config import Settings, get_settings
from gifts.storage.blob import BlobStore, BlobStoreError, SupabaseBlobStore
from gifts.storage.images import (
    build_storage_key,
    check_size,
    parse_data_url,
    storage_key_from_image,
    to_storage_ref,
)

logger = structlog.get_logger()

RESOLVE_CONCURRENCY = 6


@dataclass(frozen=True)
class PersistedImage:
    image: str
    uploaded: bool = False
    storage_key: str | None = None


class ImageStorage:
    """Upload, resolve and clean up memory images."""

    def __init__(
        self,
        blobs: BlobStore | None,
        *,
        max_image_bytes: int,
        signed_url_ttl_seconds: int = 3600,
    ) -> None:
        self.blobs = blobs
        self.max_image_bytes = max_image_bytes
        self.signed_url_ttl_seconds = signed_url_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> ImageStorage:
        blobs: BlobStore | None = None
        if settings.image_storage_enabled and settings.storage_url and settings.image_bucket:
            blobs = SupabaseBlobStore(
                settings.storage_url,
                settings.storage_service_key,
                settings.image_bucket,
                public=settings.image_bucket_public,
            )
        return cls(
            blobs,
            max_image_bytes=settings.max_image_bytes,
            signed_url_ttl_seconds=settings.image_signed_url_ttl_seconds,
        )

    @property
    def enabled(self) -> bool:
        return self.blobs is not None

    @property
    def bucket(self) -> str:
        return self.blobs.bucket if self.blobs is not None else ""

    async def persist(self, image: str, user_id: str) -> PersistedImage:
        """Upload a data-URL image.

        Raises:
            BadRequest: Empty image payload.
            PayloadTooLarge: Decoded image above the size cap.
            BlobStoreError: The upload itself failed.
        """
        parsed = parse_data_url(image)
        if parsed is None:
            return PersistedImage(image=image)
        data = check_size(parsed.decode(), self.max_image_bytes)
        if self.blobs is None:
            return PersistedImage(image=image)

        await self.blobs.ensure_bucket()
        key = build_storage_key(user_id, parsed.extension)
        await self.blobs.upload(key, data, parsed.mime)
        return PersistedImage(image=to_storage_ref(key) or image, uploaded=True, storage_key=key)

    async def persist_or_inline(self, image: str, user_id: str, label: str) -> PersistedImage:
        """``persist``, keeping the inline image if the blob service is unavailable.

        Validation errors still propagate.
        """
        try:
            return await self.persist(image, user_id)
        except BlobStoreError as exc:
            logger.warning("image_upload_fallback_inline", step=label, error=str(exc))
            return PersistedImage(image=image)

    def key_of(self, image: object) -> str | None:
        return storage_key_from_image(image, self.bucket)

    async def resolve(self, image: object) -> str:
        if not isinstance(image, str) or not image:
            return ""
        if self.blobs is None:
            return image
        key = self.key_of(image)
        if not key:
            return image
        if self.blobs.public:
            return self.blobs.public_url(key)
        try:
            return await self.blobs.signed_url(key, self.signed_url_ttl_seconds) or image
        except BlobStoreError as exc:
            logger.warning("image_resolve_fallback_raw", error=str(exc))
            return image

    async def resolve_many(self, images: list[str]) -> list[str]:
        semaphore = asyncio.Semaphore(RESOLVE_CONCURRENCY)

        async def one(image: str) -> str:
            async with semaphore:
                return await self.resolve(image)

        return list(await asyncio.gather(*(one(image) for image in images)))

    async def remove(self, keys: Iterable[str | None]) -> None:
        valid = [key for key in keys if key]
        if self.blobs is None or not valid:
            return
        await self.blobs.remove(valid)

    async def cleanup(self, keys: Iterable[str | None], label: str) -> None:
        """Best-effort ``remove``; failures are logged."""
        valid = [key for key in keys if key]
        if not valid:
            return
        try:
            await self.remove(valid)
        except BlobStoreError as exc:
            logger.error("blob_cleanup_failed", step=label, keys=valid, error=str(exc))


_image_storage: ImageStorage | None = None


def init_image_storage(storage: ImageStorage) -> None:
    global _image_storage  # noqa: PLW0603
    _image_storage = storage


async def close_image_storage() -> None:
    global _image_storage  # noqa: PLW0603
    if _image_storage is not None and _image_storage.blobs is not None:
        await _image_storage.blobs.aclose()
    _image_storage = None


def get_image_storage() -> ImageStorage:
    """Get the image storage (FastAPI dependency). Built from settings on first use."""
    global _image_storage  # noqa: PLW0603
    if _image_storage is None:
        _image_storage = ImageStorage.from_settings(get_settings())
    return _image_storage
