"""Image value parsing: data URLs, storage refs and legacy public URLs."""

from __future__ import annotations

import base64
import binascii
import re
import time
import uuid
from dataclasses import dataclass
from urllib.parse import unquote

from gifts.errors import BadRequest, PayloadTooLarge

DATA_URL_RE = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,(.+)$", re.DOTALL)
STORAGE_REF_PREFIX = "storage:"
MIME_TO_EXT = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}
EMPTY_IMAGE_MESSAGE = "图片内容为空"


@dataclass(frozen=True)
class DataUrl:
    mime: str
    payload: str

    @property
    def extension(self) -> str:
        return MIME_TO_EXT.get(self.mime, "jpg")

    def decode(self) -> bytes:
        try:
            return base64.b64decode(self.payload, validate=False)
        except (binascii.Error, ValueError):
            return b""


def parse_data_url(image: object) -> DataUrl | None:
    if not isinstance(image, str):
        return None
    match = DATA_URL_RE.match(image)
    if not match:
        return None
    return DataUrl(mime=match.group(1).lower(), payload=match.group(2))


def check_size(data: bytes, max_bytes: int) -> bytes:
    """Reject empty or oversized decoded images."""
    if not data:
        raise BadRequest(EMPTY_IMAGE_MESSAGE)
    if len(data) > max_bytes:
        max_mb = max_bytes // (1024 * 1024)
        raise PayloadTooLarge(f"图片过大，单张图片最大支持 {max_mb}MB")
    return data


def validate_image_input(image: object, max_bytes: int) -> None:
    """An image must be a non-empty string; data URLs must also fit the size cap."""
    if not isinstance(image, str) or not image.strip():
        raise BadRequest("image is required")
    parsed = parse_data_url(image)
    if parsed is not None:
        check_size(parsed.decode(), max_bytes)


def build_storage_key(user_id: str, extension: str, now_ms: int | None = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"memories/{user_id}/{stamp}-{uuid.uuid4()}.{extension}"


def to_storage_ref(key: str | None) -> str:
    return f"{STORAGE_REF_PREFIX}{key}" if key else ""


def storage_key_from_ref(value: object) -> str | None:
    if not isinstance(value, str) or not value.startswith(STORAGE_REF_PREFIX):
        return None
    return value[len(STORAGE_REF_PREFIX) :].strip() or None


def storage_key_from_public_url(url: object, bucket: str) -> str | None:
    if not isinstance(url, str) or not bucket:
        return None
    marker = f"/storage/v1/object/public/{bucket}/"
    index = url.find(marker)
    if index < 0:
        return None
    raw_key = url[index + len(marker) :].split("?", 1)[0]
    return unquote(raw_key) if raw_key else None


def storage_key_from_image(image: object, bucket: str) -> str | None:
    """Key of a stored image, whether referenced as ``storage:<key>`` or by its public URL."""
    return storage_key_from_ref(image) or storage_key_from_public_url(image, bucket)
