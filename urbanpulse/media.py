"""
Media validation and upload for report photos and voice clips.

Uploaders know nothing about reports: they take bytes and a kind, store them
under a fresh key and hand back a stable retrieval URL. Every upload runs
under a caller-visible timeout. A timeout or storage error surfaces as
``UploadFailed``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import asyncio
import io
import logging
import uuid

from fastapi.concurrency import run_in_threadpool
from PIL import Image, UnidentifiedImageError

from .config import Settings, get_settings
from .errors import UploadFailed, ValidationError
from .models import MediaAsset, MediaKind
from .storage_s3 import S3Storage, StorageError, guess_extension
from .upload_metrics import UPLOAD_ATTEMPTS, UPLOAD_FAILURES, UPLOAD_SUCCESSES

logger = logging.getLogger("urbanpulse.media")

MAX_IMAGE_DIMENSION = 8000  # pixels
ALLOWED_MIME_TYPES = {
    MediaKind.IMAGE: {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"},
    MediaKind.AUDIO: {
        "audio/webm",
        "audio/ogg",
        "audio/mpeg",
        "audio/mp4",
        "audio/wav",
        "audio/x-wav",
    },
}


def base_content_type(content_type: str) -> str:
    # "audio/webm;codecs=opus" -> "audio/webm"
    return (content_type or "").split(";", 1)[0].strip().lower()


def validate_media(asset: MediaAsset, kind: MediaKind, settings: Optional[Settings] = None) -> None:
    """Reject unusable media before any I/O is attempted."""
    settings = settings or get_settings()
    label = "Photo" if kind == MediaKind.IMAGE else "Audio clip"

    if not asset.data:
        raise ValidationError(f"{label} is empty")

    content_type = base_content_type(asset.content_type)
    if content_type not in ALLOWED_MIME_TYPES[kind]:
        allowed = ", ".join(sorted(ALLOWED_MIME_TYPES[kind]))
        raise ValidationError(f"{label} type {content_type or 'unknown'} not allowed. Allowed: {allowed}")

    limit = settings.max_image_bytes if kind == MediaKind.IMAGE else settings.max_audio_bytes
    if len(asset.data) > limit:
        raise ValidationError(f"{label} size exceeds {limit / (1024 * 1024):.1f} MB limit")

    if kind == MediaKind.IMAGE:
        try:
            img = Image.open(io.BytesIO(asset.data))
            img.verify()
            # verify() leaves the image unusable; reopen to read dimensions
            width, height = Image.open(io.BytesIO(asset.data)).size
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise ValidationError(f"Invalid image file: {exc}") from exc
        if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
            raise ValidationError(f"Image dimensions exceed {MAX_IMAGE_DIMENSION}px")


@dataclass(frozen=True)
class UploadResult:
    url: str
    key: str


class MediaUploader:
    """Base uploader: key generation, timeout, metrics and error mapping."""

    def __init__(self, timeout: float):
        self.timeout = timeout

    async def _store(self, key: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    async def upload(self, data: bytes, kind: MediaKind, content_type: str) -> UploadResult:
        kind = MediaKind(kind)
        content_type = base_content_type(content_type)
        key = S3Storage.build_key(kind.value, str(uuid.uuid4()), guess_extension(content_type))
        UPLOAD_ATTEMPTS.labels(kind=kind.value).inc()
        try:
            url = await asyncio.wait_for(self._store(key, data, content_type), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            UPLOAD_FAILURES.labels(kind=kind.value).inc()
            logger.warning("Upload of %s timed out after %.1fs", key, self.timeout)
            raise UploadFailed(f"{kind.value.capitalize()} upload timed out") from exc
        except (StorageError, OSError) as exc:
            UPLOAD_FAILURES.labels(kind=kind.value).inc()
            logger.error("Upload of %s failed: %s", key, exc)
            raise UploadFailed(f"{kind.value.capitalize()} upload failed") from exc
        UPLOAD_SUCCESSES.labels(kind=kind.value).inc()
        logger.info("Uploaded %s (%d bytes) -> %s", key, len(data), url)
        return UploadResult(url=url, key=key)

    async def upload_asset(self, asset: MediaAsset, kind: MediaKind) -> UploadResult:
        return await self.upload(asset.data, kind, asset.content_type)


class S3MediaUploader(MediaUploader):
    def __init__(self, storage: S3Storage, timeout: float):
        super().__init__(timeout)
        self._storage = storage

    async def _store(self, key: str, data: bytes, content_type: str) -> str:
        # boto3 is blocking; keep it off the event loop
        await run_in_threadpool(self._storage.put_object, key, data, content_type)
        return self._storage.public_url(key)


class LocalMediaUploader(MediaUploader):
    """Development fallback that writes under a local directory served at /storage."""

    def __init__(self, root: Path, timeout: float, url_prefix: str = "/storage"):
        super().__init__(timeout)
        self._root = Path(root)
        self._url_prefix = url_prefix.rstrip("/")

    def _write(self, key: str, data: bytes) -> None:
        path = self._root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def _store(self, key: str, data: bytes, content_type: str) -> str:
        await run_in_threadpool(self._write, key, data)
        return f"{self._url_prefix}/{key}"


def build_uploader(settings: Optional[Settings] = None) -> MediaUploader:
    settings = settings or get_settings()
    if settings.storage_provider == "s3":
        storage = S3Storage(settings)
        storage.ensure_bucket()
        logger.info("Media storage initialized (provider=s3, bucket=%s)", settings.s3_bucket)
        return S3MediaUploader(storage, settings.upload_timeout_seconds)
    logger.info("Media storage initialized (provider=local, root=%s)", settings.local_storage_dir)
    return LocalMediaUploader(settings.local_storage_dir, settings.upload_timeout_seconds)


__all__ = [
    "MediaUploader",
    "S3MediaUploader",
    "LocalMediaUploader",
    "UploadResult",
    "validate_media",
    "build_uploader",
]
