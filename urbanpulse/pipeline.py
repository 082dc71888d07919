"""
Submission pipeline: geocode, upload media, persist.

The steps are sequential but not transactional across stores. Geocoding is
best-effort. Media uploads are fatal. Persistence failures are fatal and do
not roll back assets that were already uploaded; those are logged as orphans.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from .errors import ResolveFailed, UploadFailed, ValidationError
from .geocode import GeocodeResolver, format_coordinates
from .media import MediaUploader, UploadResult, validate_media
from .models import Category, Coordinates, MediaKind, Report, ReportDraft
from .report_store import ReportStore
from .upload_metrics import GEOCODE_FALLBACKS, ORPHANED_ASSETS

logger = logging.getLogger("urbanpulse.pipeline")


def require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} must not be empty")
    return text


def require_category(value: Optional[str]) -> str:
    try:
        return Category(value).value
    except ValueError:
        allowed = ", ".join(c.value for c in Category)
        raise ValidationError(f"Unknown category {value!r}. Allowed: {allowed}") from None


def validate_coordinates(coords: Coordinates) -> None:
    if not (-90.0 <= coords.lat <= 90.0) or not (-180.0 <= coords.lng <= 180.0):
        raise ValidationError(f"Coordinates out of range: {coords.lat}, {coords.lng}")


class SubmissionPipeline:
    def __init__(self, store: ReportStore, uploader: MediaUploader, resolver: GeocodeResolver):
        self.store = store
        self.uploader = uploader
        self.resolver = resolver

    async def resolve_address(self, coords: Coordinates) -> str:
        try:
            return await self.resolver.resolve(coords.lat, coords.lng)
        except ResolveFailed as exc:
            GEOCODE_FALLBACKS.inc()
            fallback = format_coordinates(coords.lat, coords.lng)
            logger.warning("Geocoding failed (%s); using coordinates %s", exc, fallback)
            return fallback

    async def _upload_all(self, draft: ReportDraft) -> Dict[MediaKind, UploadResult]:
        jobs: List[Tuple[MediaKind, object]] = []
        if draft.photo is not None:
            jobs.append((MediaKind.IMAGE, self.uploader.upload_asset(draft.photo, MediaKind.IMAGE)))
        if draft.audio_clip is not None:
            jobs.append((MediaKind.AUDIO, self.uploader.upload_asset(draft.audio_clip, MediaKind.AUDIO)))
        if not jobs:
            return {}

        # Run both uploads to completion so a failure in one never cancels the
        # other mid-transfer; only then decide.
        outcomes = await asyncio.gather(*(job for _, job in jobs), return_exceptions=True)
        uploaded: Dict[MediaKind, UploadResult] = {}
        failure: Optional[BaseException] = None
        for (kind, _), outcome in zip(jobs, outcomes):
            if isinstance(outcome, UploadResult):
                uploaded[kind] = outcome
            elif failure is None:
                failure = outcome
        if failure is not None:
            self._log_orphans(uploaded.values(), "submission upload failed")
            if isinstance(failure, UploadFailed):
                raise failure
            raise UploadFailed(f"Upload failed: {failure}") from failure
        return uploaded

    @staticmethod
    def _log_orphans(results, reason: str) -> None:
        for result in results:
            ORPHANED_ASSETS.inc()
            logger.warning("Orphaned asset %s (%s)", result.url, reason)

    async def submit(self, draft: ReportDraft, owner_id: str) -> Report:
        # Fail fast: everything checkable locally is checked before any I/O.
        owner_id = require_text(owner_id, "owner_id")
        title = require_text(draft.title, "title")
        description = require_text(draft.description, "description")
        category = require_category(draft.category)
        if draft.coordinates is not None:
            validate_coordinates(draft.coordinates)
        if draft.photo is not None:
            validate_media(draft.photo, MediaKind.IMAGE)
        if draft.audio_clip is not None:
            validate_media(draft.audio_clip, MediaKind.AUDIO)

        fields = {
            "owner_id": owner_id,
            "title": title,
            "description": description,
            "category": category,
            "image_url": "",
            "audio_url": "",
        }

        if draft.coordinates is not None:
            fields["lat"] = draft.coordinates.lat
            fields["lng"] = draft.coordinates.lng
            fields["address"] = await self.resolve_address(draft.coordinates)

        uploaded = await self._upload_all(draft)
        if MediaKind.IMAGE in uploaded:
            fields["image_url"] = uploaded[MediaKind.IMAGE].url
        if MediaKind.AUDIO in uploaded:
            fields["audio_url"] = uploaded[MediaKind.AUDIO].url

        try:
            report = await self.store.create(fields)
        except Exception:
            self._log_orphans(uploaded.values(), "report could not be persisted")
            raise

        logger.info(
            "Report %s submitted by %s (image=%s audio=%s located=%s)",
            report.id,
            owner_id,
            bool(report.image_url),
            bool(report.audio_url),
            report.lat is not None,
        )
        return report


__all__ = ["SubmissionPipeline", "require_text", "require_category"]
