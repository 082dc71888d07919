"""
Report status state machine and the privileged mutation workflows.

Any status may move to any other, but only an administrator may move it.
Preconditions are checked twice. The first check runs before any upload so
callers fail fast. The second runs as a guard inside the store's write lock,
so a concurrent change between the read and the write cannot slip past it.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from .errors import InvalidState, ValidationError
from .media import MediaUploader, validate_media
from .models import MediaAsset, MediaKind, Report, ReportStatus, Viewer
from .pipeline import require_category, require_text
from .report_store import ReportStore
from .upload_metrics import ORPHANED_ASSETS

logger = logging.getLogger("urbanpulse.lifecycle")


def require_admin(actor: Viewer, action: str) -> None:
    if not actor.is_admin:
        raise ValidationError(f"Only an administrator may {action}", permission=True)


def require_status(value: str) -> ReportStatus:
    try:
        return ReportStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in ReportStatus)
        raise ValidationError(f"Invalid status {value!r}. Allowed: {allowed}") from None


def _owner_guard(actor: Viewer, action: str, done: str):
    def guard(report: Report) -> None:
        if report.owner_id != actor.viewer_id:
            raise ValidationError(f"Only the report's owner may {action} it", permission=True)
        if report.status != ReportStatus.PENDING.value:
            raise InvalidState(
                f"Report can only be {done} while pending (current status: {report.status})"
            )

    return guard


def _resolvable_guard(note: str):
    def guard(report: Report) -> None:
        if report.status == ReportStatus.RESOLVED.value and report.admin_resolution_note != note:
            raise InvalidState("Report is already resolved; reopen it before changing the resolution")

    return guard


def _has_resolution_note(report: Report) -> None:
    if not (report.admin_resolution_note or "").strip():
        raise ValidationError("A resolution note is required before marking a report resolved")


class LifecycleController:
    def __init__(self, store: ReportStore, uploader: MediaUploader):
        self.store = store
        self.uploader = uploader

    async def set_status(self, actor: Viewer, report_id: str, new_status: str) -> Report:
        require_admin(actor, "change a report's status")
        status = require_status(new_status)

        def guard(report: Report) -> None:
            if status == ReportStatus.RESOLVED:
                _has_resolution_note(report)

        # Same status again is a no-op apart from refreshing updated_at.
        report = await self.store.update(report_id, {"status": status.value}, stamp=("updated_at",), guard=guard)
        logger.info("Report %s status -> %s by %s", report_id, status.value, actor.viewer_id)
        return report

    async def resolve(
        self,
        actor: Viewer,
        report_id: str,
        note: Optional[str],
        proof_photo: Optional[MediaAsset] = None,
    ) -> Report:
        require_admin(actor, "resolve a report")
        note = require_text(note, "Resolution note")
        if proof_photo is not None:
            validate_media(proof_photo, MediaKind.IMAGE)

        current = await self.store.get(report_id)
        if current.status == ReportStatus.RESOLVED.value:
            if current.admin_resolution_note == note:
                # Retried resolve: already applied, nothing to upload or write.
                return current
            _resolvable_guard(note)(current)

        resolution_image_url = ""
        if proof_photo is not None:
            result = await self.uploader.upload_asset(proof_photo, MediaKind.IMAGE)
            resolution_image_url = result.url

        fields = {
            "status": ReportStatus.RESOLVED.value,
            "admin_resolution_note": note,
            "resolution_image_url": resolution_image_url,
        }
        try:
            report = await self.store.update(
                report_id,
                fields,
                stamp=("resolved_at", "updated_at"),
                guard=_resolvable_guard(note),
            )
        except Exception:
            if resolution_image_url:
                ORPHANED_ASSETS.inc()
                logger.warning("Orphaned resolution proof %s for report %s", resolution_image_url, report_id)
            raise
        logger.info("Report %s resolved by %s", report_id, actor.viewer_id)
        return report

    async def reopen(self, actor: Viewer, report_id: str) -> Report:
        require_admin(actor, "reopen a report")

        def guard(report: Report) -> None:
            if report.status != ReportStatus.RESOLVED.value:
                raise InvalidState(f"Only resolved reports can be reopened (current status: {report.status})")

        fields = {
            "status": ReportStatus.IN_PROGRESS.value,
            "admin_resolution_note": None,
            "resolution_image_url": None,
            "resolved_at": None,
        }
        report = await self.store.update(report_id, fields, stamp=("updated_at",), guard=guard)
        logger.info("Report %s reopened by %s", report_id, actor.viewer_id)
        return report

    async def post_comment(self, actor: Viewer, report_id: str, text: Optional[str]) -> Report:
        require_admin(actor, "comment on a report")
        text = require_text(text, "Comment")
        return await self.store.update(report_id, {"admin_update": text}, stamp=("last_updated",))

    async def edit(
        self,
        actor: Viewer,
        report_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Report:
        if actor.is_admin:
            raise ValidationError("Only the owning citizen may edit a report", permission=True)

        fields: Dict[str, str] = {}
        if title is not None:
            fields["title"] = require_text(title, "title")
        if description is not None:
            fields["description"] = require_text(description, "description")
        if category is not None:
            fields["category"] = require_category(category)
        if not fields:
            raise ValidationError("Nothing to edit")

        guard = _owner_guard(actor, "edit", "edited")
        report = await self.store.update(report_id, fields, stamp=("updated_at",), guard=guard)
        logger.info("Report %s edited by owner (%s)", report_id, ", ".join(sorted(fields)))
        return report

    async def delete(self, actor: Viewer, report_id: str) -> Report:
        guard = None if actor.is_admin else _owner_guard(actor, "delete", "deleted")
        report = await self.store.delete(report_id, guard=guard)
        logger.info("Report %s deleted by %s (%s)", report_id, actor.viewer_id, actor.role.value)
        return report


__all__ = ["LifecycleController", "require_admin"]
