"""Report submission, listing and lifecycle routes."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from pydantic import BaseModel

from ..auth import get_current_viewer, require_role
from ..dependencies import ReportServices, get_services, visibility_filter
from ..errors import NotFound, ValidationError
from ..live_views import serialize_report
from ..models import Coordinates, MediaAsset, ReportDraft, Role, Viewer
from ..observability import record_report_counts
from ..report_store import ReportFilter
from ..stats import ReportStats, summarize


router = APIRouter(prefix="/api/v1")


class ReportEdit(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str


class CommentRequest(BaseModel):
    text: str


async def _read_upload(upload: Optional[UploadFile]) -> Optional[MediaAsset]:
    # Browsers send an empty part with no filename when no file was chosen.
    if upload is None or not upload.filename:
        return None
    data = await upload.read()
    return MediaAsset(data=data, content_type=upload.content_type or "", filename=upload.filename)


def _coordinates(lat: Optional[float], lng: Optional[float]) -> Optional[Coordinates]:
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise ValidationError("lat and lng must be supplied together")
    return Coordinates(lat=lat, lng=lng)


@router.post("/reports", status_code=status.HTTP_201_CREATED)
async def submit_report(
    title: str = Form(...),
    description: str = Form(...),
    category: str = Form(...),
    lat: Optional[float] = Form(None),
    lng: Optional[float] = Form(None),
    photo: Optional[UploadFile] = File(None),
    audio: Optional[UploadFile] = File(None),
    viewer: Viewer = Depends(get_current_viewer),
    services: ReportServices = Depends(get_services),
) -> Dict[str, Any]:
    draft = ReportDraft(
        title=title,
        description=description,
        category=category,
        photo=await _read_upload(photo),
        audio_clip=await _read_upload(audio),
        coordinates=_coordinates(lat, lng),
    )
    report = await services.pipeline.submit(draft, viewer.viewer_id)
    return serialize_report(report)


@router.get("/reports")
async def list_reports(
    viewer: Viewer = Depends(get_current_viewer),
    services: ReportServices = Depends(get_services),
) -> List[Dict[str, Any]]:
    reports = await services.store.list_reports(visibility_filter(viewer))
    return [serialize_report(r) for r in reports]


@router.get("/reports/stats", response_model=ReportStats)
async def report_stats(
    viewer: Viewer = Depends(require_role(Role.ADMINISTRATOR)),
    services: ReportServices = Depends(get_services),
) -> ReportStats:
    reports = await services.store.list_reports(ReportFilter.everything())
    stats = summarize(reports)
    record_report_counts(stats.by_status)
    return stats


@router.get("/reports/{report_id}")
async def get_report(
    report_id: str,
    viewer: Viewer = Depends(get_current_viewer),
    services: ReportServices = Depends(get_services),
) -> Dict[str, Any]:
    report = await services.store.get(report_id)
    if not visibility_filter(viewer).matches(report):
        # Don't reveal that another owner's report exists.
        raise NotFound(f"Report {report_id} not found")
    return serialize_report(report)


@router.patch("/reports/{report_id}")
async def edit_report(
    report_id: str,
    payload: ReportEdit,
    viewer: Viewer = Depends(get_current_viewer),
    services: ReportServices = Depends(get_services),
) -> Dict[str, Any]:
    report = await services.lifecycle.edit(
        viewer,
        report_id,
        title=payload.title,
        description=payload.description,
        category=payload.category,
    )
    return serialize_report(report)


@router.patch("/reports/{report_id}/status")
async def update_status(
    report_id: str,
    payload: StatusUpdate,
    viewer: Viewer = Depends(get_current_viewer),
    services: ReportServices = Depends(get_services),
) -> Dict[str, Any]:
    report = await services.lifecycle.set_status(viewer, report_id, payload.status)
    return serialize_report(report)


@router.post("/reports/{report_id}/resolve")
async def resolve_report(
    report_id: str,
    note: str = Form(""),
    proof: Optional[UploadFile] = File(None),
    viewer: Viewer = Depends(get_current_viewer),
    services: ReportServices = Depends(get_services),
) -> Dict[str, Any]:
    report = await services.lifecycle.resolve(viewer, report_id, note, await _read_upload(proof))
    return serialize_report(report)


@router.post("/reports/{report_id}/reopen")
async def reopen_report(
    report_id: str,
    viewer: Viewer = Depends(get_current_viewer),
    services: ReportServices = Depends(get_services),
) -> Dict[str, Any]:
    report = await services.lifecycle.reopen(viewer, report_id)
    return serialize_report(report)


@router.post("/reports/{report_id}/comment")
async def comment_on_report(
    report_id: str,
    payload: CommentRequest,
    viewer: Viewer = Depends(get_current_viewer),
    services: ReportServices = Depends(get_services),
) -> Dict[str, Any]:
    report = await services.lifecycle.post_comment(viewer, report_id, payload.text)
    return serialize_report(report)


@router.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_report(
    report_id: str,
    viewer: Viewer = Depends(get_current_viewer),
    services: ReportServices = Depends(get_services),
) -> None:
    await services.lifecycle.delete(viewer, report_id)
