"""
Live view management for connected viewers.

Each connected viewer holds one ViewHandle backed by a store subscription
scoped to its role. Handles are released deterministically on detach, on
session exit or on shutdown. A role change swaps the subscription in place
so the consumer keeps iterating the same handle.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from prometheus_client import Gauge
from pydantic import BaseModel, Field

from .models import Report, Role
from .report_store import ReportFilter, ReportStore, Snapshot, Subscription

logger = logging.getLogger("urbanpulse.live_views")

LIVE_VIEWS = Gauge(
    "urbanpulse_live_views",
    "Currently attached live views",
    ["role"],
)


class WebSocketEvent(BaseModel):
    """Envelope for messages pushed to WebSocket clients."""
    event_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = {}


class SnapshotEvent(WebSocketEvent):
    """Full ordered result set for a viewer, sent after every relevant change."""
    event_type: str = "snapshot"

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "SnapshotEvent":
        return cls(
            data={
                "sequence": snapshot.sequence,
                "reports": [serialize_report(r) for r in snapshot.reports],
            }
        )


def serialize_report(report: Report) -> Dict[str, Any]:
    return report.model_dump(mode="json")


def filter_for(role: Role, viewer_id: str) -> ReportFilter:
    if Role(role) == Role.ADMINISTRATOR:
        return ReportFilter.everything()
    return ReportFilter.owned_by(viewer_id)


class ViewHandle:
    """An attached live view; async-iterates snapshots until detached."""

    def __init__(self, registry: "LiveViewRegistry", role: Role, viewer_id: str, subscription: Subscription):
        self._registry = registry
        self.role = role
        self.viewer_id = viewer_id
        self._subscription = subscription
        self._detached = False

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def filter(self) -> ReportFilter:
        return self._subscription.filter

    def detach(self) -> None:
        self._registry.detach(self)

    def __aiter__(self) -> "ViewHandle":
        return self

    async def __anext__(self) -> Snapshot:
        while True:
            subscription = self._subscription
            try:
                return await subscription.__anext__()
            except StopAsyncIteration:
                # Reattached while waiting: continue on the new subscription.
                if not self._detached and self._subscription is not subscription:
                    continue
                raise


class LiveViewRegistry:
    """Tracks attached views and the subscriptions behind them."""

    def __init__(self, store: ReportStore):
        self._store = store
        self._handles: Set[ViewHandle] = set()

    def attach(self, role: Role, viewer_id: str) -> ViewHandle:
        role = Role(role)
        subscription = self._store.subscribe(filter_for(role, viewer_id))
        handle = ViewHandle(self, role, viewer_id, subscription)
        self._handles.add(handle)
        LIVE_VIEWS.labels(role=role.value).inc()
        logger.info("Live view attached: viewer_id=%s role=%s", viewer_id, role.value)
        return handle

    def detach(self, handle: ViewHandle) -> None:
        if handle._detached:
            return
        handle._detached = True
        handle._subscription.close()
        self._handles.discard(handle)
        LIVE_VIEWS.labels(role=handle.role.value).dec()
        logger.info("Live view detached: viewer_id=%s", handle.viewer_id)

    def reattach(self, handle: ViewHandle, new_role: Role, viewer_id: Optional[str] = None) -> ViewHandle:
        """Move ``handle`` to a new role, closing the old subscription first."""
        if handle._detached:
            raise RuntimeError("Cannot reattach a detached view")
        new_role = Role(new_role)
        viewer_id = viewer_id or handle.viewer_id
        new_filter = filter_for(new_role, viewer_id)

        old_role = handle.role
        if new_filter != handle.filter:
            old = handle._subscription
            old.close()
            handle._subscription = self._store.subscribe(new_filter)
        handle.viewer_id = viewer_id
        handle.role = new_role
        if old_role != new_role:
            LIVE_VIEWS.labels(role=old_role.value).dec()
            LIVE_VIEWS.labels(role=new_role.value).inc()
        logger.info("Live view reattached: viewer_id=%s role %s -> %s", viewer_id, old_role.value, new_role.value)
        return handle

    @asynccontextmanager
    async def session(self, role: Role, viewer_id: str):
        handle = self.attach(role, viewer_id)
        try:
            yield handle
        finally:
            self.detach(handle)

    def get_connection_count(self) -> int:
        return len(self._handles)

    def get_connections_by_role(self) -> Dict[str, int]:
        counts = {role.value: 0 for role in Role}
        for handle in self._handles:
            counts[handle.role.value] += 1
        return counts

    def shutdown(self) -> None:
        for handle in list(self._handles):
            self.detach(handle)


async def pump_snapshots(handle: ViewHandle, send) -> None:
    """Forward every snapshot from ``handle`` to ``send`` until detached."""
    async for snapshot in handle:
        await send(SnapshotEvent.from_snapshot(snapshot).model_dump_json())


__all__ = [
    "LiveViewRegistry",
    "ViewHandle",
    "WebSocketEvent",
    "SnapshotEvent",
    "filter_for",
    "pump_snapshots",
    "serialize_report",
]
