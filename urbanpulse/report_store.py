"""
Authoritative, persistent collection of reports with live query subscriptions.

All mutations and snapshot reads go through one asyncio lock, so every
subscriber observes mutations in commit order. Writes are shielded from
caller cancellation: once started they run to completion or failure even if
the requesting viewer goes away.

Subscriptions do not receive pushed rows. A mutation marks each matching
subscription dirty, and the subscriber pulls a fresh ordered snapshot on its
own task. The writer never waits on a slow viewer, and intermediate states
may coalesce into one snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from .errors import InvalidState, NotFound, PersistenceFailed, ValidationError
from .models import Report, ReportStatus

logger = logging.getLogger("urbanpulse.report_store")

IMMUTABLE_FIELDS = frozenset({"id", "owner_id", "created_at", "version"})
CREATE_FIELDS = frozenset(
    {"owner_id", "title", "description", "category", "image_url", "audio_url", "lat", "lng", "address"}
)
TIMESTAMP_FIELDS = frozenset({"updated_at", "last_updated", "resolved_at"})
MUTABLE_FIELDS = frozenset(Report.model_fields) - IMMUTABLE_FIELDS

Guard = Callable[[Report], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReportFilter:
    """The only two visibility shapes: everything, or one owner's reports."""

    owner_id: Optional[str] = None

    @classmethod
    def everything(cls) -> "ReportFilter":
        return cls()

    @classmethod
    def owned_by(cls, owner_id: str) -> "ReportFilter":
        if not owner_id:
            raise ValidationError("owner_id is required for an owner filter")
        return cls(owner_id=owner_id)

    def matches_owner(self, owner_id: str) -> bool:
        return self.owner_id is None or self.owner_id == owner_id

    def matches(self, report: Report) -> bool:
        return self.matches_owner(report.owner_id)


@dataclass(frozen=True)
class Snapshot:
    sequence: int
    reports: Tuple[Report, ...]

    @property
    def ids(self) -> list[str]:
        return [r.id for r in self.reports]


class Subscription:
    """Live, ordered view over the reports matching one filter."""

    def __init__(self, store: "ReportStore", report_filter: ReportFilter):
        self._store = store
        self.filter = report_filter
        self._dirty = asyncio.Event()
        self._dirty.set()  # first iteration yields the current state
        self._closed = False
        self._last_sequence = -1

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self) -> None:
        if not self._closed:
            self._dirty.set()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._dirty.set()
        self._store._discard(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Snapshot:
        while True:
            if self._closed:
                raise StopAsyncIteration
            await self._dirty.wait()
            if self._closed:
                raise StopAsyncIteration
            self._dirty.clear()
            snapshot = await self._store.snapshot(self.filter)
            # Closed while the read was in flight: the result may belong to a
            # scope this consumer no longer has.
            if self._closed:
                raise StopAsyncIteration
            # Already delivered this state (notify raced with our read).
            if snapshot.sequence <= self._last_sequence:
                continue
            self._last_sequence = snapshot.sequence
            return snapshot

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class ReportStore:
    def __init__(self, session_factory, clock: Optional[Callable[[], datetime]] = None):
        self._session_factory = session_factory
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()
        self._subscriptions: Set[Subscription] = set()
        self._sequence = 0
        self._last_timestamp: Optional[datetime] = None

    # ---------- helpers ----------
    def _now(self) -> datetime:
        """Server timestamp, strictly increasing for this store."""
        now = self._clock()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _discard(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    def _fan_out(self, owner_id: str) -> None:
        self._sequence += 1
        for subscription in list(self._subscriptions):
            if subscription.filter.matches_owner(owner_id):
                subscription.notify()

    async def _write(self, operation: Callable[[], Awaitable[Report]]) -> Report:
        async def locked() -> Report:
            async with self._lock:
                return await operation()

        # shield: a cancelled caller must not abandon a half-finished write
        return await asyncio.shield(locked())

    @staticmethod
    def _ordered(statement):
        return statement.order_by(Report.created_at.desc(), Report.id.asc())

    # ---------- queries ----------
    async def get(self, report_id: str) -> Report:
        try:
            async with self._session_factory() as session:
                report = await session.get(Report, report_id)
        except SQLAlchemyError as exc:
            logger.error("Loading report %s failed: %s", report_id, exc)
            raise PersistenceFailed(f"Could not load report {report_id}") from exc
        if report is None:
            raise NotFound(f"Report {report_id} not found")
        return report

    async def _query(self, report_filter: ReportFilter) -> list[Report]:
        statement = select(Report)
        if report_filter.owner_id is not None:
            statement = statement.where(Report.owner_id == report_filter.owner_id)
        statement = self._ordered(statement)
        try:
            async with self._session_factory() as session:
                result = await session.exec(statement)
                return list(result.all())
        except SQLAlchemyError as exc:
            logger.error("Report query failed: %s", exc)
            raise PersistenceFailed("Could not query reports") from exc

    async def list_reports(self, report_filter: ReportFilter) -> list[Report]:
        return await self._query(report_filter)

    async def count_by_status(self) -> Dict[str, int]:
        statement = select(Report.status, func.count()).group_by(Report.status)
        try:
            async with self._session_factory() as session:
                result = await session.exec(statement)
                return {status: count for status, count in result.all()}
        except SQLAlchemyError as exc:
            logger.error("Report count failed: %s", exc)
            raise PersistenceFailed("Could not count reports") from exc

    async def snapshot(self, report_filter: ReportFilter) -> Snapshot:
        async with self._lock:
            reports = await self._query(report_filter)
            return Snapshot(sequence=self._sequence, reports=tuple(reports))

    def subscribe(self, report_filter: ReportFilter) -> Subscription:
        subscription = Subscription(self, report_filter)
        self._subscriptions.add(subscription)
        return subscription

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    # ---------- mutations ----------
    async def create(self, fields: Dict[str, Any]) -> Report:
        unknown = set(fields) - CREATE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot set {', '.join(sorted(unknown))} on create")
        if not fields.get("owner_id"):
            raise ValidationError("owner_id is required")

        async def operation() -> Report:
            report = Report(
                **fields,
                status=ReportStatus.PENDING.value,
                created_at=self._now(),
                version=1,
            )
            try:
                async with self._session_factory() as session:
                    session.add(report)
                    await session.commit()
                    await session.refresh(report)
            except SQLAlchemyError as exc:
                logger.error("Creating report failed: %s", exc)
                raise PersistenceFailed("Could not create report") from exc
            self._fan_out(report.owner_id)
            logger.info("Created report %s for owner %s", report.id, report.owner_id)
            return report

        return await self._write(operation)

    async def update(
        self,
        report_id: str,
        fields: Dict[str, Any],
        stamp: Iterable[str] = ("updated_at",),
        guard: Optional[Guard] = None,
        expected_version: Optional[int] = None,
    ) -> Report:
        """Merge ``fields`` into the report. Absent fields are left untouched.

        ``stamp`` names timestamp fields to set to server time. ``guard`` runs
        against the freshly loaded record inside the write lock and may raise
        to veto the write. ``expected_version`` adds an optimistic check.
        """
        stamp = tuple(stamp)
        bad = (set(fields) - MUTABLE_FIELDS) | (set(stamp) - TIMESTAMP_FIELDS)
        if bad:
            raise ValidationError(f"Cannot update {', '.join(sorted(bad))}")

        async def operation() -> Report:
            try:
                async with self._session_factory() as session:
                    report = await session.get(Report, report_id)
                    if report is None:
                        raise NotFound(f"Report {report_id} not found")
                    if expected_version is not None and report.version != expected_version:
                        raise InvalidState(
                            f"Report {report_id} changed concurrently "
                            f"(expected version {expected_version}, found {report.version})"
                        )
                    if guard is not None:
                        guard(report)
                    for key, value in fields.items():
                        setattr(report, key, value)
                    now = self._now()
                    for key in stamp:
                        setattr(report, key, now)
                    report.version += 1
                    session.add(report)
                    await session.commit()
                    await session.refresh(report)
            except SQLAlchemyError as exc:
                logger.error("Updating report %s failed: %s", report_id, exc)
                raise PersistenceFailed(f"Could not update report {report_id}") from exc
            self._fan_out(report.owner_id)
            logger.info("Updated report %s fields=%s version=%s", report_id, sorted(fields), report.version)
            return report

        return await self._write(operation)

    async def delete(self, report_id: str, guard: Optional[Guard] = None) -> Report:
        """Hard-remove a report and return the record as it was."""

        async def operation() -> Report:
            try:
                async with self._session_factory() as session:
                    report = await session.get(Report, report_id)
                    if report is None:
                        raise NotFound(f"Report {report_id} not found")
                    if guard is not None:
                        guard(report)
                    await session.delete(report)
                    await session.commit()
            except SQLAlchemyError as exc:
                logger.error("Deleting report %s failed: %s", report_id, exc)
                raise PersistenceFailed(f"Could not delete report {report_id}") from exc
            self._fan_out(report.owner_id)
            logger.info("Deleted report %s", report_id)
            return report

        return await self._write(operation)

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()


__all__ = ["ReportStore", "ReportFilter", "Snapshot", "Subscription"]
