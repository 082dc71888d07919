"""Aggregate counts for the administrator dashboard."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable

from pydantic import BaseModel

from .models import Category, Report, ReportStatus


class ReportStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_category: Dict[str, int]
    resolution_rate: int


def summarize(reports: Iterable[Report]) -> ReportStats:
    by_status = {status.value: 0 for status in ReportStatus}
    by_category = {category.value: 0 for category in Category}
    total = 0
    for report in reports:
        total += 1
        by_status[report.status] = by_status.get(report.status, 0) + 1
        by_category[report.category] = by_category.get(report.category, 0) + 1

    rate = 0
    if total:
        percent = Decimal(by_status[ReportStatus.RESOLVED.value] * 100) / Decimal(total)
        rate = int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return ReportStats(total=total, by_status=by_status, by_category=by_category, resolution_rate=rate)
