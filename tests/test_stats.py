from datetime import datetime, timezone

from urbanpulse.models import Report
from urbanpulse.stats import summarize


def _report(status: str, category: str = "Roads") -> Report:
    return Report(
        owner_id="citizen-1",
        title="t",
        description="d",
        category=category,
        status=status,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_summarize_counts_by_status_and_category():
    stats = summarize(
        [
            _report("resolved", "Roads"),
            _report("pending", "Roads"),
            _report("in-progress", "Sanitation"),
        ]
    )

    assert stats.total == 3
    assert stats.by_status == {"pending": 1, "in-progress": 1, "resolved": 1, "rejected": 0}
    assert stats.by_category["Roads"] == 2
    assert stats.by_category["Sanitation"] == 1
    assert stats.by_category["Vandalism"] == 0
    assert stats.resolution_rate == 33


def test_resolution_rate_rounds_half_up():
    reports = [_report("resolved")] + [_report("pending") for _ in range(7)]

    assert summarize(reports).resolution_rate == 13
    assert summarize([_report("resolved"), _report("resolved"), _report("pending")]).resolution_rate == 67


def test_empty_collection():
    stats = summarize([])

    assert stats.total == 0
    assert stats.resolution_rate == 0
    assert set(stats.by_status.values()) == {0}
