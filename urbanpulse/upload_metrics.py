"""Prometheus metrics shared by media upload and geocoding modules."""

from prometheus_client import Counter


UPLOAD_ATTEMPTS = Counter(
    "urbanpulse_media_upload_attempts_total",
    "Total number of media upload attempts",
    ["kind"],
)
UPLOAD_SUCCESSES = Counter(
    "urbanpulse_media_upload_success_total",
    "Total number of successful media uploads",
    ["kind"],
)
UPLOAD_FAILURES = Counter(
    "urbanpulse_media_upload_failure_total",
    "Total number of failed or timed-out media uploads",
    ["kind"],
)
GEOCODE_FALLBACKS = Counter(
    "urbanpulse_geocode_fallback_total",
    "Submissions that fell back to a coordinate string because reverse geocoding failed",
)
ORPHANED_ASSETS = Counter(
    "urbanpulse_orphaned_assets_total",
    "Uploaded assets left unreferenced because the enclosing operation failed",
)
