"""Observability module for logging, metrics, and health reporting."""

import logging
import json
import sys
import time
from typing import Any, Dict
from datetime import datetime, timezone

from fastapi import Request, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

from .config import get_settings
from .models import ReportStatus

# Prometheus metrics
http_requests_total = Counter(
    'urbanpulse_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'urbanpulse_http_request_duration_seconds',
    'Duration of HTTP requests in seconds',
    ['method', 'endpoint']
)

reports_by_status = Gauge(
    'urbanpulse_reports_total',
    'Number of reports currently in each status',
    ['status']
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def setup_logging() -> None:
    """Configure structured JSON logging on stdout."""
    level = getattr(logging, get_settings().log_level, logging.INFO)
    logging.basicConfig(level=level, format='%(message)s', handlers=[logging.StreamHandler(sys.stdout)])

    for handler in logging.getLogger().handlers:
        handler.setFormatter(JSONFormatter())

    logging.getLogger("urbanpulse").setLevel(level)
    logging.getLogger("urbanpulse.observability").info("Structured JSON logging configured")


def setup_metrics_middleware(app):
    """Add Prometheus metrics middleware to FastAPI app."""
    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        # Label by route template so report ids don't explode cardinality.
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        http_requests_total.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
        http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(duration)
        return response


def record_report_counts(counts: Dict[str, int]) -> None:
    """Set the per-status gauge; statuses absent from ``counts`` read as zero."""
    merged = {status.value: 0 for status in ReportStatus}
    merged.update(counts)
    for status, count in merged.items():
        reports_by_status.labels(status=status).set(count)


def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def get_health_check(live_views) -> Dict[str, Any]:
    """Health payload including attached live view counts."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "live_views": live_views.get_connection_count(),
        "live_views_by_role": live_views.get_connections_by_role(),
    }
