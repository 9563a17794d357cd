"""Prometheus metrics for the upload service.

Tracks HTTP traffic plus per-stage timing and outcomes of the upload
pipeline.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
)

REGISTRY = CollectorRegistry()


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "tubely_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Upload Pipeline Metrics
# ============================================
VIDEO_UPLOADS_TOTAL = Counter(
    "video_uploads_total",
    "Video uploads by outcome",
    ["outcome"],
    registry=REGISTRY,
)

VIDEO_UPLOAD_STAGE_DURATION_SECONDS = Histogram(
    "video_upload_stage_duration_seconds",
    "Duration of each upload pipeline stage in seconds",
    ["stage"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 600.0],
    registry=REGISTRY,
)

VIDEO_UPLOAD_BYTES = Histogram(
    "video_upload_bytes",
    "Size of staged uploads in bytes",
    buckets=[1 << 20, 10 << 20, 50 << 20, 100 << 20, 250 << 20, 500 << 20, 1 << 30],
    registry=REGISTRY,
)

VIDEO_ORIENTATION_TOTAL = Counter(
    "video_orientation_total",
    "Uploaded videos by detected orientation",
    ["orientation"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get Prometheus content type."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metric."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
