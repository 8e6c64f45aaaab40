"""
Prometheus metrics collection for mediaboard.

This module provides:
- Application metrics (requests, response times)
- Media pipeline metrics (previews, thumbnails, artifact sizes)
- Toolchain metrics (ffmpeg/ffprobe/gifski invocations, encoder selection)
- Artifact lifecycle metrics (purged files)
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    Info,
    generate_latest,
)

from ..core.config import settings


class MetricsCollector:
    """Central metrics collector for the application."""

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics collector."""
        self.registry = registry or CollectorRegistry()
        self._setup_metrics()

    def _setup_metrics(self):
        """Initialize all application metrics."""

        # Application info
        self.app_info = Info(
            'mediaboard_info',
            'Application information',
            registry=self.registry
        )
        self.app_info.info({
            'version': settings.app.version,
            'environment': settings.app.environment,
            'name': settings.app.app_name
        })

        # HTTP request metrics
        self.http_requests_total = Counter(
            'mediaboard_http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status_code'],
            registry=self.registry
        )

        self.http_request_duration = Histogram(
            'mediaboard_http_request_duration_seconds',
            'HTTP request duration in seconds',
            ['method', 'endpoint'],
            buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0],
            registry=self.registry
        )

        # Media pipeline metrics
        self.media_processed_total = Counter(
            'mediaboard_media_processed_total',
            'Total media pipeline stages executed',
            ['media_class', 'stage', 'success'],
            registry=self.registry
        )

        self.media_processing_duration = Histogram(
            'mediaboard_media_processing_duration_seconds',
            'Media pipeline stage duration in seconds',
            ['media_class', 'stage'],
            buckets=[0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
            registry=self.registry
        )

        self.artifact_size = Histogram(
            'mediaboard_artifact_size_bytes',
            'Size of stored artifacts in bytes',
            ['media_class', 'artifact'],
            buckets=[1024, 16384, 131072, 1048576, 8388608, 67108864, 536870912],
            registry=self.registry
        )

        # Toolchain metrics
        self.toolchain_invocations_total = Counter(
            'mediaboard_toolchain_invocations_total',
            'Total child process invocations',
            ['tool', 'status'],
            registry=self.registry
        )

        self.toolchain_duration = Histogram(
            'mediaboard_toolchain_duration_seconds',
            'Child process wall time in seconds',
            ['tool'],
            buckets=[0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
            registry=self.registry
        )

        self.encoder_selected = Info(
            'mediaboard_encoder_selected',
            'Encoder implementation chosen per codec family',
            ['codec_family'],
            registry=self.registry
        )

        # Lifecycle metrics
        self.artifacts_purged_total = Counter(
            'mediaboard_artifacts_purged_total',
            'Total artifact files removed',
            ['folder', 'status'],
            registry=self.registry
        )

    # HTTP request tracking methods
    def track_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Track HTTP request metrics."""
        self.http_requests_total.labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).inc()

        self.http_request_duration.labels(
            method=method, endpoint=endpoint
        ).observe(duration)

    # Media pipeline methods
    def track_media_stage(self, media_class: str, stage: str, success: bool, duration: float):
        """Track a single pipeline stage (preview, thumbnails, upload)."""
        success_str = "success" if success else "failure"

        self.media_processed_total.labels(
            media_class=media_class, stage=stage, success=success_str
        ).inc()

        self.media_processing_duration.labels(
            media_class=media_class, stage=stage
        ).observe(duration)

    def track_artifact_size(self, media_class: str, artifact: str, size: int):
        """Track stored artifact size."""
        if size > 0:
            self.artifact_size.labels(media_class=media_class, artifact=artifact).observe(size)

    # Toolchain methods
    def track_toolchain_call(self, tool: str, status: str, duration: float):
        """Track a child process invocation."""
        self.toolchain_invocations_total.labels(tool=tool, status=status).inc()
        self.toolchain_duration.labels(tool=tool).observe(duration)

    def track_encoder_selected(self, codec_family: str, implementation: str):
        """Record which encoder won for a codec family."""
        self.encoder_selected.labels(codec_family=codec_family).info({'implementation': implementation})

    # Lifecycle methods
    def track_artifact_purged(self, folder: str, success: bool):
        """Track a single purge attempt."""
        self.artifacts_purged_total.labels(
            folder=folder, status="deleted" if success else "failed"
        ).inc()

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus format."""
        return generate_latest(self.registry)


# Global metrics collector
metrics = MetricsCollector()


# Metrics endpoint for Prometheus scraping
def get_metrics_response():
    """Get metrics in format suitable for HTTP response."""
    return metrics.get_metrics(), {"Content-Type": CONTENT_TYPE_LATEST}


def get_test_metrics() -> MetricsCollector:
    """Get metrics collector configured for testing."""
    test_registry = CollectorRegistry()
    return MetricsCollector(test_registry)
