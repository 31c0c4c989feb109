"""Prometheus metrics for DockPulse."""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Application info
app_info = Info("dockpulse_app", "DockPulse application information")

# Collector metrics
collector_ticks_total = Counter(
    "dockpulse_collector_ticks_total", "Total collector ticks completed"
)
collector_ticks_failed_total = Counter(
    "dockpulse_collector_ticks_failed_total", "Collector ticks that failed to list containers"
)
collector_sample_failures_total = Counter(
    "dockpulse_collector_sample_failures_total",
    "Per-container stats reads that failed or timed out",
    ["error_class"],
)
collector_tick_duration = Histogram(
    "dockpulse_collector_tick_duration_seconds",
    "Collector tick duration",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10],
)
containers_running = Gauge(
    "dockpulse_containers_running", "Running containers seen by the last tick"
)

# Lifecycle metrics
lifecycle_operations_total = Counter(
    "dockpulse_lifecycle_operations_total",
    "Lifecycle operations by action and outcome",
    ["action", "outcome"],
)

# Log streaming metrics
log_streams_active = Gauge("dockpulse_log_streams_active", "Open log stream sessions")


def set_app_info(version: str) -> None:
    """Publish the running version."""
    app_info.info({"version": version, "name": "DockPulse"})


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format.

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest()


def get_content_type() -> str:
    """Get Prometheus metrics content type.

    Returns:
        Content type string
    """
    return CONTENT_TYPE_LATEST
