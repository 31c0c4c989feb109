"""Data model for DockPulse."""

from app.models.launch import (
    EnvironmentVariable,
    ImageRuntimeDefaults,
    LaunchSpec,
    PortMapping,
)
from app.models.lifecycle import LifecycleOutcome
from app.models.metrics import (
    ChartSeries,
    ContainerIdentity,
    DerivedMetricSample,
    HistoryEntry,
    MetricsSnapshot,
    RawUsageSnapshot,
    SystemSummary,
)
from app.models.runtime import (
    ContainerDetails,
    ContainerSummary,
    ImageDetails,
    ImageSummary,
    SystemInfo,
)

__all__ = [
    "ChartSeries",
    "ContainerDetails",
    "ContainerIdentity",
    "ContainerSummary",
    "DerivedMetricSample",
    "EnvironmentVariable",
    "HistoryEntry",
    "ImageDetails",
    "ImageRuntimeDefaults",
    "ImageSummary",
    "LaunchSpec",
    "LifecycleOutcome",
    "MetricsSnapshot",
    "PortMapping",
    "RawUsageSnapshot",
    "SystemInfo",
    "SystemSummary",
]
