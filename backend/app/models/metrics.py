"""Metrics data model: raw runtime counters and derived samples."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class ContainerIdentity:
    """Stable identity of a container; ``id`` is the join key everywhere."""

    id: str
    name: str


@dataclass(frozen=True)
class RawUsageSnapshot:
    """Point-in-time cumulative counters for one container.

    Attributes:
        container: Container the counters belong to
        timestamp: Wall-clock time of the read (UTC)
        monotonic: Monotonic clock reading taken when the read completed;
            only differences between two snapshots are meaningful
        cpu_total_ns: Cumulative CPU time consumed by the container
        online_cpus: Number of CPUs visible to the container (host core count)
        memory_bytes: Memory working set (usage minus inactive file cache)
        memory_limit_bytes: Memory limit, 0 when unknown
        network_rx_bytes: Cumulative bytes received over all interfaces
        network_tx_bytes: Cumulative bytes sent over all interfaces
        block_read_bytes: Cumulative block device bytes read
        block_write_bytes: Cumulative block device bytes written
        pids: Current process count
    """

    container: ContainerIdentity
    timestamp: datetime
    monotonic: float
    cpu_total_ns: int
    online_cpus: int
    memory_bytes: int
    memory_limit_bytes: int
    network_rx_bytes: int = 0
    network_tx_bytes: int = 0
    block_read_bytes: int = 0
    block_write_bytes: int = 0
    pids: int = 0


@dataclass(frozen=True)
class DerivedMetricSample:
    """Metrics record for one container in one tick.

    ``cpu_percent`` is a rate derived from two consecutive snapshots. Network
    and block I/O fields are the raw cumulative counters passed through.
    """

    container: ContainerIdentity
    timestamp: datetime
    cpu_percent: float
    memory_mb: float
    memory_limit_mb: float
    memory_percent: Optional[float]
    network_rx_bytes: int
    network_tx_bytes: int
    block_read_bytes: int
    block_write_bytes: int
    pids: int

    def to_dict(self) -> dict:
        return {
            "container_id": self.container.id,
            "container_name": self.container.name,
            "timestamp": self.timestamp.isoformat(),
            "cpu_usage_percent": self.cpu_percent,
            "memory_usage_mb": self.memory_mb,
            "memory_limit_mb": self.memory_limit_mb,
            "memory_usage_percent": self.memory_percent,
            "network_rx_bytes": self.network_rx_bytes,
            "network_tx_bytes": self.network_tx_bytes,
            "block_read_bytes": self.block_read_bytes,
            "block_write_bytes": self.block_write_bytes,
            "pids": self.pids,
        }


@dataclass(frozen=True)
class HistoryEntry:
    """All samples collected by one tick."""

    timestamp: datetime
    samples: tuple[DerivedMetricSample, ...] = ()

    def sample_for(self, container_id: str) -> Optional[DerivedMetricSample]:
        for sample in self.samples:
            if sample.container.id == container_id:
                return sample
        return None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "containers": [s.to_dict() for s in self.samples],
        }


@dataclass(frozen=True)
class SystemSummary:
    """Host-level summary from the latest tick (not part of history)."""

    timestamp: datetime
    total_containers: int
    running_containers: int
    total_images: int
    docker_version: str

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "total_containers": self.total_containers,
            "running_containers": self.running_containers,
            "total_images": self.total_images,
            "docker_version": self.docker_version,
        }


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable read of the collector state handed to callers."""

    system: Optional[SystemSummary]
    containers: tuple[DerivedMetricSample, ...]
    history: tuple[HistoryEntry, ...]
    tick_count: int = 0
    last_error: Optional[str] = None
    last_tick_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "system": self.system.to_dict() if self.system else None,
            "containers": [s.to_dict() for s in self.containers],
            "history": [entry.to_dict() for entry in self.history],
            "tick_count": self.tick_count,
            "last_error": self.last_error,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
        }


@dataclass(frozen=True)
class ChartSeries:
    """One container's aligned series for the dashboard charts."""

    container: ContainerIdentity
    cpu_percent: tuple[float, ...] = field(default_factory=tuple)
    memory_mb: tuple[float, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "container_id": self.container.id,
            "container_name": self.container.name,
            "cpu_usage_percent": list(self.cpu_percent),
            "memory_usage_mb": list(self.memory_mb),
        }
