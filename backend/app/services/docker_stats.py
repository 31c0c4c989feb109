"""Docker stats parsing for raw container usage counters."""

import logging
import time
from datetime import UTC, datetime
from typing import Any, Dict, Optional, Tuple

from app.models.metrics import ContainerIdentity, RawUsageSnapshot

logger = logging.getLogger(__name__)


class DockerStatsParser:
    """Convert a one-shot Docker stats payload into a RawUsageSnapshot.

    The payload is the JSON document returned by the Engine API
    ``GET /containers/{id}/stats?stream=false``. Only the cumulative counters
    are read; the ``precpu_stats`` block is ignored because rates are derived
    from our own consecutive samples.
    """

    @staticmethod
    def parse_snapshot(
        container: ContainerIdentity,
        payload: Dict[str, Any],
        monotonic: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> RawUsageSnapshot:
        """Parse a stats payload.

        Args:
            container: Identity of the sampled container
            payload: Decoded stats JSON
            monotonic: Monotonic read time (defaults to now)
            timestamp: Wall-clock read time (defaults to now, UTC)

        Returns:
            Immutable snapshot of the cumulative counters
        """
        cpu_stats = DockerStatsParser._section(payload, "cpu_stats")
        cpu_usage = DockerStatsParser._section(cpu_stats, "cpu_usage")
        memory_stats = DockerStatsParser._section(payload, "memory_stats")
        pids_stats = DockerStatsParser._section(payload, "pids_stats")

        rx_bytes, tx_bytes = DockerStatsParser._sum_network(payload.get("networks"))
        read_bytes, write_bytes = DockerStatsParser._sum_block_io(
            payload.get("blkio_stats")
        )

        return RawUsageSnapshot(
            container=container,
            timestamp=timestamp or datetime.now(UTC),
            monotonic=time.monotonic() if monotonic is None else monotonic,
            cpu_total_ns=DockerStatsParser._int(cpu_usage.get("total_usage")),
            online_cpus=DockerStatsParser._online_cpus(cpu_stats, cpu_usage),
            memory_bytes=DockerStatsParser._working_set(memory_stats),
            memory_limit_bytes=DockerStatsParser._int(memory_stats.get("limit")),
            network_rx_bytes=rx_bytes,
            network_tx_bytes=tx_bytes,
            block_read_bytes=read_bytes,
            block_write_bytes=write_bytes,
            pids=DockerStatsParser._int(pids_stats.get("current")),
        )

    @staticmethod
    def _section(data: Any, key: str) -> Dict[str, Any]:
        value = data.get(key) if isinstance(data, dict) else None
        return value if isinstance(value, dict) else {}

    @staticmethod
    def _int(value: Any) -> int:
        """Coerce a counter to a non-negative int, 0 when missing or garbage."""
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return 0

    @staticmethod
    def _online_cpus(cpu_stats: Dict[str, Any], cpu_usage: Dict[str, Any]) -> int:
        """Host core count, falling back to the per-cpu list and then 1."""
        online = DockerStatsParser._int(cpu_stats.get("online_cpus"))
        if online > 0:
            return online
        percpu = cpu_usage.get("percpu_usage")
        if isinstance(percpu, list) and percpu:
            return len(percpu)
        return 1

    @staticmethod
    def _working_set(memory_stats: Dict[str, Any]) -> int:
        """Memory usage minus inactive page cache, as `docker stats` reports it.

        cgroup v2 exposes ``inactive_file``; cgroup v1 exposes
        ``total_inactive_file``.
        """
        usage = DockerStatsParser._int(memory_stats.get("usage"))
        details = DockerStatsParser._section(memory_stats, "stats")
        if "inactive_file" in details:
            cache = DockerStatsParser._int(details.get("inactive_file"))
        else:
            cache = DockerStatsParser._int(details.get("total_inactive_file"))
        if cache > usage:
            return usage
        return usage - cache

    @staticmethod
    def _sum_network(networks: Any) -> Tuple[int, int]:
        """Sum cumulative rx/tx bytes over every interface."""
        if not isinstance(networks, dict):
            return 0, 0
        rx_total = 0
        tx_total = 0
        for iface in networks.values():
            if not isinstance(iface, dict):
                continue
            rx_total += DockerStatsParser._int(iface.get("rx_bytes"))
            tx_total += DockerStatsParser._int(iface.get("tx_bytes"))
        return rx_total, tx_total

    @staticmethod
    def _sum_block_io(blkio_stats: Any) -> Tuple[int, int]:
        """Sum cumulative block read/write bytes over every device."""
        rows = (
            blkio_stats.get("io_service_bytes_recursive")
            if isinstance(blkio_stats, dict)
            else None
        )
        if not isinstance(rows, list):
            # cgroup v2 hosts without io accounting report null here
            return 0, 0
        read_total = 0
        write_total = 0
        for row in rows:
            if not isinstance(row, dict):
                continue
            op = str(row.get("op") or "").lower()
            if op == "read":
                read_total += DockerStatsParser._int(row.get("value"))
            elif op == "write":
                write_total += DockerStatsParser._int(row.get("value"))
        return read_total, write_total
