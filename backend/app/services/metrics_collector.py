"""Metrics collector: periodic sampling of running container usage."""

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Dict, List, Optional, Tuple

from app.config import Settings
from app.exceptions import DockPulseError, RuntimeUnavailableError
from app.models.metrics import (
    ChartSeries,
    ContainerIdentity,
    DerivedMetricSample,
    HistoryEntry,
    MetricsSnapshot,
    RawUsageSnapshot,
    SystemSummary,
)
from app.models.runtime import ContainerSummary
from app.services import metrics as prom
from app.services.metrics_history import MetricsHistory
from app.services.runtime_client import RuntimeClient
from app.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
NS_PER_SECOND = 1_000_000_000


def derive_sample(
    current: RawUsageSnapshot, previous: Optional[RawUsageSnapshot]
) -> DerivedMetricSample:
    """Derive one container's sample from its current and previous snapshot.

    CPU is a rate over the monotonic interval between the two reads,
    normalized per core and clamped to [0, 100]. It is 0 when there is no
    previous snapshot, the interval is not positive, or the counter went
    backwards (container restarted). Network and block I/O are passed through
    as cumulative counters.
    """
    cpu_percent = 0.0
    if previous is not None:
        elapsed = current.monotonic - previous.monotonic
        cpu_delta = current.cpu_total_ns - previous.cpu_total_ns
        if elapsed > 0 and cpu_delta >= 0:
            cores = max(current.online_cpus, 1)
            cpu_percent = (cpu_delta / NS_PER_SECOND) / elapsed / cores * 100
            cpu_percent = round(min(max(cpu_percent, 0.0), 100.0), 2)

    memory_mb = round(current.memory_bytes / BYTES_PER_MB, 2)
    memory_limit_mb = round(current.memory_limit_bytes / BYTES_PER_MB, 2)
    memory_percent = None
    if current.memory_limit_bytes > 0:
        memory_percent = round(current.memory_bytes / current.memory_limit_bytes * 100, 2)

    return DerivedMetricSample(
        container=current.container,
        timestamp=current.timestamp,
        cpu_percent=cpu_percent,
        memory_mb=memory_mb,
        memory_limit_mb=memory_limit_mb,
        memory_percent=memory_percent,
        network_rx_bytes=current.network_rx_bytes,
        network_tx_bytes=current.network_tx_bytes,
        block_read_bytes=current.block_read_bytes,
        block_write_bytes=current.block_write_bytes,
        pids=current.pids,
    )


class MetricsCollector:
    """Owns the bounded metrics history and the previous-snapshot map.

    ``tick()`` is the only writer. Every reader goes through ``snapshot()`` or
    ``chart_series()``, which build immutable copies; a tick publishes its
    results in one synchronous step so readers never see half a tick.
    """

    def __init__(self, runtime: RuntimeClient, settings: Settings) -> None:
        self.runtime = runtime
        self.settings = settings
        self._history = MetricsHistory(settings.metrics_history_limit)
        self._previous: Dict[str, RawUsageSnapshot] = {}
        self._system: Optional[SystemSummary] = None
        self._latest: Tuple[DerivedMetricSample, ...] = ()
        self._tick_count = 0
        self._last_error: Optional[str] = None
        self._last_tick_at: Optional[datetime] = None
        self._tick_lock = asyncio.Lock()

    async def tick(self) -> HistoryEntry:
        """Run one sampling cycle.

        Returns:
            The history entry appended by this tick

        Raises:
            RuntimeUnavailableError: Running containers could not be listed.
                Nothing is recorded for this tick.
        """
        async with self._tick_lock:
            started = time.monotonic()
            try:
                running = await self.runtime.list_running()
            except DockPulseError as e:
                prom.collector_ticks_failed_total.inc()
                self._last_error = str(e)
                logger.error(f"Metrics tick failed to list containers: {e}")
                if isinstance(e, RuntimeUnavailableError):
                    raise
                raise RuntimeUnavailableError(f"Cannot list running containers: {e}") from e

            snapshots = await self._sample_all(running)
            system = await self._system_summary()

            # Publish: everything below is synchronous
            active_ids = {c.id for c in running}
            samples: List[DerivedMetricSample] = []
            for container in running:
                snapshot = snapshots.get(container.id)
                if snapshot is None:
                    continue
                samples.append(derive_sample(snapshot, self._previous.get(container.id)))
                self._previous[container.id] = snapshot
            for stale_id in [cid for cid in self._previous if cid not in active_ids]:
                del self._previous[stale_id]

            now = datetime.now(UTC)
            last = self._history.latest()
            if last is not None and now < last.timestamp:
                now = last.timestamp
            entry = HistoryEntry(timestamp=now, samples=tuple(samples))
            self._history.append(entry)
            self._latest = entry.samples
            if system is not None:
                self._system = system
            self._tick_count += 1
            self._last_error = None
            self._last_tick_at = now

            prom.collector_ticks_total.inc()
            prom.containers_running.set(len(running))
            prom.collector_tick_duration.observe(time.monotonic() - started)
            logger.debug(
                f"Metrics tick {self._tick_count}: {len(samples)}/{len(running)} containers sampled"
            )
            return entry

    async def _sample_all(
        self, running: List[ContainerSummary]
    ) -> Dict[str, RawUsageSnapshot]:
        """Fetch snapshots concurrently with a bounded fan-out.

        A container whose read fails or times out is absent from the result.
        """
        semaphore = asyncio.Semaphore(self.settings.stats_concurrency)
        timeout = self.settings.stats_timeout_seconds

        async def sample_one(container: ContainerSummary) -> Optional[RawUsageSnapshot]:
            async with semaphore:
                try:
                    return await asyncio.wait_for(self.runtime.stats(container.id), timeout)
                except asyncio.TimeoutError:
                    prom.collector_sample_failures_total.labels(error_class="timeout").inc()
                    logger.warning(
                        f"Stats read for {sanitize_log_message(container.name)} "
                        f"timed out after {timeout}s"
                    )
                except DockPulseError as e:
                    prom.collector_sample_failures_total.labels(error_class=e.error_class).inc()
                    logger.warning(
                        f"Stats read for {sanitize_log_message(container.name)} failed: {e}"
                    )
                return None

        results = await asyncio.gather(
            *(sample_one(c) for c in running), return_exceptions=True
        )

        snapshots: Dict[str, RawUsageSnapshot] = {}
        for container, result in zip(running, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                prom.collector_sample_failures_total.labels(error_class="error").inc()
                logger.error(
                    f"Unexpected error sampling {sanitize_log_message(container.name)}: {result}",
                    exc_info=result,
                )
                continue
            if result is not None:
                snapshots[container.id] = result
        return snapshots

    async def _system_summary(self) -> Optional[SystemSummary]:
        """Query the host summary; None keeps the previous one."""
        try:
            info = await self.runtime.system_info()
        except DockPulseError as e:
            logger.warning(f"System summary unavailable, keeping previous: {e}")
            return None
        return SystemSummary(
            timestamp=datetime.now(UTC),
            total_containers=info.total_containers,
            running_containers=info.running_containers,
            total_images=info.total_images,
            docker_version=info.version,
        )

    def snapshot(self) -> MetricsSnapshot:
        """Immutable view of the current metrics state."""
        return MetricsSnapshot(
            system=self._system,
            containers=self._latest,
            history=self._history.snapshot(),
            tick_count=self._tick_count,
            last_error=self._last_error,
            last_tick_at=self._last_tick_at,
        )

    def record_error(self, message: str) -> None:
        self._last_error = message

    def chart_series(
        self, limit: Optional[int] = None
    ) -> Tuple[List[datetime], List[ChartSeries]]:
        """Build aligned chart series for the busiest containers.

        Containers are ranked by their latest cpu_percent, descending, with
        ties broken by id ascending. A tick in which a ranked container has
        no sample contributes 0.0 to its series.

        Args:
            limit: Maximum number of series (defaults to max_chart_containers)

        Returns:
            Tuple of (history timestamps, series per selected container)
        """
        if limit is None:
            limit = self.settings.max_chart_containers
        limit = max(int(limit), 0)

        history = self._history.snapshot()
        latest = self._latest
        ranked = sorted(latest, key=lambda s: (-s.cpu_percent, s.container.id))[:limit]

        labels = [entry.timestamp for entry in history]
        series: List[ChartSeries] = []
        for sample in ranked:
            identity: ContainerIdentity = sample.container
            cpu: List[float] = []
            memory: List[float] = []
            for entry in history:
                point = entry.sample_for(identity.id)
                cpu.append(point.cpu_percent if point else 0.0)
                memory.append(point.memory_mb if point else 0.0)
            series.append(
                ChartSeries(container=identity, cpu_percent=tuple(cpu), memory_mb=tuple(memory))
            )
        return labels, series
