"""Tests for the metrics collector (app/services/metrics_collector.py)."""

import math
from datetime import UTC, datetime

import pytest

from app.exceptions import ContainerNotFoundError, RuntimeUnavailableError
from app.models.metrics import ContainerIdentity, HistoryEntry, RawUsageSnapshot
from app.services.metrics_collector import MetricsCollector, derive_sample
from app.services.metrics_history import MetricsHistory

MS = 1_000_000  # nanoseconds per millisecond


def make_snapshot(cpu_ns, monotonic, online_cpus=2, memory=0, limit=0, **kwargs):
    return RawUsageSnapshot(
        container=ContainerIdentity(id="a", name="alpha"),
        timestamp=datetime.now(UTC),
        monotonic=monotonic,
        cpu_total_ns=cpu_ns,
        online_cpus=online_cpus,
        memory_bytes=memory,
        memory_limit_bytes=limit,
        **kwargs,
    )


class TestDeriveSample:
    """Test suite for rate derivation from two snapshots."""

    def test_cpu_rate_scenario(self):
        """1000ms -> 1500ms of CPU over 5s on 2 cores is 5.0%."""
        previous = make_snapshot(1000 * MS, monotonic=100.0)
        current = make_snapshot(1500 * MS, monotonic=105.0)

        sample = derive_sample(current, previous)

        assert sample.cpu_percent == 5.0

    def test_no_previous_snapshot_reports_zero(self):
        """First sample of a container has no rate."""
        sample = derive_sample(make_snapshot(5000 * MS, monotonic=100.0, memory=50 * 1024 * 1024), None)

        assert sample.cpu_percent == 0.0
        assert sample.memory_mb == 50.0

    def test_non_positive_interval_reports_zero(self):
        """Zero or negative elapsed time never divides."""
        previous = make_snapshot(1000 * MS, monotonic=100.0)
        same_time = make_snapshot(2000 * MS, monotonic=100.0)

        assert derive_sample(same_time, previous).cpu_percent == 0.0

    def test_counter_reset_reports_zero(self):
        """A container restart resets its CPU counter; the rate is not negative."""
        previous = make_snapshot(9000 * MS, monotonic=100.0)
        current = make_snapshot(100 * MS, monotonic=105.0)

        assert derive_sample(current, previous).cpu_percent == 0.0

    def test_cpu_clamped_to_100(self):
        """Per-core normalized CPU never exceeds 100."""
        previous = make_snapshot(0, monotonic=100.0, online_cpus=1)
        current = make_snapshot(10_000 * MS, monotonic=101.0, online_cpus=1)

        sample = derive_sample(current, previous)

        assert sample.cpu_percent == 100.0
        assert math.isfinite(sample.cpu_percent)

    def test_memory_percent_with_limit(self):
        """Memory percent is derived when a limit is set."""
        current = make_snapshot(0, monotonic=1.0, memory=256 * 1024 * 1024, limit=1024 * 1024 * 1024)

        sample = derive_sample(current, None)

        assert sample.memory_mb == 256.0
        assert sample.memory_limit_mb == 1024.0
        assert sample.memory_percent == 25.0

    def test_memory_percent_without_limit_is_none(self):
        """No limit means no memory percent."""
        sample = derive_sample(make_snapshot(0, monotonic=1.0, memory=1024), None)

        assert sample.memory_percent is None

    def test_io_counters_pass_through(self):
        """Network and block I/O are cumulative counters, not rates."""
        previous = make_snapshot(0, monotonic=1.0, network_rx_bytes=100, block_read_bytes=10)
        current = make_snapshot(
            0,
            monotonic=2.0,
            network_rx_bytes=5000,
            network_tx_bytes=700,
            block_read_bytes=4096,
            block_write_bytes=8192,
            pids=7,
        )

        sample = derive_sample(current, previous)

        assert sample.network_rx_bytes == 5000
        assert sample.network_tx_bytes == 700
        assert sample.block_read_bytes == 4096
        assert sample.block_write_bytes == 8192
        assert sample.pids == 7


class TestMetricsHistory:
    """Test suite for the bounded history ring buffer."""

    def test_fifo_eviction(self):
        """After capacity+1 appends the oldest entry is gone and the newest is kept."""
        history = MetricsHistory(3)
        entries = [HistoryEntry(timestamp=datetime(2024, 1, 1, 0, 0, i, tzinfo=UTC)) for i in range(4)]

        for entry in entries:
            history.append(entry)

        snapshot = history.snapshot()
        assert len(snapshot) == 3
        assert entries[0] not in snapshot
        assert snapshot[-1] == entries[-1]

    def test_rejects_out_of_order_entries(self):
        history = MetricsHistory(3)
        history.append(HistoryEntry(timestamp=datetime(2024, 1, 1, 0, 0, 5, tzinfo=UTC)))

        with pytest.raises(ValueError):
            history.append(HistoryEntry(timestamp=datetime(2024, 1, 1, 0, 0, 1, tzinfo=UTC)))

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            MetricsHistory(0)

    def test_snapshot_is_immutable_copy(self):
        """Later appends do not change a snapshot already handed out."""
        history = MetricsHistory(2)
        history.append(HistoryEntry(timestamp=datetime(2024, 1, 1, tzinfo=UTC)))
        snapshot = history.snapshot()

        history.append(HistoryEntry(timestamp=datetime(2024, 1, 2, tzinfo=UTC)))

        assert isinstance(snapshot, tuple)
        assert len(snapshot) == 1


class TestMetricsCollectorTick:
    """Test suite for MetricsCollector.tick()."""

    async def test_tick_scenario_five_percent(self, fake_runtime, clock, settings):
        """Two ticks 5s apart with 500ms of CPU on 2 cores yield 5.0%."""
        container = fake_runtime.add_container("a", cpu_total_ns=1000 * MS)
        collector = MetricsCollector(fake_runtime, settings)

        first = await collector.tick()
        clock.advance(5.0)
        container.cpu_total_ns = 1500 * MS
        second = await collector.tick()

        assert first.sample_for("a").cpu_percent == 0.0
        assert second.sample_for("a").cpu_percent == 5.0

    async def test_history_capacity(self, fake_runtime, clock, settings):
        """History never exceeds metrics_history_limit."""
        fake_runtime.add_container("a")
        collector = MetricsCollector(fake_runtime, settings)

        entries = []
        for _ in range(settings.metrics_history_limit + 1):
            entries.append(await collector.tick())
            clock.advance(1.0)

        history = collector.snapshot().history
        assert len(history) == settings.metrics_history_limit
        assert entries[0] not in history
        assert history[-1] is entries[-1]

    async def test_history_time_ordered(self, fake_runtime, settings):
        fake_runtime.add_container("a")
        collector = MetricsCollector(fake_runtime, settings)

        for _ in range(3):
            await collector.tick()

        timestamps = [e.timestamp for e in collector.snapshot().history]
        assert timestamps == sorted(timestamps)

    async def test_slow_container_does_not_stall_others(self, fake_runtime, settings):
        """A hung stats call times out and only that container is absent."""
        fake_runtime.add_container("fast")
        slow = fake_runtime.add_container("slow")
        slow.stats_delay = 5.0
        collector = MetricsCollector(fake_runtime, settings)

        entry = await collector.tick()

        assert entry.sample_for("fast") is not None
        assert entry.sample_for("slow") is None

    async def test_timed_out_container_keeps_previous_snapshot(self, fake_runtime, clock, settings):
        """After a missed tick the rate is computed over the longer interval."""
        container = fake_runtime.add_container("a", cpu_total_ns=0)
        collector = MetricsCollector(fake_runtime, settings)
        await collector.tick()

        clock.advance(5.0)
        container.stats_delay = 5.0
        missed = await collector.tick()
        assert missed.sample_for("a") is None

        clock.advance(5.0)
        container.stats_delay = 0.0
        container.cpu_total_ns = 1000 * MS
        entry = await collector.tick()

        # 1s of CPU over 10s on 2 cores
        assert entry.sample_for("a").cpu_percent == 5.0

    async def test_failing_container_isolated(self, fake_runtime, settings):
        """A per-container stats error never aborts the tick."""
        fake_runtime.add_container("ok")
        broken = fake_runtime.add_container("broken")
        broken.stats_error = ContainerNotFoundError("vanished", container_id="broken")
        collector = MetricsCollector(fake_runtime, settings)

        entry = await collector.tick()

        assert [s.container.id for s in entry.samples] == ["ok"]

    async def test_list_failure_raises_and_records_nothing(self, fake_runtime, settings):
        """Failing to list containers is reported upward; history is untouched."""
        fake_runtime.add_container("a")
        collector = MetricsCollector(fake_runtime, settings)
        await collector.tick()
        fake_runtime.list_error = RuntimeUnavailableError("daemon down")

        with pytest.raises(RuntimeUnavailableError):
            await collector.tick()

        snapshot = collector.snapshot()
        assert len(snapshot.history) == 1
        assert snapshot.last_error == "daemon down"

        fake_runtime.list_error = None
        await collector.tick()
        assert collector.snapshot().last_error is None
        assert len(collector.snapshot().history) == 2

    async def test_vanished_container_dropped_and_reappears_fresh(self, fake_runtime, clock, settings):
        """A container that disappears loses its previous snapshot."""
        container = fake_runtime.add_container("a", cpu_total_ns=1000 * MS)
        collector = MetricsCollector(fake_runtime, settings)
        await collector.tick()

        container.running = False
        clock.advance(5.0)
        entry = await collector.tick()
        assert entry.sample_for("a") is None

        container.running = True
        container.cpu_total_ns = 9000 * MS
        clock.advance(5.0)
        entry = await collector.tick()
        assert entry.sample_for("a").cpu_percent == 0.0

    async def test_system_summary(self, fake_runtime, settings):
        fake_runtime.add_container("a")
        fake_runtime.add_container("b", running=False)
        fake_runtime.add_image("nginx:latest")
        collector = MetricsCollector(fake_runtime, settings)

        await collector.tick()

        system = collector.snapshot().system
        assert system.total_containers == 2
        assert system.running_containers == 1
        assert system.total_images == 1
        assert system.docker_version == "24.0.7"

    async def test_system_summary_failure_keeps_previous(self, fake_runtime, settings):
        """A failed system query keeps the last summary and still records samples."""
        fake_runtime.add_container("a")
        collector = MetricsCollector(fake_runtime, settings)
        await collector.tick()
        previous = collector.snapshot().system

        fake_runtime.system_info_error = RuntimeUnavailableError("info failed")
        entry = await collector.tick()

        assert collector.snapshot().system is previous
        assert entry.sample_for("a") is not None

    async def test_snapshot_before_first_tick(self, fake_runtime, settings):
        collector = MetricsCollector(fake_runtime, settings)

        snapshot = collector.snapshot()

        assert snapshot.system is None
        assert snapshot.containers == ()
        assert snapshot.history == ()
        assert snapshot.tick_count == 0


class TestChartSeries:
    """Test suite for top-K chart selection."""

    async def _collector_with_cpu(self, fake_runtime, clock, settings, cpu_ms):
        containers = {cid: fake_runtime.add_container(cid, cpu_total_ns=0) for cid in cpu_ms}
        collector = MetricsCollector(fake_runtime, settings)
        await collector.tick()
        clock.advance(1.0)
        for cid, ms in cpu_ms.items():
            containers[cid].cpu_total_ns = ms * MS
        await collector.tick()
        return collector

    async def test_top_k_by_cpu_descending(self, fake_runtime, clock, settings):
        collector = await self._collector_with_cpu(
            fake_runtime, clock, settings, {"a": 100, "b": 400, "c": 200, "d": 300}
        )

        labels, series = collector.chart_series(limit=2)

        assert [s.container.id for s in series] == ["b", "d"]
        assert len(labels) == 2

    async def test_ties_broken_by_id(self, fake_runtime, clock, settings):
        collector = await self._collector_with_cpu(
            fake_runtime, clock, settings, {"zeta": 200, "alpha": 200, "mid": 200}
        )

        _, series = collector.chart_series(limit=3)

        assert [s.container.id for s in series] == ["alpha", "mid", "zeta"]

    async def test_default_limit_from_settings(self, fake_runtime, clock, settings):
        collector = await self._collector_with_cpu(
            fake_runtime, clock, settings, {f"c{i}": i * 10 for i in range(6)}
        )

        _, series = collector.chart_series()

        assert len(series) == settings.max_chart_containers

    async def test_series_aligned_with_history(self, fake_runtime, clock, settings):
        """A tick where the container was absent contributes 0.0."""
        fake_runtime.add_container("old")
        collector = MetricsCollector(fake_runtime, settings)
        await collector.tick()

        newcomer = fake_runtime.add_container("new", cpu_total_ns=0, memory_bytes=10 * 1024 * 1024)
        await collector.tick()
        clock.advance(1.0)
        newcomer.cpu_total_ns = 500 * MS
        await collector.tick()

        labels, series = collector.chart_series(limit=1)

        assert len(labels) == 3
        assert series[0].container.id == "new"
        assert series[0].cpu_percent == (0.0, 0.0, 25.0)
        assert series[0].memory_mb == (0.0, 10.0, 10.0)
