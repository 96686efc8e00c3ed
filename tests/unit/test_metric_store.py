"""
Tests for the sliding-window metric store.

Tests cover:
- Windowed aggregation and percentiles
- Retention eviction and the per-buffer cap
- Malformed input (clamping and dropping)
- Concurrent writers
"""

import math
import threading

import pytest

from canaryctl.core.metric_store import MetricStore
from canaryctl.observability.metrics import MetricsExporter
from canaryctl.utils.clock import FakeClock


class TestWindow:
    def test_empty_deployment(self, store):
        window = store.window("unknown", "canary", since=0.0)
        assert window.sample_count == 0
        assert window.error_rate == 0.0

    def test_counts_and_error_rate(self, store):
        for i in range(10):
            store.record("checkout", "canary", "error" if i < 2 else "success", 10.0)
        window = store.window("checkout", "canary", since=0.0)
        assert window.sample_count == 10
        assert window.error_count == 2
        assert window.error_rate == pytest.approx(0.2)

    def test_versions_are_separate(self, store):
        store.record("checkout", "canary", "success", 10.0)
        store.record("checkout", "stable", "error", 10.0)
        assert store.window("checkout", "canary", since=0.0).error_count == 0
        assert store.window("checkout", "stable", since=0.0).error_count == 1

    def test_percentiles(self, store):
        for latency in range(1, 101):
            store.record("checkout", "canary", "success", float(latency))
        window = store.window("checkout", "canary", since=0.0)
        assert window.p50_ms == pytest.approx(50.5)
        assert window.p99_ms == pytest.approx(99.01)
        assert window.p50_ms <= window.p95_ms <= window.p99_ms

    def test_since_and_until_are_inclusive(self, store, clock):
        store.record("checkout", "canary", "success", 1.0)
        start = clock.advance(10.0)
        store.record("checkout", "canary", "success", 2.0)
        end = clock.advance(10.0)
        store.record("checkout", "canary", "success", 3.0)

        assert store.window("checkout", "canary", since=start).sample_count == 2
        assert store.window("checkout", "canary", since=start, until=start).sample_count == 1
        assert store.window("checkout", "canary", since=0.0, until=end).sample_count == 3

    def test_explicit_timestamp(self, store):
        store.record("checkout", "canary", "success", 5.0, timestamp=999.0)
        assert store.window("checkout", "canary", since=999.5).sample_count == 0


class TestRetention:
    def test_old_samples_evicted(self, store, clock):
        store.set_retention("checkout", 60.0)
        store.record("checkout", "canary", "success", 1.0)
        clock.advance(61.0)
        store.record("checkout", "canary", "success", 1.0)
        assert store.sample_count("checkout", "canary") == 1

    def test_sample_cap(self, clock):
        store = MetricStore(clock=clock, max_samples_per_version=5)
        for _ in range(8):
            store.record("checkout", "stable", "success", 1.0)
        assert store.sample_count("checkout", "stable") == 5

    def test_retention_defaults(self, store):
        assert store.retention("checkout") == 600.0
        store.set_retention("checkout", 120.0)
        assert store.retention("checkout") == 120.0

    def test_forget(self, store):
        store.record("checkout", "canary", "success", 1.0)
        store.forget("checkout")
        assert store.sample_count("checkout", "canary") == 0

    def test_idle_deployments_swept_on_write(self, store, clock):
        for i in range(5000):
            store.record(f"ghost-{i}", "canary", "success", 1.0)
        assert store.tracked_deployments() == 5000

        clock.advance(10_000)
        store.record("checkout", "canary", "success", 1.0)

        assert store.tracked_deployments() == 1
        assert store.sample_count("ghost-0", "canary") == 0

    def test_recent_writers_survive_sweep(self, store, clock):
        store.record("quiet", "canary", "success", 1.0)
        clock.advance(300)
        store.record("busy", "canary", "success", 1.0)
        clock.advance(301)
        store.record("busy", "stable", "success", 1.0)

        assert store.sample_count("quiet", "canary") == 0
        assert store.sample_count("busy", "canary") == 1
        assert store.tracked_deployments() == 1

    def test_pinned_retention_survives_sweep(self, store, clock):
        store.set_retention("checkout", 60.0)
        clock.advance(10_000)
        store.record("search", "canary", "success", 1.0)

        assert store.tracked_deployments() == 2
        assert store.retention("checkout") == 60.0
        store.forget("checkout")
        assert store.retention("checkout") == 600.0

    @pytest.mark.parametrize("kwargs", [{"default_retention_seconds": 0}, {"max_samples_per_version": 0}])
    def test_rejects_bad_configuration(self, kwargs):
        with pytest.raises(ValueError):
            MetricStore(**kwargs)

    def test_rejects_bad_retention(self, store):
        with pytest.raises(ValueError):
            store.set_retention("checkout", 0)


class TestMalformedInput:
    @pytest.mark.parametrize("latency", [-5.0, math.nan, math.inf, "fast", None])
    def test_invalid_latency_clamped(self, store, metrics, latency):
        assert store.record("checkout", "canary", "success", latency) is True
        window = store.window("checkout", "canary", since=0.0)
        assert window.sample_count == 1
        assert window.p99_ms == 0.0
        assert metrics.sample_value("canaryctl_samples_clamped_total") == 1.0

    @pytest.mark.parametrize(
        ("version", "outcome"), [("blue", "success"), ("canary", "timeout"), ("", "")]
    )
    def test_unknown_labels_dropped(self, store, metrics, version, outcome):
        assert store.record("checkout", version, outcome, 10.0) is False
        assert store.sample_count("checkout", "canary") == 0
        assert metrics.sample_value(
            "canaryctl_samples_dropped_total", {"reason": "unknown_label"}
        ) == 1.0

    def test_ingest_counter(self, store, metrics):
        store.record("checkout", "canary", "success", 1.0)
        store.record("checkout", "stable", "success", 1.0)
        store.record("checkout", "stable", "error", 1.0)
        assert metrics.sample_value(
            "canaryctl_samples_ingested_total", {"version": "stable"}
        ) == 2.0


class TestConcurrency:
    def test_concurrent_writers(self):
        clock = FakeClock(start=0.0)
        store = MetricStore(clock=clock, metrics=MetricsExporter())
        writers = 8
        per_writer = 500

        def write() -> None:
            for _ in range(per_writer):
                store.record("checkout", "canary", "success", 1.0)

        threads = [threading.Thread(target=write) for _ in range(writers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.window("checkout", "canary", since=0.0).sample_count == writers * per_writer
