"""
Tests for the operation metrics decorator.

Run with: pytest tests/test_metrics.py -v
"""

import os
import sys
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from channeldb.metrics import DbMetrics, with_metrics


class FakeStore:

    def __init__(self, metrics):
        self.metrics = metrics

    @with_metrics("fake/ok")
    def ok(self, value):
        return value * 2

    @with_metrics("fake/boom")
    def boom(self):
        raise KeyError("boom")


class TestWithMetrics:

    def test_counts_successes(self):
        store = FakeStore(DbMetrics())
        assert store.ok(2) == 4
        assert store.ok(3) == 6
        stats = store.metrics.get("fake/ok")
        assert stats.calls == 2
        assert stats.failures == 0
        assert stats.total_seconds >= stats.last_seconds >= 0

    def test_failure_reraised_and_counted(self):
        store = FakeStore(DbMetrics())
        with pytest.raises(KeyError):
            store.boom()
        stats = store.metrics.get("fake/boom")
        assert stats.calls == 1
        assert stats.failures == 1

    def test_no_metrics_instance(self):
        store = FakeStore(None)
        assert store.ok(5) == 10

    def test_preserves_name(self):
        assert FakeStore.ok.__name__ == "ok"


class TestDbMetrics:

    def test_snapshot_and_reset(self):
        metrics = DbMetrics()
        metrics.record("a", 0.5, success=True)
        metrics.record("a", 1.5, success=False)
        snap = metrics.snapshot()
        assert snap["a"]["calls"] == 2
        assert snap["a"]["failures"] == 1
        assert snap["a"]["avg_seconds"] == pytest.approx(1.0)
        metrics.reset()
        assert metrics.snapshot() == {}

    def test_unknown_name_is_empty(self):
        assert DbMetrics().get("missing").calls == 0

    def test_concurrent_record(self):
        metrics = DbMetrics()

        def worker():
            for _ in range(500):
                metrics.record("x", 0.001, success=True)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert metrics.get("x").calls == 2000
