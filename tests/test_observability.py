"""
Tests for the metrics collector.
"""

import threading

import pytest

from civicdesk.observability import MetricsCollector


class TestMetricsCollector:
    """Counters shared by request threads."""

    def test_increment(self):
        metrics = MetricsCollector()
        metrics.increment("reports_created")
        metrics.increment("reports_created", 2)

        assert metrics.reports_created == 3
        assert metrics.get_summary()["reports_created"] == 3

    def test_concurrent_increments_are_not_lost(self):
        metrics = MetricsCollector()

        def bump():
            for _ in range(2000):
                metrics.increment("comments_added")

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert metrics.comments_added == 16000

    def test_unknown_counter(self):
        with pytest.raises(AttributeError):
            MetricsCollector().increment("no_such_counter")

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.increment("login_failures")
        metrics.record_request(12.5, success=False)
        metrics.reset()

        assert metrics.login_failures == 0
        assert metrics.requests_failed == 0
