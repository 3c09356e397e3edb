# tests/test_infrastructure.py
"""Tests for infrastructure components"""
import json
import logging

import pytest

from brewqueue.core.dispatch.domain import Complaint


class TestMetrics:
    def test_metrics_counter_increment(self):
        from brewqueue.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("test_counter", 1)
        collector.inc_counter("test_counter", 2)

        metrics = collector.get_metrics()
        assert metrics["counters"]["test_counter"] == 3

    def test_metrics_histogram_observe(self):
        from brewqueue.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.observe_histogram("test_histogram", 0.1)
        collector.observe_histogram("test_histogram", 0.2)
        collector.observe_histogram("test_histogram", 0.5)

        metrics = collector.get_metrics()
        stats = metrics["histograms"]["test_histogram"]
        assert stats["count"] == 3
        assert stats["min"] == 0.1
        assert stats["max"] == 0.5

    def test_empty_histogram_stats(self):
        from brewqueue.infra.metrics import Histogram

        assert Histogram().get_stats()["count"] == 0

    def test_metrics_with_labels(self):
        from brewqueue.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("orders_assigned_total", 1, {"worker": "Alice"})
        collector.inc_counter("orders_assigned_total", 2, {"worker": "Bob"})

        metrics = collector.get_metrics()
        assert "orders_assigned_total{worker=Alice}" in metrics["counters"]
        assert "orders_assigned_total{worker=Bob}" in metrics["counters"]

    def test_reset(self):
        from brewqueue.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("x")
        collector.reset()
        assert collector.get_metrics() == {"counters": {}, "histograms": {}}

    def test_timer_records_duration(self):
        from brewqueue.infra.metrics import Timer, get_metrics_collector

        with Timer("unit_test_seconds", step="a"):
            pass

        stats = get_metrics_collector().get_metrics()["histograms"]["unit_test_seconds{step=a}"]
        assert stats["count"] >= 1
        assert stats["min"] >= 0

    def test_dispatcher_emits_metrics(self, dispatcher, clock):
        from brewqueue.infra.metrics import get_metrics_collector

        before = get_metrics_collector().get_metrics()["counters"].get("orders_submitted_total", 0)
        dispatcher.submit("Latte", 4)
        clock.advance(minutes=4)
        dispatcher.run_completion_tick()

        metrics = get_metrics_collector().get_metrics()
        assert metrics["counters"]["orders_submitted_total"] == before + 1
        assert metrics["counters"]["orders_completed_total{worker=Alice}"] >= 1
        assert metrics["histograms"]["order_wait_minutes"]["count"] >= 1


class TestLogging:
    def _record(self, **extra):
        record = logging.LogRecord("brewqueue.test", logging.INFO, __file__, 10, "hello %s", ("world",), None)
        for k, v in extra.items():
            setattr(record, k, v)
        return record

    def test_json_formatter_includes_context(self):
        from brewqueue.infra.logging_config import JSONFormatter

        data = json.loads(JSONFormatter().format(self._record(order_id=7, worker_id=2)))
        assert data["message"] == "hello world"
        assert data["level"] == "INFO"
        assert data["order_id"] == 7
        assert data["worker_id"] == 2
        assert "request_id" not in data

    def test_console_formatter_context(self):
        from brewqueue.infra.logging_config import ConsoleFormatter

        line = ConsoleFormatter().format(self._record(order_id=7, request_id="abcdef123456"))
        assert "order=7" in line
        assert "req=abcdef12" in line
        assert "hello world" in line

    def test_log_context_adds_fields(self, caplog):
        from brewqueue.infra.logging_config import LogContext, get_logger

        logger = get_logger("brewqueue.test_context")
        with caplog.at_level(logging.INFO, logger="brewqueue.test_context"):
            LogContext(logger, order_id=3).info("assigned")

        assert caplog.records[-1].order_id == 3
        assert not hasattr(caplog.records[-1], "worker_id")


class TestComplaintSinks:
    def _complaint(self, worker_label="Alice"):
        return Complaint(
            worker_label=worker_label,
            owner_label="dana",
            message="Auto-Raised (Timeout): Order #1 (Latte) waited 10.0 minutes.",
            order_id=1,
        )

    @pytest.mark.asyncio
    async def test_memory_sink_records(self):
        from brewqueue.infra.complaint_sink import InMemoryComplaintSink

        sink = InMemoryComplaintSink()
        await sink.record(self._complaint("Alice"))
        await sink.record(self._complaint("Bob"))

        assert len(sink.list_complaints()) == 2
        assert [c.worker_label for c in sink.list_complaints("Bob")] == ["Bob"]

    @pytest.mark.asyncio
    async def test_log_sink_writes_warning(self, caplog):
        from brewqueue.infra.complaint_sink import LoggingComplaintSink

        with caplog.at_level(logging.WARNING, logger="brewqueue.infra.complaint_sink"):
            await LoggingComplaintSink().record(self._complaint())

        assert "against=Alice" in caplog.records[-1].getMessage()

    def test_factory(self):
        from brewqueue.infra.complaint_sink import get_complaint_sink

        assert get_complaint_sink("memory").name == "memory"
        assert get_complaint_sink("log").name == "log"
        with pytest.raises(ValueError):
            get_complaint_sink("postgres")


# ===================================================================
# Settings
# ===================================================================


class TestSettings:
    """Tests for dispatcher configuration."""

    def test_defaults(self):
        from brewqueue.config import Settings
        s = Settings(_env_file=None)
        assert s.worker_names == ["Alice", "Bob", "Charlie"]
        assert s.recalculation_interval_seconds == 30.0
        assert s.completion_interval_seconds == 1.0
        assert s.complaint_sink == "memory"
        assert s.validate_required() == []

    def test_invalid_complaint_sink_rejected(self):
        from brewqueue.config import Settings
        from pydantic import ValidationError
        with pytest.raises(ValidationError):
            Settings(complaint_sink="kafka", _env_file=None)

    def test_empty_pool_is_fatal(self):
        from brewqueue.config import Settings, validate_or_warn
        s = Settings(worker_names=[], _env_file=None)
        assert "worker_names must contain at least one barista" in s.validate_required()
        with pytest.raises(RuntimeError):
            validate_or_warn(s)

    def test_duplicate_names_are_fatal(self):
        from brewqueue.config import Settings
        s = Settings(worker_names=["Alice", "Alice"], _env_file=None)
        assert "worker_names must be unique" in s.validate_required()

    def test_non_positive_intervals_are_fatal(self):
        from brewqueue.config import Settings
        s = Settings(completion_interval_seconds=0, recalculation_interval_seconds=-1, _env_file=None)
        assert len(s.validate_required()) == 2

    def test_prod_warnings(self):
        from brewqueue.config import Settings, warn_on_risky_config
        s = Settings(app_env="prod", _env_file=None)
        warnings = warn_on_risky_config(s)
        assert any("allowed_origins" in w for w in warnings)
        assert any("complaint_sink=memory" in w for w in warnings)

    def test_disabled_loops_warn(self):
        from brewqueue.config import Settings, warn_on_risky_config
        s = Settings(dispatch_loops_enabled=False, _env_file=None)
        assert any("dispatch_loops_enabled" in w for w in warn_on_risky_config(s))
