"""
Tests for the memory-aware core logger.

Tests validate:
- Level filtering and emergency-mode debug suppression
- Context derivation never mutates the receiver
- Hard-threshold breach clears the buffer and warns once
- Lazy/conditional debug calls downgrade evaluation errors
- Usage analytics and stopwatches
"""

import json

import pytest

from flowlog.observability.context import LogContext
from flowlog.observability.logger import (
    EMERGENCY_WARNING,
    CoreLogger,
    LogLevel,
    LogRecord,
)
from flowlog.utils.errors import ConfigurationError


class TestLevelFiltering:
    def test_records_below_level_are_dropped(self, make_logger, streams):
        log = make_logger(level="warn")
        log.debug("d")
        log.info("i")
        log.warn("w")
        log.error("e")

        messages = [r.message for r in log.get_buffered_records()]
        assert messages == ["w", "e"]
        stdout, stderr = streams
        assert stdout.getvalue() == ""
        assert '"message": "w"' in stderr.getvalue()

    def test_none_destination_still_buffers(self, make_logger, streams):
        log = make_logger(destination="none")
        log.info("quiet")
        assert [r.message for r in log.get_buffered_records()] == ["quiet"]
        assert streams[0].getvalue() == ""
        assert streams[1].getvalue() == ""

    def test_level_parse(self):
        assert LogLevel.parse("warning") is LogLevel.WARN
        assert LogLevel.parse("DEBUG") is LogLevel.DEBUG
        assert LogLevel.parse(3) is LogLevel.ERROR
        with pytest.raises(ConfigurationError):
            LogLevel.parse("verbose")

    def test_debug_suppressed_in_emergency_mode(self, make_logger, streams):
        log = make_logger()
        log.enable_emergency_mode()
        log.debug("hidden")
        log.info("shown")
        output = streams[0].getvalue()
        assert "hidden" not in output
        assert "shown" in output


class TestContextDerivation:
    def test_with_component_returns_new_view(self, make_logger):
        log = make_logger()
        mcp = log.with_component("MCP")
        assert log.component == "Core"
        assert mcp.component == "MCP"
        assert mcp is not log
        assert mcp.shares_sinks_with(log)

    def test_siblings_are_independent(self, make_logger):
        log = make_logger()
        a = log.with_correlation_id("corr-a")
        b = log.with_correlation_id("corr-b")
        a.info("from a")
        b.info("from b")

        records = log.get_buffered_records()
        assert [(r.message, r.correlation_id) for r in records] == [
            ("from a", "corr-a"),
            ("from b", "corr-b"),
        ]
        assert log.correlation_id is None

    def test_chained_derivation_keeps_parent_fields(self, make_logger):
        log = make_logger().with_component("Swarm")
        view = log.with_correlation_id("c1").with_session_id("sess-1")
        assert view.context == LogContext("Swarm", "c1", "sess-1")
        assert log.context == LogContext("Swarm", None, None)

    def test_child_merges_extra_context(self, make_logger):
        log = make_logger()
        child = log.child(request="r1")
        grandchild = child.child(step=2)
        grandchild.info("hello", {"extra": True})
        record = log.get_buffered_records()[-1]
        assert dict(record.context) == {"request": "r1", "step": 2, "extra": True}

        log.info("parent")
        assert dict(log.get_buffered_records()[-1].context) == {}


class TestRecords:
    def test_record_is_immutable(self, make_logger):
        log = make_logger()
        meta = {"items": [1, 2], "nested": {"k": "v"}}
        log.info("m", meta)
        meta["nested"]["k"] = "changed"
        record = log.get_buffered_records()[0]

        assert record.context["nested"]["k"] == "v"
        with pytest.raises(TypeError):
            record.context["new"] = 1  # type: ignore[index]
        with pytest.raises(AttributeError):
            record.message = "other"  # type: ignore[misc]

    def test_error_is_serialized(self, make_logger, streams):
        log = make_logger()
        try:
            raise RuntimeError("boom")
        except RuntimeError as exc:
            log.error("failed", exc)

        record = log.get_buffered_records()[0]
        assert record.error["name"] == "RuntimeError"
        assert record.error["message"] == "boom"
        assert "Traceback" in record.error["stack"]

        line = json.loads(streams[1].getvalue().strip())
        assert line["error"]["name"] == "RuntimeError"

    def test_to_dict_omits_empty_fields(self):
        record = LogRecord(
            timestamp="2024-01-01T00:00:00.000Z",
            level=LogLevel.INFO,
            message="m",
            component="CLI",
        )
        assert record.to_dict() == {
            "timestamp": "2024-01-01T00:00:00.000Z",
            "level": "INFO",
            "message": "m",
            "component": "CLI",
            "context": {},
        }


class TestMemoryPressure:
    def test_breach_enters_emergency_mode_once(self, make_logger, pressure, streams):
        log = make_logger()
        log.debug("before-1")
        log.debug("before-2")

        pressure.set(0.97)
        log.info("dropped record")

        assert log.is_emergency_mode
        records = log.get_buffered_records()
        assert [r.message for r in records] == [EMERGENCY_WARNING]
        assert streams[1].getvalue().count(EMERGENCY_WARNING) == 1

        log.info("after")
        assert streams[1].getvalue().count(EMERGENCY_WARNING) == 1
        assert "after" in streams[0].getvalue()

    def test_degraded_records_bypass_the_buffer(self, make_logger, pressure):
        log = make_logger()
        pressure.set(0.97)
        log.info("breach")
        for i in range(5):
            log.info(f"degraded {i}")
            log.error(f"degraded error {i}")

        assert [r.message for r in log.get_buffered_records()] == [EMERGENCY_WARNING]

        pressure.set(0.5)
        log.disable_emergency_mode()
        log.info("recovered")
        assert log.get_buffered_records()[-1].message == "recovered"

    def test_threshold_is_configurable(self, make_logger, pressure):
        log = make_logger(emergency_threshold=0.5)
        pressure.set(0.6)
        log.info("x")
        assert log.is_emergency_mode

    def test_listeners_receive_every_sample(self, make_logger, pressure):
        log = make_logger()
        seen = []
        log.add_pressure_listener(seen.append)
        pressure.set(0.3)
        log.info("a")
        pressure.set(0.4)
        log.with_component("MCP").warn("b")
        assert seen == [0.3, 0.4]

    def test_filtered_calls_do_not_sample(self, make_logger, pressure):
        log = make_logger(level="error")
        seen = []
        log.add_pressure_listener(seen.append)
        log.info("ignored")
        assert seen == []

    def test_disable_restores_debug(self, make_logger):
        log = make_logger()
        log.enable_emergency_mode()
        log.disable_emergency_mode()
        log.debug("visible again")
        assert log.get_buffered_records()[-1].message == "visible again"


class TestLazyDebug:
    def test_predicate_not_evaluated_when_debug_off(self, make_logger):
        log = make_logger(level="info")
        calls = []
        log.debug_if(lambda: calls.append(1) or True, "never")
        log.debug_lazy(lambda: calls.append(2) or "never")
        assert calls == []

    def test_predicate_gates_message(self, make_logger):
        log = make_logger()
        log.debug_if(lambda: False, "no")
        log.debug_if(lambda: True, "yes")
        assert [r.message for r in log.get_buffered_records()] == ["yes"]

    def test_predicate_error_becomes_warning(self, make_logger):
        log = make_logger()

        def broken():
            raise ValueError("bad predicate")

        log.debug_if(broken, "original")
        records = log.get_buffered_records()
        assert len(records) == 1
        assert records[0].level is LogLevel.WARN
        assert records[0].context["original_message"] == "original"
        assert records[0].context["error"]["message"] == "bad predicate"

    def test_lazy_factory_error_becomes_warning(self, make_logger):
        log = make_logger()
        log.debug_lazy(lambda: 1 / 0)
        record = log.get_buffered_records()[0]
        assert record.level is LogLevel.WARN
        assert record.context["error"]["name"] == "ZeroDivisionError"

    def test_lazy_message_is_built_once(self, make_logger):
        log = make_logger()
        log.debug_lazy(lambda: "expensive", {"k": 1})
        record = log.get_buffered_records()[0]
        assert record.message == "expensive"
        assert record.context["k"] == 1


class TestUsageAndTiming:
    def test_track_usage_aggregates(self, make_logger):
        log = make_logger()
        log.track_usage("console.log", "cli.py:10")
        log.track_usage("console.log", "cli.py:10")
        log.track_usage("console.log", "mcp.py:4")
        log.track_usage("console.error", "cli.py:20")

        report = log.get_usage_analytics()
        assert report.total_calls == 4
        assert report.symbol_usage["console.log"].count == 3
        assert report.symbol_usage["console.log"].locations == ("cli.py:10", "mcp.py:4")
        assert report.symbol_usage["console.error"].count == 1
        with pytest.raises(TypeError):
            report.symbol_usage["x"] = None  # type: ignore[index]

    def test_track_usage_skipped_in_emergency(self, make_logger):
        log = make_logger()
        log.enable_emergency_mode()
        log.track_usage("s", "l")
        assert log.get_usage_analytics().total_calls == 0

    def test_debug_component_counts_per_component(self, make_logger):
        log = make_logger()
        log.debug_component("Swarm", "spawned")
        log.debug_component("Swarm", "joined")
        log.debug_component("MCP", "listening")
        report = log.get_usage_analytics()
        assert dict(report.component_breakdown) == {"Swarm": 2, "MCP": 1}
        assert log.get_buffered_records()[0].component == "Swarm"

    def test_stopwatch_records_duration(self, make_logger, fake_time):
        log = make_logger()
        log.time_start("op-1")
        fake_time.advance(0.25)
        duration = log.time_end("op-1", "done", {"rows": 3})

        assert duration == pytest.approx(250.0)
        record = log.get_buffered_records()[-1]
        assert record.message == "done"
        assert record.operation_id == "op-1"
        assert record.performance.duration_ms == pytest.approx(250.0)
        assert log.get_usage_analytics().avg_response_time == pytest.approx(250.0)

    def test_time_end_without_start_is_silent(self, make_logger):
        log = make_logger()
        assert log.time_end("missing") is None
        assert log.get_buffered_records() == []


class TestConfigure:
    def test_configure_changes_level_for_all_views(self, make_logger):
        log = make_logger()
        view = log.with_component("CLI")
        log.configure(log.settings.model_copy(update={"level": "error"}))
        view.info("filtered")
        assert log.get_buffered_records() == []

    def test_default_settings(self, pressure, fake_time):
        log = CoreLogger(pressure_probe=pressure, time_provider=fake_time)
        try:
            assert log.level is LogLevel.INFO
            assert log.component == "Core"
        finally:
            log.close()
