"""
Tests for console and file sinks and the record formatters.

Tests validate:
1. DEBUG/INFO go to stdout, WARN/ERROR to stderr, MCP always to stderr
2. File sink requires a path and rotates by size
3. Text format carries component, correlation and timing
4. Sink failures are reported once per incident
5. JSON output carries OpenTelemetry trace context inside a span
"""

import io
import json
import logging

import pytest
from opentelemetry import trace
from opentelemetry.trace import NonRecordingSpan, SpanContext, TraceFlags

from flowlog.config.schema import LoggingSettings
from flowlog.observability.logger import (
    ConsoleSink,
    CoreLogger,
    RotatingFileSink,
    build_handlers,
    get_current_trace_context,
)
from flowlog.utils.errors import ConfigurationError, ErrorCode


class BrokenStream(io.StringIO):
    def write(self, s):
        raise OSError("disk on fire")


class TestConsoleRouting:
    def test_levels_split_across_streams(self, make_logger, streams):
        log = make_logger()
        log.debug("d")
        log.info("i")
        log.warn("w")
        log.error("e")
        stdout, stderr = streams

        out = [json.loads(line)["message"] for line in stdout.getvalue().splitlines()]
        err = [json.loads(line)["message"] for line in stderr.getvalue().splitlines()]
        assert out == ["d", "i"]
        assert err == ["w", "e"]

    def test_protocol_component_never_writes_stdout(self, make_logger, streams):
        log = make_logger().with_component("MCP")
        log.debug("d")
        log.info("i")
        stdout, stderr = streams
        assert stdout.getvalue() == ""
        assert len(stderr.getvalue().splitlines()) == 2

    def test_streams_resolved_at_emit_time(self, pressure, fake_time, capsys):
        log = CoreLogger(
            LoggingSettings(level="debug"), pressure_probe=pressure, time_provider=fake_time
        )
        try:
            log.info("to stdout")
            log.error("to stderr")
        finally:
            log.close()
        captured = capsys.readouterr()
        assert "to stdout" in captured.out
        assert "to stderr" in captured.err

    def test_failure_reported_once_per_incident(self):
        diagnostic = io.StringIO()
        sink = ConsoleSink(stdout=BrokenStream(), stderr=diagnostic)
        record = logging.LogRecord("t", logging.INFO, "x", 0, "msg", None, None)

        sink.handle(record)
        sink.handle(record)

        assert sink.failure_count == 2
        assert diagnostic.getvalue().count("console write failed") == 1

    def test_incident_ends_after_successful_write(self):
        diagnostic = io.StringIO()
        sink = ConsoleSink(stdout=BrokenStream(), stderr=diagnostic)
        info = logging.LogRecord("t", logging.INFO, "x", 0, "msg", None, None)
        warning = logging.LogRecord("t", logging.WARNING, "x", 0, "warn", None, None)

        sink.handle(info)
        sink.handle(warning)  # stderr works, incident closes
        sink.handle(info)

        assert diagnostic.getvalue().count("console write failed") == 2


class TestFileSink:
    def test_missing_path_is_fatal(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RotatingFileSink(None)
        assert exc_info.value.code is ErrorCode.E101_MISSING_FILE_PATH

    @pytest.mark.parametrize("destination", ["file", "both"])
    def test_file_destination_without_path(self, destination):
        with pytest.raises(ConfigurationError):
            build_handlers(LoggingSettings(destination=destination))

    def test_writes_json_lines(self, make_logger, tmp_path):
        path = tmp_path / "logs" / "app.log"
        log = make_logger(destination="file", file_path=str(path))
        log.info("one", {"k": 1})
        log.warn("two")
        log.close()

        lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert [entry["message"] for entry in lines] == ["one", "two"]
        assert lines[0]["context"] == {"k": 1}
        assert lines[1]["level"] == "WARN"

    def test_rotation_prunes_old_files(self, make_logger, tmp_path):
        path = tmp_path / "app.log"
        log = make_logger(
            destination="file", file_path=str(path), max_file_size=300, max_files=2
        )
        for i in range(60):
            log.info(f"record number {i:03d}")
        log.close()

        assert path.exists()
        assert (tmp_path / "app.log.1").exists()
        assert (tmp_path / "app.log.2").exists()
        assert not (tmp_path / "app.log.3").exists()

    def test_both_destinations(self, make_logger, tmp_path, streams):
        path = tmp_path / "both.log"
        log = make_logger(destination="both", file_path=str(path))
        log.info("twice")
        log.close()
        assert "twice" in path.read_text(encoding="utf-8")
        assert "twice" in streams[0].getvalue()


class TestTextFormat:
    def test_text_line_layout(self, make_logger, streams, fake_time):
        log = make_logger(format="text").with_component("Swarm")
        view = log.with_correlation_id("1709640000000-abcdef").with_session_id("sess-123456789")
        view.time_start("op")
        fake_time.advance(0.012)
        view.time_end("op", "finished", {"n": 1})

        line = streams[0].getvalue().strip()
        assert line.startswith("[2024-03-05T12:00:00.012Z] DEBUG [Swarm]")
        assert "corr:17096400" in line
        assert "sess:sess-123" in line
        assert "12ms finished" in line
        assert line.endswith('{"n": 1}')

    def test_text_error_includes_stack(self, make_logger, streams):
        log = make_logger(format="text")
        try:
            raise KeyError("missing")
        except KeyError as exc:
            log.error("lookup failed", exc)
        err = streams[1].getvalue()
        assert "ERROR [Core] lookup failed" in err
        assert "Error: 'missing'" in err
        assert "Stack: Traceback" in err


class TestTraceContext:
    def test_no_active_span(self):
        assert get_current_trace_context() == {"trace_id": "", "span_id": ""}

    def test_json_includes_span_ids(self, make_logger, streams):
        log = make_logger()
        span_context = SpanContext(
            trace_id=0x0123456789ABCDEF0123456789ABCDEF,
            span_id=0x0123456789ABCDEF,
            is_remote=False,
            trace_flags=TraceFlags(TraceFlags.SAMPLED),
        )
        with trace.use_span(NonRecordingSpan(span_context), end_on_exit=False):
            log.info("inside span")

        entry = json.loads(streams[0].getvalue().strip())
        assert entry["trace_id"] == "0123456789abcdef0123456789abcdef"
        assert entry["span_id"] == "0123456789abcdef"

    def test_trace_context_can_be_disabled(self, make_logger, streams):
        log = make_logger(trace_context=False)
        span_context = SpanContext(
            trace_id=1, span_id=1, is_remote=False, trace_flags=TraceFlags(TraceFlags.SAMPLED)
        )
        with trace.use_span(NonRecordingSpan(span_context), end_on_exit=False):
            log.info("no ids")
        entry = json.loads(streams[0].getvalue().strip())
        assert "trace_id" not in entry
