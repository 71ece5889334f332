"""Tests for the Prometheus metrics exporter."""

from prometheus_client import CollectorRegistry

from flowlog.config.schema import LoggingSettings
from flowlog.observability.logger import CoreLogger
from flowlog.observability.metrics import PipelineMetricsExporter


class TestPipelineMetricsExporter:
    def test_private_registries_do_not_collide(self):
        first = PipelineMetricsExporter()
        second = PipelineMetricsExporter()
        first.record_emitted("INFO", "CLI")
        assert second.registry.get_sample_value(
            "flowlog_records_emitted_total", {"level": "INFO", "component": "CLI"}
        ) is None

    def test_shared_registry(self):
        registry = CollectorRegistry()
        exporter = PipelineMetricsExporter(registry)
        exporter.record_dropped("level")
        exporter.record_dropped("level")
        assert registry.get_sample_value("flowlog_records_dropped_total", {"reason": "level"}) == 2

    def test_session_batches_count(self, metrics):
        metrics.record_session_batch("discarded", 3)
        metrics.record_session_batch("discarded", 0)
        assert metrics.registry.get_sample_value(
            "flowlog_session_batches_total", {"outcome": "discarded"}
        ) == 3

    def test_export_text_lists_every_family(self, metrics):
        metrics.record_emitted("WARN", "MCP")
        metrics.record_tier_transition("NORMAL", "SEVERE")
        metrics.set_tier(2)
        metrics.set_memory_pressure(0.96)
        metrics.record_protocol_message("inbound", True)
        metrics.record_tool_invocation("started")
        metrics.record_correlation("created")

        text = metrics.export_text()
        for name in (
            "flowlog_records_emitted_total",
            "flowlog_tier_transitions_total",
            "flowlog_emergency_tier 2.0",
            "flowlog_memory_pressure_ratio 0.96",
            'flowlog_protocol_messages_total{direction="inbound",compliant="true"}',
            "flowlog_tool_invocations_total",
            "flowlog_correlations_total",
        ):
            assert name in text
        assert isinstance(metrics.export_metrics(), bytes)

    def test_logger_records_emitted_and_dropped(self, metrics, pressure, fake_time):
        log = CoreLogger(
            LoggingSettings(level="info", destination="none"),
            pressure_probe=pressure,
            time_provider=fake_time,
            metrics=metrics,
        )
        try:
            log.info("kept")
            log.debug("filtered")
        finally:
            log.close()

        assert metrics.registry.get_sample_value(
            "flowlog_records_emitted_total", {"level": "INFO", "component": "Core"}
        ) == 1
        assert metrics.registry.get_sample_value(
            "flowlog_records_dropped_total", {"reason": "level"}
        ) == 1
