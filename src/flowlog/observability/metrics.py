"""Prometheus metrics for the logging pipeline.

Every exporter owns a private CollectorRegistry so several pipelines (and
tests) can coexist in one process without duplicate-timeseries errors.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class PipelineMetricsExporter:
    """Prometheus-compatible metrics exporter for the logging pipeline.

    Provides:
    - Counters: records emitted/dropped, tier transitions, session batches,
      protocol messages, tool invocations, correlations
    - Gauges: current tier, memory pressure
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.records_emitted_total = Counter(
            "flowlog_records_emitted_total",
            "Total number of log records written to sinks",
            ["level", "component"],
            registry=self.registry,
        )

        self.records_dropped_total = Counter(
            "flowlog_records_dropped_total",
            "Total number of log records dropped before reaching a sink",
            ["reason"],  # reason: level, emergency, pressure_breach
            registry=self.registry,
        )

        self.tier_transitions_total = Counter(
            "flowlog_tier_transitions_total",
            "Total number of emergency tier transitions",
            ["from_tier", "to_tier"],
            registry=self.registry,
        )

        self.current_tier = Gauge(
            "flowlog_emergency_tier",
            "Active emergency tier (0=NORMAL .. 3=CRITICAL)",
            registry=self.registry,
        )

        self.memory_pressure = Gauge(
            "flowlog_memory_pressure_ratio",
            "Last sampled memory pressure as a ratio of the configured ceiling",
            registry=self.registry,
        )

        self.session_batches_total = Counter(
            "flowlog_session_batches_total",
            "Session batches by outcome",
            ["outcome"],  # outcome: written, dropped, failed, discarded
            registry=self.registry,
        )

        self.protocol_messages_total = Counter(
            "flowlog_protocol_messages_total",
            "Protocol messages traced",
            ["direction", "compliant"],
            registry=self.registry,
        )

        self.tool_invocations_total = Counter(
            "flowlog_tool_invocations_total",
            "Tool invocations by outcome",
            ["outcome"],  # outcome: started, success, failure
            registry=self.registry,
        )

        self.correlations_total = Counter(
            "flowlog_correlations_total",
            "Cross-system correlation lifecycle events",
            ["event"],  # event: created, linked, closed
            registry=self.registry,
        )

    def record_emitted(self, level: str, component: str) -> None:
        self.records_emitted_total.labels(level=level, component=component).inc()

    def record_dropped(self, reason: str) -> None:
        self.records_dropped_total.labels(reason=reason).inc()

    def record_tier_transition(self, from_tier: str, to_tier: str) -> None:
        self.tier_transitions_total.labels(from_tier=from_tier, to_tier=to_tier).inc()

    def set_tier(self, level: int) -> None:
        self.current_tier.set(level)

    def set_memory_pressure(self, pressure: float) -> None:
        self.memory_pressure.set(pressure)

    def record_session_batch(self, outcome: str, count: int = 1) -> None:
        if count > 0:
            self.session_batches_total.labels(outcome=outcome).inc(count)

    def record_protocol_message(self, direction: str, compliant: bool) -> None:
        self.protocol_messages_total.labels(
            direction=direction, compliant=str(compliant).lower()
        ).inc()

    def record_tool_invocation(self, outcome: str) -> None:
        self.tool_invocations_total.labels(outcome=outcome).inc()

    def record_correlation(self, event: str) -> None:
        self.correlations_total.labels(event=event).inc()

    def export_metrics(self) -> bytes:
        """Export metrics in Prometheus format.

        Returns:
            Prometheus-formatted metrics as bytes
        """
        return generate_latest(self.registry)

    def export_text(self) -> str:
        return self.export_metrics().decode("utf-8")
