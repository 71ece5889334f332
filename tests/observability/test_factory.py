"""Tests for the component logger factory and the process-wide accessors."""

import threading

import pytest

from flowlog.config.schema import EmergencySettings, FlowlogConfig, TierSettings
from flowlog.observability import factory as factory_module
from flowlog.observability.context import Component
from flowlog.observability.factory import (
    ComponentLoggerFactory,
    configure_logging,
    get_logger,
    get_logger_factory,
    reset_logger_factory,
)
from flowlog.observability.metrics import PipelineMetricsExporter
from flowlog.utils.errors import ConfigurationError


class TestComponentLoggers:
    def test_views_share_one_core(self, factory):
        cli = factory.get_cli_logger()
        mcp = factory.get_mcp_logger()
        assert cli.component == "CLI"
        assert mcp.component == "MCP"
        assert cli.shares_sinks_with(mcp)
        assert cli.shares_sinks_with(factory.core_logger)

    def test_component_views_are_cached(self, factory):
        assert factory.get_logger("Swarm") is factory.get_swarm_logger()
        assert factory.get_logger(Component.MEMORY) is factory.get_memory_logger()

    def test_correlation_and_session_derive_new_views(self, factory):
        base = factory.get_hooks_logger()
        derived = factory.get_hooks_logger(correlation_id="c-1", session_id="sess-1")
        assert derived is not base
        assert derived.correlation_id == "c-1"
        assert derived.session_id == "sess-1"
        assert base.correlation_id is None

    @pytest.mark.parametrize(
        ("method", "component"),
        [
            ("get_cli_logger", "CLI"),
            ("get_mcp_logger", "MCP"),
            ("get_swarm_logger", "Swarm"),
            ("get_core_logger", "Core"),
            ("get_terminal_logger", "Terminal"),
            ("get_memory_logger", "Memory"),
            ("get_migration_logger", "Migration"),
            ("get_hooks_logger", "Hooks"),
            ("get_enterprise_logger", "Enterprise"),
        ],
    )
    def test_convenience_accessors(self, factory, method, component):
        assert getattr(factory, method)().component == component

    def test_records_from_all_components_share_the_buffer(self, factory):
        factory.get_cli_logger().info("from cli")
        factory.get_terminal_logger().info("from terminal")
        records = factory.core_logger.get_buffered_records()
        assert [(r.component, r.message) for r in records] == [
            ("CLI", "from cli"),
            ("Terminal", "from terminal"),
        ]


class TestGlobalControls:
    def test_emergency_mode_applies_to_every_view(self, factory):
        swarm = factory.get_swarm_logger()
        factory.enable_emergency_mode()
        swarm.debug("hidden")
        assert factory.get_cli_logger().is_emergency_mode
        assert factory.core_logger.get_buffered_records()[-1].message != "hidden"

        factory.disable_emergency_mode()
        swarm.debug("shown")
        assert factory.core_logger.get_buffered_records()[-1].message == "shown"

    def test_usage_and_pressure(self, factory, pressure):
        factory.get_cli_logger().track_usage("console.log", "a.py:1")
        assert factory.get_usage_analytics().total_calls == 1
        pressure.set(0.42)
        assert factory.get_memory_pressure() == pytest.approx(0.42)

    def test_tracker_is_lazy_and_shared(self, factory):
        tracker = factory.get_correlation_tracker()
        assert factory.get_correlation_tracker() is tracker

    def test_session_path_under_base_dir(self, factory, flowlog_config):
        path = factory.session_path("init", "sess-1-abcdef")
        assert str(path).startswith(flowlog_config.session.base_dir)
        assert path.name.endswith("_init-session_abcdef.log")

    def test_cleanup_uses_configured_retention(self, factory, tmp_path):
        assert factory.cleanup_old_sessions() == 0

    def test_shutdown_is_idempotent(self, factory):
        manager = factory.get_output_manager("init")
        manager.user_info("hello")
        factory.shutdown()
        factory.shutdown()
        assert manager.writer.closed

    def test_metrics_created_when_enabled(self):
        built = ComponentLoggerFactory(FlowlogConfig(metrics_enabled=True))
        try:
            assert isinstance(built.metrics, PipelineMetricsExporter)
        finally:
            built.shutdown()

    def test_invalid_tier_table_fails_at_startup(self):
        settings = EmergencySettings.model_construct(
            tiers=[
                TierSettings(level="NORMAL", threshold=0.5, batch_size=10, flush_interval_ms=100),
                TierSettings(level="ELEVATED", threshold=0.2, batch_size=5, flush_interval_ms=50),
            ]
        )
        config = FlowlogConfig().model_copy(update={"emergency": settings})
        with pytest.raises(ConfigurationError):
            ComponentLoggerFactory(config)


class TestLazyInitialisation:
    """Any accessor may be the first call on a fresh factory."""

    @staticmethod
    def _call_with_timeout(func, timeout=5.0):
        result = {}

        def run():
            result["value"] = func()

        worker = threading.Thread(target=run, daemon=True)
        worker.start()
        worker.join(timeout)
        assert not worker.is_alive(), "factory call did not return"
        return result["value"]

    def test_tracker_first_on_fresh_factory(self, flowlog_config, pressure, fake_time):
        fresh = ComponentLoggerFactory(
            flowlog_config, pressure_probe=pressure, time_provider=fake_time
        )
        try:
            tracker = self._call_with_timeout(fresh.get_correlation_tracker)
            assert tracker is fresh.get_correlation_tracker()
            assert fresh.get_mcp_logger().shares_sinks_with(fresh.core_logger)
        finally:
            fresh.shutdown()

    @pytest.mark.parametrize(
        "first_call",
        [
            lambda f: f.get_output_manager("init"),
            lambda f: f.get_usage_analytics(),
            lambda f: f.get_memory_pressure(),
            lambda f: f.enable_emergency_mode(),
            lambda f: f.get_swarm_logger(),
        ],
    )
    def test_other_accessors_first(self, flowlog_config, pressure, fake_time, first_call):
        fresh = ComponentLoggerFactory(
            flowlog_config, pressure_probe=pressure, time_provider=fake_time
        )
        try:
            self._call_with_timeout(lambda: first_call(fresh))
            self._call_with_timeout(fresh.get_correlation_tracker)
        finally:
            fresh.shutdown()


class TestOutputManagerLifecycle:
    def test_closed_managers_are_released(self, factory):
        core = factory.core_logger
        baseline = core.pressure_listener_count

        for i in range(20):
            manager = factory.get_output_manager(f"cmd-{i}")
            manager.user_info("hello")
            manager.close()

        assert factory.output_managers == []
        assert core.pressure_listener_count == baseline

    def test_open_managers_are_tracked_until_shutdown(self, factory):
        kept = factory.get_output_manager("init")
        closed = factory.get_output_manager("swarm")
        closed.close()

        assert factory.output_managers == [kept]
        factory.shutdown()
        assert factory.output_managers == []
        assert kept.writer.closed

    def test_manager_api_drives_tiers(self, factory, pressure, streams):
        manager = factory.get_output_manager("init")
        pressure.set(0.96)
        manager.user_info("step 1")
        assert manager.current_tier.name == "ELEVATED"

        pressure.set(0.997)
        manager.user_success("step 2")
        assert manager.current_tier.name == "CRITICAL"
        assert manager.writer.closed


class TestProcessWideFactory:
    def test_get_logger_factory_is_lazy_singleton(self):
        first = get_logger_factory()
        assert get_logger_factory() is first
        assert get_logger("CLI").component == "CLI"

    def test_configure_replaces_previous(self, flowlog_config, pressure):
        first = configure_logging(flowlog_config, pressure_probe=pressure)
        manager = first.get_output_manager("init")
        second = configure_logging(flowlog_config, pressure_probe=pressure)

        assert second is not first
        assert get_logger_factory() is second
        assert manager.writer.closed

    def test_reset_forgets_factory(self, flowlog_config):
        configure_logging(flowlog_config)
        reset_logger_factory()
        assert factory_module._logger_factory is None
