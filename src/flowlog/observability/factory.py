"""Component logger factory.

One factory is built at process start (``configure_logging``) and handed to
whoever needs a logger. Every component logger it returns is a view over a
single core logger, so there is one set of sinks and one file handle no
matter how many components log.
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock, RLock
from typing import IO, Any

from flowlog.config.loader import load_config
from flowlog.config.schema import FlowlogConfig
from flowlog.utils.time_provider import TimeProvider, get_default_time_provider

from .context import Component, component_name, generate_session_id
from .correlation import CrossSystemCorrelationTracker, Redactor
from .emergency import EmergencyTier
from .logger import CoreLogger, UsageReport
from .memory import PressureProbe
from .metrics import PipelineMetricsExporter
from .output_manager import OutputManager
from .session import SessionDescriptor, build_session_path, cleanup_old_sessions

logger = logging.getLogger(__name__)


class ComponentLoggerFactory:
    """Hands out component loggers, output managers and the correlation tracker.

    The tier table is validated on construction, so a bad table fails at
    startup rather than on the first pressure spike.
    """

    def __init__(
        self,
        config: FlowlogConfig | None = None,
        *,
        pressure_probe: PressureProbe | None = None,
        time_provider: TimeProvider | None = None,
        metrics: PipelineMetricsExporter | None = None,
        stdout: IO[str] | None = None,
        stderr: IO[str] | None = None,
    ) -> None:
        self.config = config or FlowlogConfig()
        self.tiers: tuple[EmergencyTier, ...] = self.config.emergency.to_tiers()
        self._time = time_provider or get_default_time_provider()
        self._probe = pressure_probe
        self._stdout = stdout
        self._stderr = stderr
        if metrics is None and self.config.metrics_enabled:
            metrics = PipelineMetricsExporter()
        self.metrics = metrics

        # Re-entrant: lazy members build each other while holding it.
        self._lock = RLock()
        self._core: CoreLogger | None = None
        self._loggers: dict[str, CoreLogger] = {}
        self._managers: list[OutputManager] = []
        self._tracker: CrossSystemCorrelationTracker | None = None
        self._closed = False

    @property
    def core_logger(self) -> CoreLogger:
        if self._core is None:
            with self._lock:
                if self._core is None:
                    self._core = CoreLogger(
                        self.config.logging,
                        pressure_probe=self._probe,
                        time_provider=self._time,
                        metrics=self.metrics,
                        stdout=self._stdout,
                        stderr=self._stderr,
                    )
        return self._core

    @property
    def base_dir(self) -> Path:
        return Path(self.config.session.base_dir)

    # -- loggers ------------------------------------------------------------

    def get_logger(
        self,
        component: Component | str,
        correlation_id: str | None = None,
        session_id: str | None = None,
    ) -> CoreLogger:
        name = component_name(component)
        view = self._loggers.get(name)
        if view is None:
            view = self._loggers.setdefault(name, self.core_logger.with_component(name))
        if correlation_id:
            view = view.with_correlation_id(correlation_id)
        if session_id:
            view = view.with_session_id(session_id)
        return view

    def get_cli_logger(self, **kwargs: Any) -> CoreLogger:
        return self.get_logger(Component.CLI, **kwargs)

    def get_mcp_logger(self, **kwargs: Any) -> CoreLogger:
        return self.get_logger(Component.MCP, **kwargs)

    def get_swarm_logger(self, **kwargs: Any) -> CoreLogger:
        return self.get_logger(Component.SWARM, **kwargs)

    def get_core_logger(self, **kwargs: Any) -> CoreLogger:
        return self.get_logger(Component.CORE, **kwargs)

    def get_terminal_logger(self, **kwargs: Any) -> CoreLogger:
        return self.get_logger(Component.TERMINAL, **kwargs)

    def get_memory_logger(self, **kwargs: Any) -> CoreLogger:
        return self.get_logger(Component.MEMORY, **kwargs)

    def get_migration_logger(self, **kwargs: Any) -> CoreLogger:
        return self.get_logger(Component.MIGRATION, **kwargs)

    def get_hooks_logger(self, **kwargs: Any) -> CoreLogger:
        return self.get_logger(Component.HOOKS, **kwargs)

    def get_enterprise_logger(self, **kwargs: Any) -> CoreLogger:
        return self.get_logger(Component.ENTERPRISE, **kwargs)

    # -- output managers ----------------------------------------------------

    def get_output_manager(
        self,
        command: str,
        correlation_id: str | None = None,
        session_id: str | None = None,
        component: Component | str = Component.CLI,
    ) -> OutputManager:
        """Dual-stream manager writing to this command's session file."""
        session_id = session_id or generate_session_id(self._time)
        floor = self.tiers[0]
        descriptor = SessionDescriptor(
            session_id=session_id,
            command=command,
            file_path=self.session_path(command, session_id),
            batch_size=floor.batch_size,
            flush_interval_ms=floor.flush_interval_ms,
        )
        manager = OutputManager(
            command,
            self.get_logger(component, correlation_id=correlation_id),
            descriptor,
            tiers=self.tiers,
            redactor=self._build_redactor(),
            time_provider=self._time,
            metrics=self.metrics,
            stdout=self._stdout,
            stderr=self._stderr,
            queue_size=self.config.session.queue_size,
            on_close=self._forget_manager,
        )
        with self._lock:
            self._managers.append(manager)
        return manager

    def _forget_manager(self, manager: OutputManager) -> None:
        with self._lock:
            if manager in self._managers:
                self._managers.remove(manager)

    @property
    def output_managers(self) -> list[OutputManager]:
        """Managers created here and not yet closed."""
        with self._lock:
            return list(self._managers)

    def session_path(self, command: str, session_id: str) -> Path:
        return build_session_path(self.base_dir, command, session_id, self._time)

    def cleanup_old_sessions(self, max_age_days: float | None = None) -> int:
        """Delete session files past retention; returns how many were removed."""
        days = self.config.session.retention_days if max_age_days is None else max_age_days
        return cleanup_old_sessions(self.base_dir, days, self._time)

    def _build_redactor(self) -> Redactor:
        settings = self.config.correlation
        return Redactor(
            settings.redaction_patterns,
            settings.redaction_marker,
            settings.redact_recursively,
        )

    # -- global controls ----------------------------------------------------

    def enable_emergency_mode(self) -> None:
        self.core_logger.enable_emergency_mode()

    def disable_emergency_mode(self) -> None:
        self.core_logger.disable_emergency_mode()

    def get_usage_analytics(self) -> UsageReport:
        return self.core_logger.get_usage_analytics()

    def get_memory_pressure(self) -> float:
        return self.core_logger.get_memory_pressure()

    def get_correlation_tracker(self) -> CrossSystemCorrelationTracker:
        if self._tracker is None:
            with self._lock:
                if self._tracker is None:
                    self._tracker = CrossSystemCorrelationTracker(
                        self.get_mcp_logger(),
                        settings=self.config.correlation,
                        redactor=self._build_redactor(),
                        time_provider=self._time,
                        metrics=self.metrics,
                    )
        return self._tracker

    def shutdown(self) -> None:
        """Flush and close every manager, the tracker and the sinks."""
        if self._closed:
            return
        self._closed = True
        for manager in self.output_managers:
            manager.close()
        if self._tracker is not None:
            self._tracker.shutdown()
        if self._core is not None:
            self._core.close()
        self._loggers.clear()


# Process-wide factory
_logger_factory: ComponentLoggerFactory | None = None
_logger_factory_lock = Lock()


def configure_logging(
    config: FlowlogConfig | None = None, **kwargs: Any
) -> ComponentLoggerFactory:
    """Build the process-wide factory, replacing (and shutting down) any previous one.

    Args:
        config: Pipeline configuration; loaded from defaults, ``FLOWLOG_CONFIG``
            and the environment when omitted
        **kwargs: Passed to ``ComponentLoggerFactory``

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    global _logger_factory

    factory = ComponentLoggerFactory(config or load_config(), **kwargs)
    with _logger_factory_lock:
        previous, _logger_factory = _logger_factory, factory
    if previous is not None:
        previous.shutdown()
    return factory


def get_logger_factory() -> ComponentLoggerFactory:
    """Return the process-wide factory, configuring it from the environment on first use."""
    global _logger_factory

    if _logger_factory is None:
        with _logger_factory_lock:
            if _logger_factory is None:
                _logger_factory = ComponentLoggerFactory(load_config())
    return _logger_factory


def reset_logger_factory() -> None:
    """Shut down and forget the process-wide factory (tests only)."""
    global _logger_factory

    with _logger_factory_lock:
        previous, _logger_factory = _logger_factory, None
    if previous is not None:
        previous.shutdown()


def get_logger(
    component: Component | str,
    correlation_id: str | None = None,
    session_id: str | None = None,
) -> CoreLogger:
    return get_logger_factory().get_logger(component, correlation_id, session_id)
