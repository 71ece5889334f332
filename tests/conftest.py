"""
Shared pytest fixtures and configuration for flowlog tests.

This module provides common fixtures, marks, and configuration
for deterministic testing of the logging pipeline without real memory
pressure, wall-clock sleeps or writes outside a temporary directory.
"""

from __future__ import annotations

import io
import os
from typing import TYPE_CHECKING, Any

import pytest

from flowlog.config.schema import FlowlogConfig, LoggingSettings, SessionSettings
from flowlog.observability.factory import ComponentLoggerFactory, reset_logger_factory
from flowlog.observability.logger import CoreLogger
from flowlog.observability.memory import FixedPressureProbe
from flowlog.observability.metrics import PipelineMetricsExporter
from flowlog.utils.time_provider import FakeTimeProvider

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

# Fixed epoch (2024-03-05T12:00:00Z) so session file names are predictable.
FIXED_EPOCH = 1709640000.0

# ============================================================
# Pytest Hooks and Configuration
# ============================================================


def pytest_configure(config: Any) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "property: marks property-based tests")
    config.addinivalue_line("markers", "security: marks redaction and sanitization tests")


# ============================================================
# Environment Isolation Fixtures
# ============================================================


@pytest.fixture(autouse=True)
def _isolate_flowlog_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Strip FLOWLOG_* variables and reset the process-wide factory around each test."""
    for key in list(os.environ):
        if key.startswith("FLOWLOG_"):
            monkeypatch.delenv(key, raising=False)
    reset_logger_factory()
    yield
    reset_logger_factory()


# ============================================================
# Time and Pressure Fixtures
# ============================================================


@pytest.fixture
def fake_time() -> FakeTimeProvider:
    return FakeTimeProvider(start_time=FIXED_EPOCH)


@pytest.fixture
def pressure() -> FixedPressureProbe:
    """Settable memory pressure, starting at zero."""
    return FixedPressureProbe(0.0)


@pytest.fixture
def metrics() -> PipelineMetricsExporter:
    return PipelineMetricsExporter()


# ============================================================
# Stream Fixtures
# ============================================================


@pytest.fixture
def streams() -> tuple[io.StringIO, io.StringIO]:
    """(stdout, stderr) capture buffers."""
    return io.StringIO(), io.StringIO()


# ============================================================
# Logger and Factory Fixtures
# ============================================================


@pytest.fixture
def make_logger(
    pressure: FixedPressureProbe,
    fake_time: FakeTimeProvider,
    streams: tuple[io.StringIO, io.StringIO],
) -> Callable[..., CoreLogger]:
    """Factory fixture building a CoreLogger writing to the capture streams."""
    created: list[CoreLogger] = []

    def _make(**settings: Any) -> CoreLogger:
        settings.setdefault("level", "debug")
        stdout, stderr = streams
        log = CoreLogger(
            LoggingSettings(**settings),
            pressure_probe=pressure,
            time_provider=fake_time,
            stdout=stdout,
            stderr=stderr,
        )
        created.append(log)
        return log

    yield _make  # type: ignore[misc]
    for log in created:
        log.close()


@pytest.fixture
def flowlog_config(tmp_path: Path) -> FlowlogConfig:
    return FlowlogConfig(
        logging=LoggingSettings(level="debug", destination="console"),
        session=SessionSettings(base_dir=str(tmp_path / "flowlog")),
    )


@pytest.fixture
def factory(
    flowlog_config: FlowlogConfig,
    pressure: FixedPressureProbe,
    fake_time: FakeTimeProvider,
    streams: tuple[io.StringIO, io.StringIO],
    metrics: PipelineMetricsExporter,
) -> Iterator[ComponentLoggerFactory]:
    stdout, stderr = streams
    built = ComponentLoggerFactory(
        flowlog_config,
        pressure_probe=pressure,
        time_provider=fake_time,
        metrics=metrics,
        stdout=stdout,
        stderr=stderr,
    )
    yield built
    built.shutdown()
