"""Memory-aware structured logger.

The core logger formats records as JSON or text, keeps the most recent ones in
a ring buffer and writes them to console and/or a size-rotated file through
ordinary ``logging`` handlers.

Key features:
- Immutable context views (component, correlation id, session id) that share
  one set of sinks, buffer and counters
- Memory pressure sampled on every call; crossing the hard threshold enters
  emergency mode, which suspends debug output
- Lazy and conditional debug calls whose evaluation errors never escape
- Symbol usage analytics and paired operation stopwatches
- Trace context correlation (trace_id, span_id) from OpenTelemetry
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import MappingProxyType
from typing import IO, TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import INVALID_SPAN_ID, INVALID_TRACE_ID

from flowlog.config.schema import LoggingSettings
from flowlog.utils.errors import ERROR_MESSAGES, ConfigurationError, ErrorCode, serialize_error
from flowlog.utils.time_provider import (
    TimeProvider,
    get_default_time_provider,
    isoformat,
    monotonic_ms,
)

from .context import Component, LogContext, component_name, is_protocol_component
from .memory import MemoryProbe, PressureProbe
from .ring_buffer import RingBuffer

if TYPE_CHECKING:
    from .metrics import PipelineMetricsExporter

_EMPTY: Mapping[str, Any] = MappingProxyType({})

EMERGENCY_WARNING = ERROR_MESSAGES[ErrorCode.E501_EMERGENCY_MODE]
EMERGENCY_RESUMED = "Emergency mode disabled - debug logging resumed"


# ---------------------------------------------------------------------------
# Levels and records
# ---------------------------------------------------------------------------


class LogLevel(IntEnum):
    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3

    @classmethod
    def parse(cls, value: LogLevel | str | int) -> LogLevel:
        """Accept a level, its name (case-insensitive, ``warning`` allowed) or ordinal.

        Raises:
            ConfigurationError: For unknown names or ordinals
        """
        if isinstance(value, LogLevel):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError as exc:
                raise ConfigurationError(
                    ErrorCode.E104_INVALID_LOG_LEVEL, f"Unknown log level: {value}"
                ) from exc
        name = str(value).strip().upper()
        if name == "WARNING":
            name = "WARN"
        try:
            return cls[name]
        except KeyError as exc:
            raise ConfigurationError(
                ErrorCode.E104_INVALID_LOG_LEVEL, f"Unknown log level: {value}"
            ) from exc

    def to_stdlib(self) -> int:
        return _STDLIB_LEVELS[self]


_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class PerformanceInfo:
    start_time: float
    duration_ms: float | None = None


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class LogRecord:
    """A single write-once log entry.

    Mapping fields are copied into read-only views on construction so later
    changes to the caller's dicts never show up in the buffer.
    """

    timestamp: str
    level: LogLevel
    message: str
    component: str
    context: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    data: Any = None
    error: Any = None
    correlation_id: str | None = None
    session_id: str | None = None
    operation_id: str | None = None
    performance: PerformanceInfo | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "context", _freeze(dict(self.context)))
        object.__setattr__(self, "data", _freeze(self.data))
        object.__setattr__(self, "error", _freeze(serialize_error(self.error)))

    def to_dict(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "timestamp": self.timestamp,
            "level": self.level.name,
            "message": self.message,
            "component": self.component,
            "context": _thaw(self.context),
        }
        if self.data is not None:
            entry["data"] = _thaw(self.data)
        if self.error is not None:
            entry["error"] = _thaw(self.error)
        if self.correlation_id:
            entry["correlation_id"] = self.correlation_id
        if self.session_id:
            entry["session_id"] = self.session_id
        if self.operation_id:
            entry["operation_id"] = self.operation_id
        if self.performance is not None:
            entry["performance"] = {
                "start_time": self.performance.start_time,
                "duration_ms": self.performance.duration_ms,
            }
        return entry


@dataclass(frozen=True)
class SymbolUsage:
    count: int
    locations: tuple[str, ...]


@dataclass(frozen=True)
class UsageReport:
    """Read-only aggregate returned by ``get_usage_analytics``."""

    total_calls: int
    symbol_usage: Mapping[str, SymbolUsage]
    component_breakdown: Mapping[str, int]
    memory_pressure: float
    avg_response_time: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "symbol_usage": {
                symbol: {"count": usage.count, "locations": list(usage.locations)}
                for symbol, usage in self.symbol_usage.items()
            },
            "component_breakdown": dict(self.component_breakdown),
            "memory_pressure": self.memory_pressure,
            "avg_response_time": self.avg_response_time,
        }


# ---------------------------------------------------------------------------
# Trace Context Helpers
# ---------------------------------------------------------------------------


def get_current_trace_context() -> dict[str, str]:
    """Get current OpenTelemetry trace context.

    Returns a dictionary with trace_id and span_id if a span is active,
    otherwise returns empty strings for both fields.
    """
    span_context = trace.get_current_span().get_span_context()

    if span_context.trace_id != INVALID_TRACE_ID:
        trace_id = format(span_context.trace_id, "032x")
    else:
        trace_id = ""

    if span_context.span_id != INVALID_SPAN_ID:
        span_id = format(span_context.span_id, "016x")
    else:
        span_id = ""

    return {"trace_id": trace_id, "span_id": span_id}


class TraceContextFilter(logging.Filter):
    """Logging filter that injects OpenTelemetry trace context into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_current_trace_context()
        record.trace_id = ctx["trace_id"]
        record.span_id = ctx["span_id"]
        return True


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

RECORD_ATTR = "flowlog_record"


def _record_of(record: logging.LogRecord) -> LogRecord | None:
    return getattr(record, RECORD_ATTR, None)


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Includes trace_id and span_id from OpenTelemetry when a span is active.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry_record = _record_of(record)
        if entry_record is not None:
            log_entry = entry_record.to_dict()
        else:
            log_entry = {
                "timestamp": self.formatTime(record),
                "level": record.levelname,
                "message": record.getMessage(),
                "component": record.name,
                "context": {},
            }

        trace_id = getattr(record, "trace_id", "")
        span_id = getattr(record, "span_id", "")
        if trace_id:
            log_entry["trace_id"] = trace_id
        if span_id:
            log_entry["span_id"] = span_id

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """``[ts] LEVEL [component] corr:xxxxxxxx sess:xxxxxxxx 12ms message ...``"""

    def format(self, record: logging.LogRecord) -> str:
        entry = _record_of(record)
        if entry is None:
            return f"[{self.formatTime(record)}] {record.levelname} {record.getMessage()}"

        debug_info = [f"[{entry.component}]"]
        if entry.correlation_id:
            debug_info.append(f"corr:{entry.correlation_id[:8]}")
        if entry.session_id:
            debug_info.append(f"sess:{entry.session_id[:8]}")
        if entry.performance is not None and entry.performance.duration_ms:
            debug_info.append(f"{entry.performance.duration_ms:.0f}ms")

        line = f"[{entry.timestamp}] {entry.level.name} {' '.join(debug_info)} {entry.message}"
        if entry.context:
            line += f" {json.dumps(_thaw(entry.context), default=str)}"
        if entry.data is not None:
            line += f" {json.dumps(_thaw(entry.data), default=str)}"
        if isinstance(entry.error, Mapping) and "stack" in entry.error:
            line += f"\n  Error: {entry.error['message']}\n  Stack: {entry.error['stack']}"
        elif entry.error is not None:
            line += f" Error: {json.dumps(_thaw(entry.error), default=str)}"
        return line


def build_formatter(fmt: str) -> logging.Formatter:
    return TextFormatter() if fmt == "text" else JSONFormatter()


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class _IncidentReporting:
    """Report a sink failure once, then stay quiet until a write succeeds."""

    sink_name = "sink"

    def _init_incidents(self, diagnostic: IO[str] | None) -> None:
        self._diagnostic = diagnostic
        self._in_incident = False
        self._errored = False
        self.failure_count = 0

    def _begin_write(self) -> None:
        self._errored = False

    def _end_write(self) -> None:
        if not self._errored:
            self._in_incident = False

    def handleError(self, record: logging.LogRecord) -> None:  # noqa: N802
        self._errored = True
        self.failure_count += 1
        if self._in_incident:
            return
        self._in_incident = True
        exc = sys.exc_info()[1]
        stream = self._diagnostic or sys.stderr
        try:
            stream.write(f"flowlog: {self.sink_name} write failed: {exc}\n")
            stream.flush()
        except (OSError, ValueError):
            pass


class ConsoleSink(_IncidentReporting, logging.Handler):
    """Console handler routing DEBUG/INFO to stdout and WARN/ERROR to stderr.

    Records from protocol-bound components always go to stderr. Streams are
    resolved at emit time unless given explicitly.
    """

    sink_name = "console"

    def __init__(self, stdout: IO[str] | None = None, stderr: IO[str] | None = None) -> None:
        logging.Handler.__init__(self)
        self._stdout = stdout
        self._stderr = stderr
        self._init_incidents(stderr)

    def stream_for(self, record: logging.LogRecord) -> IO[str]:
        entry = _record_of(record)
        component = entry.component if entry is not None else None
        if record.levelno >= logging.WARNING or is_protocol_component(component):
            return self._stderr or sys.stderr
        return self._stdout or sys.stdout

    def emit(self, record: logging.LogRecord) -> None:
        self._begin_write()
        try:
            stream = self.stream_for(record)
            stream.write(self.format(record) + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)
        self._end_write()


class RotatingFileSink(_IncidentReporting, RotatingFileHandler):
    """Size-rotated log file keeping at most ``backup_count`` rotated files."""

    sink_name = "file"

    def __init__(
        self,
        file_path: str | Path | None,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        diagnostic: IO[str] | None = None,
    ) -> None:
        if not file_path:
            raise ConfigurationError(ErrorCode.E101_MISSING_FILE_PATH)
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        RotatingFileHandler.__init__(
            self,
            filename=str(path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        self._init_incidents(diagnostic)

    def emit(self, record: logging.LogRecord) -> None:
        self._begin_write()
        RotatingFileHandler.emit(self, record)
        self._end_write()


def build_handlers(
    settings: LoggingSettings,
    stdout: IO[str] | None = None,
    stderr: IO[str] | None = None,
) -> list[logging.Handler]:
    """Create the handlers selected by ``settings.destination``.

    Raises:
        ConfigurationError: If a file destination has no file path
    """
    formatter = build_formatter(settings.format)
    handlers: list[logging.Handler] = []
    if settings.destination in ("console", "both"):
        handlers.append(ConsoleSink(stdout=stdout, stderr=stderr))
    if settings.destination in ("file", "both"):
        handlers.append(
            RotatingFileSink(
                settings.file_path,
                max_bytes=settings.max_file_size,
                backup_count=settings.max_files,
                diagnostic=stderr,
            )
        )
    for handler in handlers:
        handler.setFormatter(formatter)
    if not handlers:
        handlers.append(logging.NullHandler())
    return handlers


# ---------------------------------------------------------------------------
# Core logger
# ---------------------------------------------------------------------------

PressureListener = Callable[[float], None]


class _LoggerCore:
    """State shared by every view derived from one CoreLogger."""

    def __init__(
        self,
        settings: LoggingSettings,
        pressure_probe: PressureProbe | None,
        time_provider: TimeProvider | None,
        metrics: PipelineMetricsExporter | None,
        stdout: IO[str] | None,
        stderr: IO[str] | None,
    ) -> None:
        self.time = time_provider or get_default_time_provider()
        self.probe: PressureProbe = pressure_probe or MemoryProbe(settings.memory_ceiling_bytes)
        self.metrics = metrics
        self.stdout = stdout
        self.stderr = stderr
        self.buffer: RingBuffer[LogRecord] = RingBuffer(settings.buffer_size)
        self.usage: dict[str, dict[str, Any]] = {}
        self.component_stats: dict[str, int] = {}
        self.timers: dict[str, float] = {}
        self.listeners: list[PressureListener] = []
        self.emergency = False
        self.last_pressure = 0.0
        self.closed = False
        self.lock = threading.RLock()

        # Not registered with the logging manager: each core owns its handlers.
        self.stdlib_logger = logging.Logger(f"flowlog.pipeline.{id(self):x}", logging.DEBUG)
        self.stdlib_logger.propagate = False
        self.settings = settings
        self.level = LogLevel.parse(settings.level)
        self._install(settings)

    def _install(self, settings: LoggingSettings) -> None:
        handlers = build_handlers(settings, self.stdout, self.stderr)
        for handler in list(self.stdlib_logger.handlers):
            self.stdlib_logger.removeHandler(handler)
            handler.close()
        for handler in handlers:
            self.stdlib_logger.addHandler(handler)
        for existing in list(self.stdlib_logger.filters):
            self.stdlib_logger.removeFilter(existing)
        if settings.trace_context:
            self.stdlib_logger.addFilter(TraceContextFilter())

    def reconfigure(self, settings: LoggingSettings) -> None:
        level = LogLevel.parse(settings.level)
        self._install(settings)
        with self.lock:
            if settings.buffer_size != self.buffer.capacity:
                previous = self.buffer.get_all()
                self.buffer = RingBuffer(settings.buffer_size)
                for entry in previous:
                    self.buffer.push(entry)
        self.settings = settings
        self.level = level

    def sample(self) -> float:
        pressure = float(self.probe())
        self.last_pressure = pressure
        if self.metrics is not None:
            self.metrics.set_memory_pressure(pressure)
        for listener in list(self.listeners):
            listener(pressure)
        return pressure

    def dispatch(self, entry: LogRecord, *, buffered: bool | None = None) -> None:
        """Hand ``entry`` to the sinks.

        While degraded, records bypass the ring buffer unless ``buffered`` is
        forced, so the memory released on entering emergency mode stays free.
        """
        if buffered is None:
            buffered = not self.emergency
        if buffered:
            with self.lock:
                self.buffer.push(entry)
        if self.closed:
            return
        stdlib_record = self.stdlib_logger.makeRecord(
            self.stdlib_logger.name,
            entry.level.to_stdlib(),
            "(flowlog)",
            0,
            entry.message,
            None,
            None,
            extra={RECORD_ATTR: entry},
        )
        self.stdlib_logger.handle(stdlib_record)
        if self.metrics is not None:
            self.metrics.record_emitted(entry.level.name, entry.component)

    def dropped(self, reason: str) -> None:
        if self.metrics is not None:
            self.metrics.record_dropped(reason)

    def close(self) -> None:
        self.closed = True
        for handler in list(self.stdlib_logger.handlers):
            self.stdlib_logger.removeHandler(handler)
            handler.close()


class CoreLogger:
    """Structured, memory-aware logger.

    ``with_component``, ``with_correlation_id``, ``with_session_id`` and
    ``child`` return new views. Views share sinks, buffer, usage counters and
    emergency state with their parent but carry their own immutable context.

    Example:
        >>> log = CoreLogger(LoggingSettings(level="debug", destination="none"))
        >>> request_log = log.with_component("MCP").with_correlation_id("1700-abc")
        >>> request_log.info("tools/list", {"count": 3})
    """

    def __init__(
        self,
        settings: LoggingSettings | None = None,
        *,
        context: LogContext | None = None,
        pressure_probe: PressureProbe | None = None,
        time_provider: TimeProvider | None = None,
        metrics: PipelineMetricsExporter | None = None,
        stdout: IO[str] | None = None,
        stderr: IO[str] | None = None,
    ) -> None:
        self._core = _LoggerCore(
            settings or LoggingSettings(),
            pressure_probe,
            time_provider,
            metrics,
            stdout,
            stderr,
        )
        self._context = context or LogContext()
        self._extra: Mapping[str, Any] = _EMPTY

    @classmethod
    def _view(
        cls, core: _LoggerCore, context: LogContext, extra: Mapping[str, Any]
    ) -> CoreLogger:
        view = cls.__new__(cls)
        view._core = core
        view._context = context
        view._extra = extra
        return view

    # -- context ------------------------------------------------------------

    @property
    def context(self) -> LogContext:
        return self._context

    @property
    def component(self) -> str:
        return self._context.component

    @property
    def correlation_id(self) -> str | None:
        return self._context.correlation_id

    @property
    def session_id(self) -> str | None:
        return self._context.session_id

    @property
    def level(self) -> LogLevel:
        return self._core.level

    @property
    def settings(self) -> LoggingSettings:
        return self._core.settings

    def with_component(self, component: Component | str) -> CoreLogger:
        return self._view(self._core, self._context.with_component(component), self._extra)

    def with_correlation_id(self, correlation_id: str) -> CoreLogger:
        return self._view(self._core, self._context.with_correlation_id(correlation_id), self._extra)

    def with_session_id(self, session_id: str) -> CoreLogger:
        return self._view(self._core, self._context.with_session_id(session_id), self._extra)

    def child(self, **extra: Any) -> CoreLogger:
        """View with additional free-form context merged over this one's."""
        merged = dict(self._extra)
        merged.update(extra)
        return self._view(self._core, self._context, MappingProxyType(merged))

    # -- logging ------------------------------------------------------------

    def debug(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self._log(LogLevel.DEBUG, message, meta)

    def info(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self._log(LogLevel.INFO, message, meta)

    def warn(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self._log(LogLevel.WARN, message, meta)

    warning = warn

    def error(
        self,
        message: str,
        error: BaseException | Any = None,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        self._log(LogLevel.ERROR, message, meta, error=error)

    def debug_component(
        self,
        component: Component | str,
        message: str,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        name = component_name(component)
        stats = self._core.component_stats
        stats[name] = stats.get(name, 0) + 1
        self._log(LogLevel.DEBUG, message, meta, component=name)

    def debug_if(
        self,
        predicate: Callable[[], bool],
        message: str,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        """Emit ``message`` at DEBUG only when ``predicate()`` is true.

        The predicate is not evaluated when debug output is off. If it raises,
        a warning is logged instead and the message is suppressed.
        """
        if not self.debug_enabled():
            return
        try:
            wanted = predicate()
        except Exception as exc:
            self.warn(
                ERROR_MESSAGES[ErrorCode.E401_PREDICATE_FAILED],
                {"error": serialize_error(exc), "original_message": message},
            )
            return
        if wanted:
            self.debug(message, meta)

    def debug_lazy(
        self,
        factory: Callable[[], str],
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        if not self.debug_enabled():
            return
        try:
            message = factory()
        except Exception as exc:
            self.warn(
                ERROR_MESSAGES[ErrorCode.E402_MESSAGE_FACTORY_FAILED],
                {"error": serialize_error(exc)},
            )
            return
        self.debug(message, meta)

    def debug_enabled(self) -> bool:
        return self._core.level <= LogLevel.DEBUG and not self._core.emergency

    def _log(
        self,
        level: LogLevel,
        message: str,
        meta: Mapping[str, Any] | None,
        *,
        error: Any = None,
        component: str | None = None,
        operation_id: str | None = None,
        performance: PerformanceInfo | None = None,
    ) -> None:
        core = self._core
        if level < core.level:
            core.dropped("level")
            return
        if level == LogLevel.DEBUG and core.emergency:
            core.dropped("emergency")
            return

        pressure = core.sample()
        if not core.emergency and pressure > core.settings.emergency_threshold:
            self.enable_emergency_mode()
            core.dropped("pressure_breach")
            return

        context = dict(self._extra)
        if meta:
            context.update(meta)
        core.dispatch(
            LogRecord(
                timestamp=isoformat(core.time),
                level=level,
                message=message,
                component=component or self._context.component,
                context=context,
                error=error,
                correlation_id=self._context.correlation_id,
                session_id=self._context.session_id,
                operation_id=operation_id,
                performance=performance,
            )
        )

    def _direct(self, level: LogLevel, message: str, *, buffered: bool | None = None) -> None:
        """Write without sampling or level filtering."""
        core = self._core
        core.dispatch(
            LogRecord(
                timestamp=isoformat(core.time),
                level=level,
                message=message,
                component=self._context.component,
                context=dict(self._extra),
                correlation_id=self._context.correlation_id,
                session_id=self._context.session_id,
            ),
            buffered=buffered,
        )

    # -- usage analytics ----------------------------------------------------

    def track_usage(self, symbol: str, location: str) -> None:
        if self._core.emergency:
            return
        entry = self._core.usage.get(symbol)
        if entry is None:
            self._core.usage[symbol] = {"count": 1, "locations": {location: None}}
        else:
            entry["count"] += 1
            entry["locations"][location] = None

    def get_usage_analytics(self) -> UsageReport:
        core = self._core
        symbol_usage = {
            symbol: SymbolUsage(entry["count"], tuple(entry["locations"]))
            for symbol, entry in core.usage.items()
        }
        return UsageReport(
            total_calls=sum(usage.count for usage in symbol_usage.values()),
            symbol_usage=MappingProxyType(symbol_usage),
            component_breakdown=MappingProxyType(dict(core.component_stats)),
            memory_pressure=self.get_memory_pressure(),
            avg_response_time=self._average_duration(),
        )

    def _average_duration(self) -> float:
        durations = [
            entry.performance.duration_ms
            for entry in self._core.buffer.get_all()
            if entry.performance is not None and entry.performance.duration_ms
        ]
        if not durations:
            return 0.0
        return sum(durations) / len(durations)

    # -- timing -------------------------------------------------------------

    def time_start(self, operation_id: str) -> None:
        if self._core.emergency:
            return
        self._core.timers[operation_id] = monotonic_ms(self._core.time)

    def time_end(
        self,
        operation_id: str,
        message: str | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> float | None:
        """Stop the stopwatch for ``operation_id`` and log its duration.

        Returns the duration in milliseconds, or None when no stopwatch was
        running for that id.
        """
        if self._core.emergency:
            return None
        start = self._core.timers.pop(operation_id, None)
        if start is None:
            return None
        duration = monotonic_ms(self._core.time) - start
        self._log(
            LogLevel.DEBUG,
            message or f"Operation {operation_id} completed",
            meta,
            operation_id=operation_id,
            performance=PerformanceInfo(start_time=start, duration_ms=duration),
        )
        return duration

    # -- memory -------------------------------------------------------------

    def get_memory_pressure(self) -> float:
        """Current pressure reading, without notifying listeners."""
        try:
            return float(self._core.probe())
        except Exception:
            return self._core.last_pressure

    def sample_memory_pressure(self) -> float:
        """Sample pressure and publish it to the registered listeners."""
        return self._core.sample()

    def add_pressure_listener(self, listener: PressureListener) -> None:
        self._core.listeners.append(listener)

    def remove_pressure_listener(self, listener: PressureListener) -> None:
        if listener in self._core.listeners:
            self._core.listeners.remove(listener)

    @property
    def pressure_listener_count(self) -> int:
        return len(self._core.listeners)

    @property
    def is_emergency_mode(self) -> bool:
        return self._core.emergency

    def enable_emergency_mode(self) -> None:
        """Suspend debug output, clear the buffer and log one warning."""
        core = self._core
        if core.emergency:
            return
        core.emergency = True
        with core.lock:
            core.buffer.clear()
        self._direct(LogLevel.WARN, EMERGENCY_WARNING, buffered=True)

    def disable_emergency_mode(self) -> None:
        core = self._core
        if not core.emergency:
            return
        core.emergency = False
        if LogLevel.INFO >= core.level:
            self._direct(LogLevel.INFO, EMERGENCY_RESUMED)

    # -- lifecycle ----------------------------------------------------------

    def get_buffered_records(self) -> list[LogRecord]:
        with self._core.lock:
            return self._core.buffer.get_all()

    def configure(self, settings: LoggingSettings) -> None:
        """Apply new settings to every view sharing this logger's sinks.

        Raises:
            ConfigurationError: If the new settings are invalid
        """
        self._core.reconfigure(settings)

    def close(self) -> None:
        self._core.close()

    def shares_sinks_with(self, other: CoreLogger) -> bool:
        return self._core is other._core
