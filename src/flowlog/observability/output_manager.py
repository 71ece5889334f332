"""Dual-stream output: foreground console lines plus batched session files.

The foreground stream is synchronous and unbuffered, one marker-prefixed line
per call. The session stream collects JSON lines and hands them to a
``SessionWriter`` in batches sized by the active emergency tier.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING, Any

from flowlog.utils.errors import ERROR_MESSAGES, ErrorCode, serialize_error
from flowlog.utils.time_provider import (
    TimeProvider,
    get_default_time_provider,
    isoformat,
    monotonic_ms,
)

from .context import generate_operation_id, is_protocol_component
from .correlation import Redactor
from .emergency import (
    CRITICAL_NOTICE,
    DEFAULT_TIERS,
    EmergencyController,
    EmergencyTier,
    Feature,
    TierLevel,
    TierTransition,
)
from .logger import CoreLogger, LogLevel
from .session import SessionDescriptor, SessionWriter

if TYPE_CHECKING:
    from .metrics import PipelineMetricsExporter

logger = logging.getLogger(__name__)

INFO_MARKER = "ℹ️ "
SUCCESS_MARKER = "✅"
WARNING_MARKER = "⚠️ "
ERROR_MARKER = "❌"
START_MARKER = "🚀"
PROGRESS_MARKER = "🔄"
COMPLETE_MARKER = "✨"
FAILED_MARKER = "💥"


@dataclass(frozen=True)
class ProgressInfo:
    current: float
    total: float
    message: str | None = None
    operation_id: str | None = None

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return 100.0 * self.current / self.total


@dataclass(frozen=True)
class OperationResult:
    success: bool
    duration_ms: float | None = None
    error: Any = None
    data: Any = None


@dataclass
class _Operation:
    name: str
    started_ms: float
    session_id: str | None


class OutputManager:
    """Foreground console output plus a batched, tier-aware session log.

    Each manager owns an ``EmergencyController`` subscribed to its core
    logger's pressure samples. Tier transitions flush pending session lines,
    resize batching and print one notice; reaching CRITICAL shuts the session
    stream down for the rest of the process.
    """

    def __init__(
        self,
        command: str,
        core_logger: CoreLogger,
        session: SessionDescriptor,
        writer: SessionWriter | None = None,
        *,
        tiers: Iterable[EmergencyTier] = DEFAULT_TIERS,
        redactor: Redactor | None = None,
        time_provider: TimeProvider | None = None,
        metrics: PipelineMetricsExporter | None = None,
        stdout: IO[str] | None = None,
        stderr: IO[str] | None = None,
        queue_size: int = 64,
        on_close: Callable[[OutputManager], None] | None = None,
    ) -> None:
        self.command = command
        self._on_close = on_close
        self.session = session
        self._logger = core_logger.with_session_id(session.session_id)
        self._time = time_provider or get_default_time_provider()
        self._metrics = metrics
        self._stdout = stdout
        self._stderr = stderr
        self._redactor = redactor or Redactor()
        self._protocol_bound = is_protocol_component(core_logger.component)

        self._writer = writer or SessionWriter(
            session.file_path,
            queue_size=queue_size,
            on_error=self._on_append_error,
            metrics=metrics,
        )
        self._pending: list[str] = []
        self._last_flush_ms = monotonic_ms(self._time)
        self._operations: dict[str, _Operation] = {}
        self._critical = False
        self._critical_notice_shown = False
        self._failure_reported = False
        self._closed = False

        self.controller = EmergencyController(
            tiers,
            notify=self._notice,
            time_provider=self._time,
            metrics=metrics,
        )
        self.controller.add_listener(self)
        self.apply_tier(self.controller.current_tier)
        self._logger.add_pressure_listener(self._on_pressure)

    # -- properties ---------------------------------------------------------

    @property
    def logger(self) -> CoreLogger:
        return self._logger

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def writer(self) -> SessionWriter:
        return self._writer

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def current_tier(self) -> EmergencyTier:
        return self.controller.current_tier

    def get_session_path(self) -> str:
        return str(self.session.file_path)

    # -- foreground stream --------------------------------------------------

    def user_info(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self._sample_pressure()
        self._print(INFO_MARKER, message, meta)
        self._queue_if_allowed(LogLevel.INFO, message, meta, kind="info")

    def user_success(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self._sample_pressure()
        self._print(SUCCESS_MARKER, message, meta)
        self._queue_if_allowed(LogLevel.INFO, message, meta, kind="success")

    def user_warning(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self._sample_pressure()
        self._print(WARNING_MARKER, message, meta)
        self._queue_if_allowed(LogLevel.WARN, message, meta, kind="warning")

    def user_error(
        self,
        message: str,
        error: BaseException | Any = None,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        """Print an error line; always recorded in the session below CRITICAL."""
        self._sample_pressure()
        self._print(ERROR_MARKER, message, meta)
        self._queue(LogLevel.ERROR, message, meta, kind="error", error=error)

    def debug_session(
        self,
        level: LogLevel | str,
        message: str,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        """Session-only record; never printed."""
        self._sample_pressure()
        self._queue_if_allowed(LogLevel.parse(level), message, meta, kind="debug")

    # -- operations ---------------------------------------------------------

    def start_operation(self, name: str, session_id: str | None = None) -> str:
        self._sample_pressure()
        operation_id = generate_operation_id(self._time)
        self._operations[operation_id] = _Operation(name, monotonic_ms(self._time), session_id)
        self._write_line(
            f"{START_MARKER} {name} started{self._session_suffix(session_id)}"
        )
        self._queue_if_allowed(
            LogLevel.INFO,
            f"{name} started",
            {"operation_id": operation_id},
            kind="operation_start",
        )
        return operation_id

    def update_progress(self, progress: ProgressInfo) -> None:
        self._sample_pressure()
        if self._critical or self.controller.level >= TierLevel.SEVERE:
            return
        percentage = round(progress.percentage)
        label = progress.message or "Progress"
        current = _number(progress.current)
        total = _number(progress.total)
        self._write_line(f"{PROGRESS_MARKER} {label}: {percentage}% ({current}/{total})")
        self._queue_if_allowed(
            LogLevel.DEBUG,
            label,
            {
                "operation_id": progress.operation_id,
                "percentage": progress.percentage,
                "current": progress.current,
                "total": progress.total,
            },
            kind="progress",
        )

    def complete_operation(
        self,
        operation_id: str,
        result: OperationResult | None = None,
    ) -> float | None:
        """Stop the stopwatch and print success or failure.

        Returns:
            Duration in milliseconds, or None for an unknown operation id
            without an explicit duration
        """
        self._sample_pressure()
        operation = self._operations.pop(operation_id, None)
        result = result or OperationResult(success=True)
        name = operation.name if operation is not None else operation_id

        duration = result.duration_ms
        if duration is None and operation is not None:
            duration = monotonic_ms(self._time) - operation.started_ms

        marker = COMPLETE_MARKER if result.success else FAILED_MARKER
        timing = f" ({duration:.0f}ms)" if duration is not None else ""
        self._write_line(f"{marker} {name} complete{timing}")

        meta = {"operation_id": operation_id, "duration_ms": duration, "success": result.success}
        if result.success:
            self._queue_if_allowed(LogLevel.INFO, f"{name} complete", meta, kind="operation_complete")
        else:
            self._queue(
                LogLevel.ERROR,
                f"{name} failed",
                meta,
                kind="operation_complete",
                error=result.error,
            )
        return duration

    # -- tier listener ------------------------------------------------------

    def flush_pending(self) -> None:
        if not self._pending or self._critical:
            return
        batch, self._pending = self._pending, []
        self._last_flush_ms = monotonic_ms(self._time)
        self._writer.submit(batch)

    def apply_tier(self, tier: EmergencyTier) -> None:
        self.session.batch_size = tier.batch_size
        self.session.flush_interval_ms = tier.flush_interval_ms

    def enter_critical(self) -> None:
        if self._critical:
            return
        self._critical = True
        self._pending.clear()
        self._writer.close(wait=False)
        self.apply_tier(self.controller.current_tier)

    def critical_memory_shutdown(self) -> None:
        """One-way switch to console-only output. Safe to call repeatedly."""
        if self._critical:
            return
        self.enter_critical()
        self._notice(CRITICAL_NOTICE)

    # -- emergency ----------------------------------------------------------

    def activate_emergency_mode(self, pressure: float, reason: str) -> TierTransition | None:
        return self.controller.force(pressure, reason)

    def is_emergency_mode(self) -> bool:
        return self._critical or self.controller.is_emergency() or self._logger.is_emergency_mode

    def get_memory_pressure(self) -> float:
        return self._logger.get_memory_pressure()

    def _on_pressure(self, pressure: float) -> None:
        self.controller.evaluate(pressure)

    def _sample_pressure(self) -> None:
        # Sampled on every entry point; skipped once the session stream is down.
        if self._critical or self._closed:
            return
        self._logger.sample_memory_pressure()

    # -- session stream -----------------------------------------------------

    def flush_session(self, wait: bool = True) -> None:
        self.flush_pending()
        if wait and not self._critical:
            self._writer.drain()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.flush_pending()
        self._writer.close(wait=not self._critical)
        self._logger.remove_pressure_listener(self._on_pressure)
        self.controller.remove_listener(self)
        if self._on_close is not None:
            self._on_close(self)

    def _queue_if_allowed(
        self,
        level: LogLevel,
        message: str,
        meta: Mapping[str, Any] | None,
        *,
        kind: str,
    ) -> None:
        if not self.controller.allows(Feature.SESSION_FILES):
            return
        self._queue(level, message, meta, kind=kind)

    def _queue(
        self,
        level: LogLevel,
        message: str,
        meta: Mapping[str, Any] | None,
        *,
        kind: str,
        error: Any = None,
    ) -> None:
        if self._critical or self._closed:
            return
        entry: dict[str, Any] = {
            "timestamp": isoformat(self._time),
            "level": level.name,
            "kind": kind,
            "message": message,
            "command": self.command,
            "session_id": self.session.session_id,
            "component": self._logger.component,
        }
        if self._logger.correlation_id:
            entry["correlation_id"] = self._logger.correlation_id
        if meta:
            deep = self.controller.allows(Feature.REDACTION)
            entry["meta"] = self._redactor.redact(dict(meta), recursive=deep)
        if error is not None:
            entry["error"] = serialize_error(error)
        self._pending.append(json.dumps(entry, default=str, ensure_ascii=False))

        elapsed = monotonic_ms(self._time) - self._last_flush_ms
        if (
            len(self._pending) >= self.session.batch_size
            or elapsed >= self.session.flush_interval_ms
        ):
            self.flush_pending()

    def _on_append_error(self, exc: BaseException) -> None:
        if self._failure_reported or self.controller.level != TierLevel.NORMAL:
            return
        self._failure_reported = True
        message = ERROR_MESSAGES[ErrorCode.E203_SESSION_APPEND_FAILED]
        self._write(self._stderr or sys.stderr, f"{WARNING_MARKER} {message}: {exc}")

    # -- console ------------------------------------------------------------

    def _foreground(self) -> IO[str]:
        if self._protocol_bound:
            return self._stderr or sys.stderr
        return self._stdout or sys.stdout

    def _session_suffix(self, session_id: str | None = None) -> str:
        sid = session_id or self.session.session_id
        return f" [sess:{sid[-6:]}]" if sid else ""

    def _print(self, marker: str, message: str, meta: Mapping[str, Any] | None) -> None:
        session_id = None
        if meta and isinstance(meta.get("session_id"), str):
            session_id = meta["session_id"]
        self._write_line(f"{marker} {message}{self._session_suffix(session_id)}")

    def _notice(self, notice: str) -> None:
        if notice == CRITICAL_NOTICE:
            if self._critical_notice_shown:
                return
            self._critical_notice_shown = True
        self._write_line(notice)

    def _write_line(self, line: str) -> None:
        self._write(self._foreground(), line)

    @staticmethod
    def _write(stream: IO[str], line: str) -> None:
        try:
            stream.write(line + "\n")
            stream.flush()
        except (OSError, ValueError) as exc:
            logger.debug("Console write failed: %s", exc)

    # -- logger delegation --------------------------------------------------

    def debug(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self._logger.debug(message, meta)

    def info(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self._logger.info(message, meta)

    def warn(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self._logger.warn(message, meta)

    def error(
        self,
        message: str,
        error: BaseException | Any = None,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        self._logger.error(message, error, meta)


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"
