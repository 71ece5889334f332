"""Cross-system correlation and protocol tracing.

Tracks correlation records shared with a cooperating external system, traces
JSON-RPC 2.0 envelopes crossing the process boundary and records tool
invocations with redacted parameters.

Malformed envelopes are recorded, never rejected. All output from this module
goes to the diagnostic stream (stderr) because stdout carries the protocol.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from threading import Lock
from typing import TYPE_CHECKING, Any

from flowlog.utils.errors import ERROR_MESSAGES, ErrorCode, serialize_error
from flowlog.utils.time_provider import (
    TimeProvider,
    get_default_time_provider,
    monotonic_ms,
)

from .context import Component, generate_correlation_id, generate_invocation_id

if TYPE_CHECKING:
    from flowlog.config.schema import CorrelationSettings

    from .logger import CoreLogger
    from .metrics import PipelineMetricsExporter

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
LOCAL_SYSTEM = "flowlog"

DEFAULT_SENSITIVE_PATTERNS: tuple[str, ...] = (
    "password",
    "passwd",
    "secret",
    "token",
    "api[_-]?key",
    "auth",
    "credential",
    "private[_-]?key",
)
REDACTED = "[REDACTED]"


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


class Redactor:
    """Replace values whose keys look sensitive.

    Example:
        >>> Redactor().redact({"username": "ada", "password": "x", "note": "hi"})
        {'username': 'ada', 'password': '[REDACTED]', 'note': 'hi'}
    """

    def __init__(
        self,
        patterns: Iterable[str] = DEFAULT_SENSITIVE_PATTERNS,
        marker: str = REDACTED,
        recursive: bool = True,
    ) -> None:
        pattern_list = list(patterns)
        self._pattern = (
            re.compile("|".join(f"(?:{p})" for p in pattern_list), re.IGNORECASE)
            if pattern_list
            else None
        )
        self.marker = marker
        self.recursive = recursive

    def is_sensitive(self, key: Any) -> bool:
        return self._pattern is not None and bool(self._pattern.search(str(key)))

    def redact(self, value: Any, recursive: bool | None = None) -> Any:
        """Return a redacted copy of ``value``; the input is not modified."""
        deep = self.recursive if recursive is None else recursive
        return self._redact(value, deep, top=True)

    def _redact(self, value: Any, deep: bool, top: bool) -> Any:
        if isinstance(value, Mapping):
            if not top and not deep:
                return dict(value)
            return {
                key: self.marker if self.is_sensitive(key) else self._redact(item, deep, False)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)) and deep:
            return [self._redact(item, deep, False) for item in value]
        if isinstance(value, (list, tuple)):
            return list(value)
        return value


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class CorrelationStatus(str, Enum):
    ACTIVE = "active"
    LINKED = "linked"
    CLOSED = "closed"


@dataclass(frozen=True)
class CrossSystemCorrelation:
    correlation_id: str
    initiating_system: str
    local_session_id: str
    created_at: float
    remote_session_id: str | None = None
    correlation_chain: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    status: CorrelationStatus = CorrelationStatus.ACTIVE
    closed_at: float | None = None

    @property
    def is_open(self) -> bool:
        return self.status is not CorrelationStatus.CLOSED


@dataclass
class ToolInvocationTrace:
    invocation_id: str
    tool_name: str
    sanitized_parameters: Any
    start_time: float
    correlation_id: str | None = None
    session_id: str | None = None
    success: bool | None = None
    result: Any = None
    error: Any = None
    end_time: float | None = None
    duration_ms: float | None = None
    _started_ms: float = field(default=0.0, repr=False)

    @property
    def completed(self) -> bool:
        return self.end_time is not None


@dataclass(frozen=True)
class ProtocolMessageTrace:
    direction: str
    kind: str
    compliant: bool
    timestamp: float
    payload_size: int
    payload_hash: str
    method: str | None = None
    request_id: str | int | None = None
    session_id: str | None = None
    error_code: int | None = None
    error_category: str | None = None
    violations: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Envelope checks
# ---------------------------------------------------------------------------

MESSAGE_KINDS = ("request", "response", "notification", "error")


def infer_kind(payload: Any) -> str:
    if not isinstance(payload, Mapping):
        return "request"
    if "method" in payload:
        return "request" if "id" in payload else "notification"
    if "error" in payload:
        return "error"
    return "response"


def validate_envelope(payload: Any, kind: str | None = None) -> list[str]:
    """Return the JSON-RPC 2.0 rules ``payload`` breaks (empty if compliant)."""
    if not isinstance(payload, Mapping):
        return ["payload is not an object"]

    kind = kind or infer_kind(payload)
    problems: list[str] = []

    if payload.get("jsonrpc") != JSONRPC_VERSION:
        problems.append("jsonrpc must be '2.0'")

    if kind != "notification" and "id" not in payload:
        problems.append("id is required")

    has_result = "result" in payload
    has_error = "error" in payload
    if "method" in payload:
        if not isinstance(payload["method"], str):
            problems.append("method must be a string")
        if has_result or has_error:
            problems.append("a request must not carry result or error")
    elif has_result == has_error:
        problems.append("a response must carry exactly one of result or error")

    if has_error:
        error = payload["error"]
        if not isinstance(error, Mapping):
            problems.append("error must be an object")
        else:
            code = error.get("code")
            if not isinstance(code, int) or isinstance(code, bool):
                problems.append("error.code must be an integer")
            if not isinstance(error.get("message"), str):
                problems.append("error.message must be a string")

    return problems


def categorize_error(error: Mapping[str, Any]) -> str:
    """protocol / transport / correlation / application."""
    code = error.get("code")
    if isinstance(code, int) and not isinstance(code, bool):
        if -32099 <= code <= -32000:
            return "protocol"
        if -32700 <= code <= -32600:
            return "transport"
    message = str(error.get("message", "")).lower()
    if "correlation" in message or "session" in message:
        return "correlation"
    return "application"


def _payload_summary(payload: Any) -> tuple[int, str]:
    try:
        encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    except (TypeError, ValueError):
        encoded = repr(payload).encode("utf-8")
    return len(encoded), hashlib.sha256(encoded).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class CrossSystemCorrelationTracker:
    """Correlation records, protocol traces and tool invocation traces.

    Linked and closed correlations, tool invocations and protocol traces are
    swept opportunistically once ``retention_seconds`` have passed. Active
    correlations are never swept.
    """

    def __init__(
        self,
        base_logger: CoreLogger,
        *,
        settings: CorrelationSettings | None = None,
        redactor: Redactor | None = None,
        time_provider: TimeProvider | None = None,
        metrics: PipelineMetricsExporter | None = None,
        system_name: str = LOCAL_SYSTEM,
    ) -> None:
        self._logger = base_logger.with_component(Component.MCP)
        self._time = time_provider or get_default_time_provider()
        self._metrics = metrics
        self.system_name = system_name

        if settings is not None:
            self.retention_seconds = settings.retention_seconds
            self.sweep_interval_seconds = settings.sweep_interval_seconds
            self.redactor = redactor or Redactor(
                settings.redaction_patterns,
                settings.redaction_marker,
                settings.redact_recursively,
            )
        else:
            self.retention_seconds = 3600.0
            self.sweep_interval_seconds = 60.0
            self.redactor = redactor or Redactor()

        self._lock = Lock()
        self._correlations: dict[str, CrossSystemCorrelation] = {}
        self._invocations: dict[str, ToolInvocationTrace] = {}
        self._protocol_traces: list[ProtocolMessageTrace] = []
        self._last_sweep = self._time.now()

        self._total_messages = 0
        self._compliant_messages = 0
        self._violations = 0
        self._cross_system_links = 0

    # -- correlations -------------------------------------------------------

    def create_correlation(
        self,
        local_session_id: str,
        metadata: Mapping[str, Any] | None = None,
        remote_session_id: str | None = None,
        initiating_system: str | None = None,
    ) -> str:
        self._maybe_sweep()
        correlation_id = generate_correlation_id(self._time)
        record = CrossSystemCorrelation(
            correlation_id=correlation_id,
            initiating_system=initiating_system or self.system_name,
            local_session_id=local_session_id,
            created_at=self._time.now(),
            remote_session_id=remote_session_id,
            correlation_chain=(correlation_id,),
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._correlations[correlation_id] = record
        self._count_correlation("created")
        self._logger.with_correlation_id(correlation_id).debug(
            "Cross-system correlation created",
            {"local_session_id": local_session_id, "remote_session_id": remote_session_id},
        )
        return correlation_id

    def link_external(
        self,
        correlation_id: str,
        external_session_id: str,
        external_correlation_id: str | None = None,
    ) -> bool:
        """Attach the external system's identity to an open correlation.

        Returns:
            False (and records nothing) if the correlation is unknown or closed
        """
        with self._lock:
            record = self._correlations.get(correlation_id)
            if record is None or not record.is_open:
                linked = None
            else:
                entry = external_correlation_id or external_session_id
                linked = replace(
                    record,
                    remote_session_id=external_session_id,
                    correlation_chain=record.correlation_chain + (entry,),
                    status=CorrelationStatus.LINKED,
                )
                self._correlations[correlation_id] = linked
                self._cross_system_links += 1

        if linked is None:
            self._logger.debug(
                ERROR_MESSAGES[ErrorCode.E302_UNKNOWN_CORRELATION],
                {"correlation_id": correlation_id, "error_code": ErrorCode.E302_UNKNOWN_CORRELATION.value},
            )
            return False

        self._count_correlation("linked")
        self._logger.with_correlation_id(correlation_id).debug(
            "Cross-system correlation linked",
            {"external_session_id": external_session_id, "chain_length": len(linked.correlation_chain)},
        )
        return True

    def close_correlation(self, correlation_id: str) -> bool:
        with self._lock:
            record = self._correlations.get(correlation_id)
            if record is None or not record.is_open:
                return False
            self._correlations[correlation_id] = replace(
                record, status=CorrelationStatus.CLOSED, closed_at=self._time.now()
            )
        self._count_correlation("closed")
        return True

    def get_correlation(self, correlation_id: str) -> CrossSystemCorrelation | None:
        return self._correlations.get(correlation_id)

    def find_by_session(self, session_id: str) -> CrossSystemCorrelation | None:
        for record in list(self._correlations.values()):
            if session_id in (record.local_session_id, record.remote_session_id):
                return record
        return None

    # -- protocol messages --------------------------------------------------

    def trace_protocol_message(
        self,
        direction: str,
        kind: str | None,
        payload: Any,
        session_id: str | None = None,
    ) -> ProtocolMessageTrace:
        """Record one envelope crossing the boundary.

        Non-compliant envelopes count as exactly one violation each.
        """
        self._maybe_sweep()
        kind = kind or infer_kind(payload)
        problems = validate_envelope(payload, kind)
        size, digest = _payload_summary(payload)

        method = request_id = None
        error_code = error_category = None
        if isinstance(payload, Mapping):
            method = payload.get("method") if isinstance(payload.get("method"), str) else None
            raw_id = payload.get("id")
            request_id = raw_id if isinstance(raw_id, (str, int)) else None
            error = payload.get("error")
            if isinstance(error, Mapping):
                code = error.get("code")
                error_code = code if isinstance(code, int) and not isinstance(code, bool) else None
                error_category = categorize_error(error)

        trace = ProtocolMessageTrace(
            direction=direction,
            kind=kind,
            compliant=not problems,
            timestamp=self._time.now(),
            payload_size=size,
            payload_hash=digest,
            method=method,
            request_id=request_id,
            session_id=session_id,
            error_code=error_code,
            error_category=error_category,
            violations=tuple(problems),
        )

        with self._lock:
            self._protocol_traces.append(trace)
            self._total_messages += 1
            if problems:
                self._violations += 1
            else:
                self._compliant_messages += 1

        if self._metrics is not None:
            self._metrics.record_protocol_message(direction, trace.compliant)

        meta = {
            "direction": direction,
            "kind": kind,
            "method": method,
            "request_id": request_id,
            "payload_size": size,
        }
        if problems:
            meta["violations"] = list(problems)
            meta["error_code"] = ErrorCode.E301_NON_COMPLIANT_ENVELOPE.value
            self._logger.warn(ERROR_MESSAGES[ErrorCode.E301_NON_COMPLIANT_ENVELOPE], meta)
        else:
            self._logger.debug(f"{direction} {kind}", meta)
        return trace

    def get_protocol_traces(self) -> list[ProtocolMessageTrace]:
        return list(self._protocol_traces)

    # -- tool invocations ---------------------------------------------------

    def trace_tool_invocation(
        self,
        tool_name: str,
        parameters: Any,
        correlation_id: str | None = None,
        session_id: str | None = None,
    ) -> str:
        self._maybe_sweep()
        invocation_id = generate_invocation_id(self._time)
        trace = ToolInvocationTrace(
            invocation_id=invocation_id,
            tool_name=tool_name,
            sanitized_parameters=self.redactor.redact(parameters),
            start_time=self._time.now(),
            correlation_id=correlation_id,
            session_id=session_id,
            _started_ms=monotonic_ms(self._time),
        )
        with self._lock:
            self._invocations[invocation_id] = trace
        if self._metrics is not None:
            self._metrics.record_tool_invocation("started")
        self._logger.debug(
            f"Tool invocation started: {tool_name}",
            {
                "invocation_id": invocation_id,
                "correlation_id": correlation_id,
                "parameters": trace.sanitized_parameters,
            },
        )
        return invocation_id

    def complete_tool_invocation(
        self,
        invocation_id: str,
        result: Any = None,
        error: BaseException | Any = None,
    ) -> bool:
        with self._lock:
            trace = self._invocations.get(invocation_id)
            if trace is None or trace.completed:
                found = False
            else:
                found = True
                trace.end_time = self._time.now()
                trace.duration_ms = monotonic_ms(self._time) - trace._started_ms
                trace.success = error is None
                trace.result = self.redactor.redact(result) if error is None else None
                trace.error = serialize_error(error) if error is not None else None

        if not found:
            self._logger.debug(
                ERROR_MESSAGES[ErrorCode.E303_UNKNOWN_INVOCATION],
                {"invocation_id": invocation_id},
            )
            return False

        outcome = "success" if trace.success else "failure"
        if self._metrics is not None:
            self._metrics.record_tool_invocation(outcome)
        meta = {
            "invocation_id": invocation_id,
            "duration_ms": trace.duration_ms,
            "success": trace.success,
        }
        if trace.success:
            self._logger.debug(f"Tool invocation completed: {trace.tool_name}", meta)
        else:
            self._logger.error(f"Tool invocation failed: {trace.tool_name}", error, meta)
        return True

    def get_tool_invocation(self, invocation_id: str) -> ToolInvocationTrace | None:
        trace = self._invocations.get(invocation_id)
        return replace(trace) if trace is not None else None

    # -- aggregates ---------------------------------------------------------

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            correlations = list(self._correlations.values())
            invocations = list(self._invocations.values())
            total = self._total_messages
            compliant = self._compliant_messages
            violations = self._violations
            links = self._cross_system_links

        completed = [trace for trace in invocations if trace.completed]
        successful = sum(1 for trace in completed if trace.success)
        durations = [trace.duration_ms for trace in completed if trace.duration_ms is not None]
        by_status = {status.value: 0 for status in CorrelationStatus}
        for record in correlations:
            by_status[record.status.value] += 1

        return {
            "protocol_compliance": {
                "total_messages": total,
                "compliant_messages": compliant,
                "violations": violations,
            },
            "correlation": {
                "active": by_status[CorrelationStatus.ACTIVE.value],
                "linked": by_status[CorrelationStatus.LINKED.value],
                "closed": by_status[CorrelationStatus.CLOSED.value],
                "cross_system_links": links,
            },
            "tool_invocations": {
                "total": len(invocations),
                "successful": successful,
                "failed": len(completed) - successful,
                "in_flight": len(invocations) - len(completed),
                "avg_execution_time_ms": sum(durations) / len(durations) if durations else 0.0,
            },
        }

    @property
    def violations(self) -> int:
        return self._violations

    def sweep_expired(self, now: float | None = None) -> int:
        """Drop non-active correlations, invocations and traces past retention.

        Correlations age from ``closed_at`` when closed and from ``created_at``
        otherwise. Invocations age from ``start_time`` whether or not they
        completed.
        """
        now = self._time.now() if now is None else now
        horizon = now - self.retention_seconds
        removed = 0
        with self._lock:
            for correlation_id, record in list(self._correlations.items()):
                closed_at = record.closed_at if record.closed_at is not None else record.created_at
                if record.status is not CorrelationStatus.ACTIVE and closed_at < horizon:
                    del self._correlations[correlation_id]
                    removed += 1
            for invocation_id, trace in list(self._invocations.items()):
                if trace.start_time < horizon:
                    del self._invocations[invocation_id]
                    removed += 1
            kept = [trace for trace in self._protocol_traces if trace.timestamp >= horizon]
            removed += len(self._protocol_traces) - len(kept)
            self._protocol_traces = kept
            self._last_sweep = now
        if removed:
            logger.debug("Swept %d expired correlation records", removed)
        return removed

    def _maybe_sweep(self) -> None:
        if self._time.now() - self._last_sweep >= self.sweep_interval_seconds:
            self.sweep_expired()

    def _count_correlation(self, event: str) -> None:
        if self._metrics is not None:
            self._metrics.record_correlation(event)

    def shutdown(self) -> None:
        self._logger.info(
            "Correlation tracker shutdown",
            {
                "protocol_traces": len(self._protocol_traces),
                "tool_invocations": len(self._invocations),
                "correlations": len(self._correlations),
                "metrics": self.get_metrics(),
            },
        )
        with self._lock:
            self._protocol_traces.clear()
            self._invocations.clear()
            self._correlations.clear()
