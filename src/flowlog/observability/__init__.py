"""Adaptive observability pipeline.

Components, leaves first:
- RingBuffer: bounded record history
- CoreLogger: memory-aware structured logger with context views
- EmergencyController: pressure-driven operating tiers
- OutputManager: foreground console lines plus batched session files
- ComponentLoggerFactory: process-wide entry point
- CrossSystemCorrelationTracker: protocol and tool tracing across systems
"""

from .context import (
    PROTOCOL_COMPONENTS,
    Component,
    LogContext,
    generate_correlation_id,
    generate_invocation_id,
    generate_operation_id,
    generate_session_id,
)
from .correlation import (
    CorrelationStatus,
    CrossSystemCorrelation,
    CrossSystemCorrelationTracker,
    ProtocolMessageTrace,
    Redactor,
    ToolInvocationTrace,
    categorize_error,
    validate_envelope,
)
from .emergency import (
    CRITICAL_NOTICE,
    DEFAULT_TIERS,
    EmergencyController,
    EmergencyTier,
    Feature,
    TierLevel,
    TierTransition,
    select_tier,
    validate_tiers,
)
from .factory import (
    ComponentLoggerFactory,
    configure_logging,
    get_logger,
    get_logger_factory,
    reset_logger_factory,
)
from .logger import (
    ConsoleSink,
    CoreLogger,
    JSONFormatter,
    LogLevel,
    LogRecord,
    RotatingFileSink,
    TextFormatter,
    TraceContextFilter,
    UsageReport,
    get_current_trace_context,
)
from .memory import FixedPressureProbe, MemoryProbe, MemorySnapshot
from .metrics import PipelineMetricsExporter
from .output_manager import OperationResult, OutputManager, ProgressInfo
from .ring_buffer import RingBuffer
from .session import (
    SessionDescriptor,
    SessionWriter,
    build_session_path,
    cleanup_old_sessions,
    iter_session_files,
)

__all__ = [
    "CRITICAL_NOTICE",
    "DEFAULT_TIERS",
    "PROTOCOL_COMPONENTS",
    "Component",
    "ComponentLoggerFactory",
    "ConsoleSink",
    "CoreLogger",
    "CorrelationStatus",
    "CrossSystemCorrelation",
    "CrossSystemCorrelationTracker",
    "EmergencyController",
    "EmergencyTier",
    "Feature",
    "FixedPressureProbe",
    "JSONFormatter",
    "LogContext",
    "LogLevel",
    "LogRecord",
    "MemoryProbe",
    "MemorySnapshot",
    "OperationResult",
    "OutputManager",
    "PipelineMetricsExporter",
    "ProgressInfo",
    "ProtocolMessageTrace",
    "Redactor",
    "RingBuffer",
    "RotatingFileSink",
    "SessionDescriptor",
    "SessionWriter",
    "TextFormatter",
    "TierLevel",
    "TierTransition",
    "ToolInvocationTrace",
    "TraceContextFilter",
    "UsageReport",
    "build_session_path",
    "categorize_error",
    "cleanup_old_sessions",
    "configure_logging",
    "generate_correlation_id",
    "generate_invocation_id",
    "generate_operation_id",
    "generate_session_id",
    "get_current_trace_context",
    "get_logger",
    "get_logger_factory",
    "iter_session_files",
    "reset_logger_factory",
    "select_tier",
    "validate_envelope",
    "validate_tiers",
]
