"""Structured error codes and error handling for flowlog.

Error codes follow the pattern: E{category}{number}
- E1xx: Configuration errors
- E2xx: Sink I/O errors
- E3xx: Protocol envelope errors
- E4xx: Lazy evaluation errors
- E5xx: Memory pressure events

Only configuration errors are ever raised to callers. The other categories
describe incidents that the pipeline records and recovers from locally.

Example:
    >>> from flowlog.utils.errors import ConfigurationError, ErrorCode
    >>> raise ConfigurationError(ErrorCode.E101_MISSING_FILE_PATH)
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Standardized error codes for the logging pipeline."""

    # E1xx: Configuration errors
    E100_CONFIG_ERROR = "E100"
    E101_MISSING_FILE_PATH = "E101"
    E102_INVALID_TIER_TABLE = "E102"
    E103_INVALID_CONFIG_FILE = "E103"
    E104_INVALID_LOG_LEVEL = "E104"

    # E2xx: Sink I/O errors
    E200_SINK_ERROR = "E200"
    E201_FILE_WRITE_FAILED = "E201"
    E202_ROTATION_FAILED = "E202"
    E203_SESSION_APPEND_FAILED = "E203"
    E204_SESSION_QUEUE_SATURATED = "E204"

    # E3xx: Protocol envelope errors
    E300_PROTOCOL_ERROR = "E300"
    E301_NON_COMPLIANT_ENVELOPE = "E301"
    E302_UNKNOWN_CORRELATION = "E302"
    E303_UNKNOWN_INVOCATION = "E303"

    # E4xx: Lazy evaluation errors
    E400_EVALUATION_ERROR = "E400"
    E401_PREDICATE_FAILED = "E401"
    E402_MESSAGE_FACTORY_FAILED = "E402"

    # E5xx: Memory pressure events
    E500_MEMORY_PRESSURE = "E500"
    E501_EMERGENCY_MODE = "E501"
    E502_CRITICAL_SHUTDOWN = "E502"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.E100_CONFIG_ERROR: "Configuration error",
    ErrorCode.E101_MISSING_FILE_PATH: "File path required for file logging",
    ErrorCode.E102_INVALID_TIER_TABLE: "Emergency tier table is invalid",
    ErrorCode.E103_INVALID_CONFIG_FILE: "Invalid configuration file",
    ErrorCode.E104_INVALID_LOG_LEVEL: "Unknown log level",
    ErrorCode.E200_SINK_ERROR: "Log sink error",
    ErrorCode.E201_FILE_WRITE_FAILED: "Failed to write to log file",
    ErrorCode.E202_ROTATION_FAILED: "Failed to rotate log file",
    ErrorCode.E203_SESSION_APPEND_FAILED: "Failed to append to session file",
    ErrorCode.E204_SESSION_QUEUE_SATURATED: "Session write queue saturated",
    ErrorCode.E300_PROTOCOL_ERROR: "Protocol error",
    ErrorCode.E301_NON_COMPLIANT_ENVELOPE: "Protocol envelope is not compliant",
    ErrorCode.E302_UNKNOWN_CORRELATION: "Correlation not found",
    ErrorCode.E303_UNKNOWN_INVOCATION: "Tool invocation trace not found",
    ErrorCode.E400_EVALUATION_ERROR: "Evaluation error",
    ErrorCode.E401_PREDICATE_FAILED: "Debug condition evaluation failed",
    ErrorCode.E402_MESSAGE_FACTORY_FAILED: "Lazy debug message generation failed",
    ErrorCode.E500_MEMORY_PRESSURE: "Memory pressure threshold crossed",
    ErrorCode.E501_EMERGENCY_MODE: "Emergency mode enabled - debug logging suspended",
    ErrorCode.E502_CRITICAL_SHUTDOWN: "Critical memory - console-only mode activated",
}


@dataclass
class ErrorDetails:
    """Structured error details for logging.

    Attributes:
        code: Error code enum value
        message: Human-readable error message
        details: Additional error details
        recoverable: Whether the pipeline keeps running after the incident
    """

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    recoverable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "error_code": self.code.value,
            "message": self.message,
            "recoverable": self.recoverable,
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to a flat dictionary suitable for structured logging."""
        log_dict: dict[str, Any] = {
            "error_code": self.code.value,
            "error_message": self.message,
            "recoverable": self.recoverable,
        }
        for key, value in self.details.items():
            log_dict[f"detail_{key}"] = value
        return log_dict


class FlowlogError(Exception):
    """Base exception class for flowlog errors with structured error codes."""

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        self.code = code
        self.message = message or ERROR_MESSAGES.get(code, "Unknown error")
        self.error_details = ErrorDetails(
            code=code,
            message=self.message,
            details=details or {},
            recoverable=recoverable,
        )
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def log(self, level: int = logging.ERROR) -> None:
        """Log the error with structured details."""
        logger.log(level, str(self), extra=self.error_details.to_log_dict())


class ConfigurationError(FlowlogError, ValueError):
    """Raised for invalid pipeline configuration.

    This is the only error category that aborts construction.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E100_CONFIG_ERROR,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code, message, details, recoverable=False)


class SinkError(FlowlogError):
    """A sink failed to write. Always recovered locally."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_SINK_ERROR,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code, message, details, recoverable=True)


def serialize_error(error: BaseException | Any) -> dict[str, Any] | Any:
    """Serialize an exception to ``{name, message, stack}``.

    Non-exception values are returned unchanged so callers may pass arbitrary
    error payloads through.
    """
    if not isinstance(error, BaseException):
        return error
    stack = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    ).rstrip()
    return {
        "name": type(error).__name__,
        "message": str(error),
        "stack": stack,
    }
