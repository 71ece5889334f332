"""Shared utilities: error codes and the clock abstraction."""

from .errors import (
    ConfigurationError,
    ErrorCode,
    ErrorDetails,
    FlowlogError,
    SinkError,
    serialize_error,
)
from .time_provider import (
    DefaultTimeProvider,
    FakeTimeProvider,
    TimeProvider,
    get_default_time_provider,
    reset_default_time_provider,
    set_default_time_provider,
)

__all__ = [
    "ConfigurationError",
    "DefaultTimeProvider",
    "ErrorCode",
    "ErrorDetails",
    "FakeTimeProvider",
    "FlowlogError",
    "SinkError",
    "TimeProvider",
    "get_default_time_provider",
    "reset_default_time_provider",
    "serialize_error",
    "set_default_time_provider",
]
