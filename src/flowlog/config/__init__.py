"""Pipeline configuration: pydantic schema plus YAML/environment loader."""

from .loader import ConfigLoader, load_config
from .schema import (
    CorrelationSettings,
    EmergencySettings,
    FlowlogConfig,
    LoggingSettings,
    SessionSettings,
    TierSettings,
    get_default_config,
    validate_config_dict,
)

__all__ = [
    "ConfigLoader",
    "CorrelationSettings",
    "EmergencySettings",
    "FlowlogConfig",
    "LoggingSettings",
    "SessionSettings",
    "TierSettings",
    "get_default_config",
    "load_config",
    "validate_config_dict",
]
