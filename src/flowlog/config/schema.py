"""Configuration schema and validation for flowlog.

Pydantic models for the logger, the emergency tier table, session files and
the correlation tracker. Everything is validated before any sink is built.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from typing_extensions import Self

from flowlog.utils.errors import ConfigurationError, ErrorCode

if TYPE_CHECKING:
    from flowlog.observability.emergency import EmergencyTier

logger = logging.getLogger(__name__)

_LEVEL_NAMES = ("debug", "info", "warn", "warning", "error")


class LoggingSettings(BaseModel):
    """Core logger configuration."""

    level: str = Field(default="info", description="Minimum level: debug, info, warn or error.")
    format: Literal["json", "text"] = Field(default="json", description="Record format.")
    destination: Literal["console", "file", "both", "none"] = Field(
        default="console", description="Where records are written."
    )
    file_path: str | None = Field(
        default=None, description="Log file path. Required for file and both destinations."
    )
    max_file_size: int = Field(
        default=10 * 1024 * 1024, gt=0, description="Bytes before the log file rotates."
    )
    max_files: int = Field(default=5, ge=0, description="Rotated files kept.")
    buffer_size: int = Field(default=10000, gt=0, description="Ring buffer capacity.")
    memory_ceiling_bytes: int = Field(
        default=1024 * 1024 * 1024, gt=0, description="Process memory treated as 100% pressure."
    )
    emergency_threshold: float = Field(
        default=0.95,
        gt=0.0,
        le=1.0,
        description="Pressure above which debug output is suspended.",
    )
    trace_context: bool = Field(
        default=True, description="Attach OpenTelemetry trace/span ids to records."
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        lowered = v.strip().lower()
        if lowered not in _LEVEL_NAMES:
            raise ValueError(f"level must be one of {list(_LEVEL_NAMES)}, got {v!r}")
        return lowered

    model_config = ConfigDict(extra="forbid")


class TierSettings(BaseModel):
    """One row of the emergency tier table."""

    level: Literal["NORMAL", "ELEVATED", "SEVERE", "CRITICAL"]
    threshold: float = Field(ge=0.0, lt=1.0)
    batch_size: int = Field(ge=0)
    flush_interval_ms: int = Field(ge=0)
    features: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


def _default_tier_settings() -> list[TierSettings]:
    from flowlog.observability.emergency import DEFAULT_TIERS

    return [
        TierSettings(
            level=tier.name,  # type: ignore[arg-type]
            threshold=tier.pressure_threshold,
            batch_size=tier.batch_size,
            flush_interval_ms=tier.flush_interval_ms,
            features=sorted(tier.enabled_features),
        )
        for tier in DEFAULT_TIERS
    ]


class EmergencySettings(BaseModel):
    """Tier table driving the emergency controller."""

    tiers: list[TierSettings] = Field(default_factory=_default_tier_settings)

    @model_validator(mode="after")
    def validate_ascending(self) -> Self:
        """Thresholds strictly ascending, levels unique."""
        if not self.tiers:
            raise ValueError("tier table must not be empty")
        levels = [tier.level for tier in self.tiers]
        if len(set(levels)) != len(levels):
            raise ValueError(f"tier levels must be unique, got {levels}")
        thresholds = [tier.threshold for tier in self.tiers]
        for lower, upper in zip(thresholds, thresholds[1:]):
            if upper <= lower:
                raise ValueError(
                    f"tier thresholds must be strictly ascending, got {thresholds}"
                )
        return self

    def to_tiers(self) -> tuple[EmergencyTier, ...]:
        from flowlog.observability.emergency import EmergencyTier, TierLevel, validate_tiers

        return validate_tiers(
            EmergencyTier(
                level=TierLevel[tier.level],
                pressure_threshold=tier.threshold,
                batch_size=tier.batch_size,
                flush_interval_ms=tier.flush_interval_ms,
                enabled_features=frozenset(tier.features),
            )
            for tier in self.tiers
        )

    model_config = ConfigDict(extra="forbid")


class SessionSettings(BaseModel):
    """Session file layout and background writer."""

    base_dir: str = Field(default=".flowlog", description="Root of the sessions/ tree.")
    retention_days: float = Field(default=7.0, gt=0.0, description="Session file age limit.")
    queue_size: int = Field(default=64, gt=0, description="Pending batch capacity.")

    model_config = ConfigDict(extra="forbid")


class CorrelationSettings(BaseModel):
    """Cross-system correlation tracker."""

    retention_seconds: float = Field(
        default=3600.0, gt=0.0, description="Age after which closed traces are swept."
    )
    sweep_interval_seconds: float = Field(
        default=60.0, ge=0.0, description="Minimum time between opportunistic sweeps."
    )
    redaction_patterns: list[str] = Field(
        default_factory=lambda: [
            "password",
            "passwd",
            "secret",
            "token",
            "api[_-]?key",
            "auth",
            "credential",
            "private[_-]?key",
        ]
    )
    redaction_marker: str = Field(default="[REDACTED]")
    redact_recursively: bool = Field(default=True)

    model_config = ConfigDict(extra="forbid")


class FlowlogConfig(BaseModel):
    """Complete pipeline configuration."""

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    emergency: EmergencySettings = Field(default_factory=EmergencySettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    correlation: CorrelationSettings = Field(default_factory=CorrelationSettings)
    metrics_enabled: bool = Field(default=True, description="Record Prometheus metrics.")

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
        json_schema_extra={
            "examples": [
                {
                    "logging": {"level": "info", "format": "json", "destination": "console"},
                    "session": {"base_dir": ".flowlog", "retention_days": 7},
                }
            ]
        },
    )


def validate_config_dict(config_dict: dict[str, Any]) -> FlowlogConfig:
    """Validate a configuration dictionary against the schema.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    try:
        return FlowlogConfig(**config_dict)
    except ValidationError as e:
        allowed = set(FlowlogConfig.model_fields.keys())
        unknown = set(config_dict.keys()) - allowed
        if unknown:
            raise ConfigurationError(
                ErrorCode.E103_INVALID_CONFIG_FILE,
                f"Configuration validation failed: unknown top-level keys: {sorted(unknown)}. "
                f"Allowed keys: {sorted(allowed)}.",
            ) from e
        raise ConfigurationError(
            ErrorCode.E103_INVALID_CONFIG_FILE, f"Configuration validation failed: {e}"
        ) from e


def get_default_config() -> FlowlogConfig:
    return FlowlogConfig()
