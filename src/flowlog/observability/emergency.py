"""Tiered emergency controller.

Maps a sampled memory-pressure ratio onto one of an ordered set of operating
tiers. Each tier carries its own session batching policy and the set of
features that stay enabled while it is active:

    NORMAL    full logging, session files, correlation, redaction
    ELEVATED  basic logging, session files, correlation
    SEVERE    minimal logging, foreground output only
    CRITICAL  console only; session output is shut down for good

Tier selection is recomputed from scratch on every sample. There is no
hysteresis, so a reading that oscillates around a threshold moves the
controller back and forth on consecutive samples.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Protocol

from flowlog.utils.errors import ConfigurationError, ErrorCode
from flowlog.utils.time_provider import TimeProvider, get_default_time_provider

if TYPE_CHECKING:
    from .metrics import PipelineMetricsExporter

logger = logging.getLogger(__name__)


class TierLevel(IntEnum):
    """Ordered operating tiers."""

    NORMAL = 0
    ELEVATED = 1
    SEVERE = 2
    CRITICAL = 3


class Feature(str, Enum):
    """Capabilities switched on or off by the active tier."""

    FULL_LOGGING = "full_logging"
    BASIC_LOGGING = "basic_logging"
    MINIMAL_LOGGING = "minimal_logging"
    SESSION_FILES = "session_files"
    CORRELATION = "correlation"
    REDACTION = "redaction"
    STDOUT_ONLY = "stdout_only"
    CONSOLE_ONLY = "console_only"


@dataclass(frozen=True)
class EmergencyTier:
    """One row of the tier table."""

    level: TierLevel
    pressure_threshold: float
    batch_size: int
    flush_interval_ms: int
    enabled_features: frozenset[str] = field(default_factory=frozenset)

    @property
    def name(self) -> str:
        return self.level.name

    def allows(self, feature: Feature | str) -> bool:
        value = feature.value if isinstance(feature, Feature) else feature
        return value in self.enabled_features


def _features(*items: Feature) -> frozenset[str]:
    return frozenset(item.value for item in items)


DEFAULT_TIERS: tuple[EmergencyTier, ...] = (
    EmergencyTier(
        TierLevel.NORMAL,
        0.90,
        50,
        1000,
        _features(
            Feature.FULL_LOGGING,
            Feature.SESSION_FILES,
            Feature.CORRELATION,
            Feature.REDACTION,
        ),
    ),
    EmergencyTier(
        TierLevel.ELEVATED,
        0.95,
        25,
        100,
        _features(Feature.BASIC_LOGGING, Feature.SESSION_FILES, Feature.CORRELATION),
    ),
    EmergencyTier(
        TierLevel.SEVERE,
        0.99,
        5,
        50,
        _features(Feature.MINIMAL_LOGGING, Feature.STDOUT_ONLY),
    ),
    EmergencyTier(TierLevel.CRITICAL, 0.995, 0, 0, _features(Feature.CONSOLE_ONLY)),
)


def validate_tiers(tiers: Iterable[EmergencyTier]) -> tuple[EmergencyTier, ...]:
    """Check a tier table and return it as a tuple.

    The table must be non-empty, strictly ascending by threshold, with every
    threshold in [0, 1), levels unique and ascending alongside thresholds, and
    non-negative batching parameters.

    Raises:
        ConfigurationError: If any rule is violated
    """
    table = tuple(tiers)
    if not table:
        raise ConfigurationError(
            ErrorCode.E102_INVALID_TIER_TABLE, "Tier table must not be empty"
        )

    for tier in table:
        if not 0.0 <= tier.pressure_threshold < 1.0:
            raise ConfigurationError(
                ErrorCode.E102_INVALID_TIER_TABLE,
                f"Tier {tier.name} threshold {tier.pressure_threshold} outside [0, 1)",
            )
        if tier.batch_size < 0 or tier.flush_interval_ms < 0:
            raise ConfigurationError(
                ErrorCode.E102_INVALID_TIER_TABLE,
                f"Tier {tier.name} has negative batching parameters",
            )

    for lower, upper in zip(table, table[1:]):
        if upper.pressure_threshold <= lower.pressure_threshold:
            raise ConfigurationError(
                ErrorCode.E102_INVALID_TIER_TABLE,
                f"Tier thresholds must be strictly ascending: "
                f"{lower.name} ({lower.pressure_threshold}) >= "
                f"{upper.name} ({upper.pressure_threshold})",
            )
        if upper.level <= lower.level:
            raise ConfigurationError(
                ErrorCode.E102_INVALID_TIER_TABLE,
                f"Tier levels must ascend with thresholds: {lower.name} before {upper.name}",
            )

    return table


def select_tier(tiers: Sequence[EmergencyTier], pressure: float) -> EmergencyTier:
    """Return the highest tier whose threshold is <= ``pressure``.

    Pressure below the first threshold selects the first tier.
    """
    thresholds = [tier.pressure_threshold for tier in tiers]
    index = bisect.bisect_right(thresholds, pressure) - 1
    return tiers[max(index, 0)]


@dataclass(frozen=True)
class TierTransition:
    """A change of active tier."""

    previous: EmergencyTier
    current: EmergencyTier
    pressure: float
    reason: str
    timestamp: float

    @property
    def escalated(self) -> bool:
        return self.current.level > self.previous.level


class TierListener(Protocol):
    """Collaborator reconfigured by tier transitions (the output manager)."""

    def flush_pending(self) -> None: ...

    def apply_tier(self, tier: EmergencyTier) -> None: ...

    def enter_critical(self) -> None: ...


CRITICAL_NOTICE = "🚨 Critical memory - console-only mode activated"


def format_transition_notice(transition: TierTransition) -> str:
    """One-line user-visible notice for a non-critical transition."""
    level = int(transition.current.level)
    if transition.escalated:
        return f"⚠️  Emergency level {level}: {transition.reason}"
    return (
        f"ℹ️  Memory pressure eased to {transition.pressure:.1%}: "
        f"now at {transition.current.name} (level {level})"
    )


class EmergencyController:
    """Strictly ordered tier state machine driven by pressure samples.

    On every transition the controller flushes pending batched output,
    reconfigures batching on its listeners and emits exactly one notice.
    Entering CRITICAL discards pending output instead of flushing it and emits
    the critical notice as its single notice.
    """

    def __init__(
        self,
        tiers: Iterable[EmergencyTier] = DEFAULT_TIERS,
        *,
        notify: Callable[[str], None] | None = None,
        time_provider: TimeProvider | None = None,
        metrics: PipelineMetricsExporter | None = None,
    ) -> None:
        self._tiers = validate_tiers(tiers)
        self._current = self._tiers[0]
        self._notify = notify
        self._time = time_provider or get_default_time_provider()
        self._metrics = metrics
        self._listeners: list[TierListener] = []
        self._history: list[TierTransition] = []
        self._last_pressure = 0.0

    @property
    def tiers(self) -> tuple[EmergencyTier, ...]:
        return self._tiers

    @property
    def current_tier(self) -> EmergencyTier:
        return self._current

    @property
    def level(self) -> TierLevel:
        return self._current.level

    @property
    def last_pressure(self) -> float:
        return self._last_pressure

    @property
    def history(self) -> list[TierTransition]:
        return list(self._history)

    @property
    def transition_count(self) -> int:
        return len(self._history)

    def is_emergency(self) -> bool:
        return self._current.level > TierLevel.NORMAL

    def allows(self, feature: Feature | str) -> bool:
        return self._current.allows(feature)

    def add_listener(self, listener: TierListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TierListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def evaluate(self, pressure: float, reason: str | None = None) -> TierTransition | None:
        """Re-select the tier for ``pressure``; transition if it changed."""
        self._last_pressure = pressure
        if self._metrics is not None:
            self._metrics.set_memory_pressure(pressure)

        target = select_tier(self._tiers, pressure)
        if target.level == self._current.level:
            return None

        transition = TierTransition(
            previous=self._current,
            current=target,
            pressure=pressure,
            reason=reason or f"Memory pressure at {pressure:.1%}",
            timestamp=self._time.now(),
        )
        self._current = target
        self._history.append(transition)

        if target.level == TierLevel.CRITICAL:
            for listener in list(self._listeners):
                listener.enter_critical()
            self._emit(CRITICAL_NOTICE)
        else:
            for listener in list(self._listeners):
                listener.flush_pending()
                listener.apply_tier(target)
            self._emit(format_transition_notice(transition))

        if self._metrics is not None:
            self._metrics.record_tier_transition(transition.previous.name, target.name)
            self._metrics.set_tier(int(target.level))

        logger.debug(
            "Tier transition %s -> %s at pressure %.4f",
            transition.previous.name,
            target.name,
            pressure,
        )
        return transition

    def force(self, pressure: float, reason: str) -> TierTransition | None:
        """Evaluate a caller-supplied pressure, e.g. for drills or overrides."""
        return self.evaluate(pressure, reason=reason)

    def _emit(self, notice: str) -> None:
        if self._notify is not None:
            self._notify(notice)
