"""
Clock abstraction for the logging pipeline.

Flush intervals, stopwatches and retention windows all read time through a
TimeProvider so tests can drive them without sleeping.

Usage:
    provider = DefaultTimeProvider()
    provider.now_ms()

    fake = FakeTimeProvider(start_time=1000.0)
    fake.advance(0.25)
    assert fake.now_ms() == 1_000_250
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class TimeProvider(Protocol):
    """Wall and monotonic clock, in seconds."""

    def now(self) -> float:
        """Return current time in seconds since epoch."""
        ...

    def monotonic(self) -> float:
        """Return monotonic clock time in seconds."""
        ...


class DefaultTimeProvider:
    """System clock."""

    def now(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()


class FakeTimeProvider:
    """Manually advanced clock for deterministic tests.

    Both the wall clock and the monotonic clock move together.
    """

    def __init__(self, start_time: float = 0.0) -> None:
        self._current_time = start_time
        self._monotonic_start = start_time

    def now(self) -> float:
        return self._current_time

    def monotonic(self) -> float:
        return self._current_time - self._monotonic_start

    def advance(self, seconds: float) -> None:
        """Advance time by ``seconds``.

        Raises:
            ValueError: If seconds is negative
        """
        if seconds < 0:
            raise ValueError("Cannot advance time by negative amount")
        self._current_time += seconds

    def set_time(self, time_value: float) -> None:
        self._current_time = time_value


def now_ms(provider: TimeProvider) -> int:
    """Wall clock in integer milliseconds."""
    return int(provider.now() * 1000)


def monotonic_ms(provider: TimeProvider) -> float:
    """Monotonic clock in float milliseconds."""
    return provider.monotonic() * 1000.0


def isoformat(provider: TimeProvider) -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return (
        datetime.fromtimestamp(provider.now(), timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


_default_provider: TimeProvider = DefaultTimeProvider()


def get_default_time_provider() -> TimeProvider:
    return _default_provider


def set_default_time_provider(provider: TimeProvider) -> None:
    """Install a process-wide clock (tests only)."""
    global _default_provider
    _default_provider = provider


def reset_default_time_provider() -> None:
    global _default_provider
    _default_provider = DefaultTimeProvider()
