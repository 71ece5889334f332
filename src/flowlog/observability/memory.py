"""Process memory sampling.

Pressure is the resident set size of the current process divided by a
configured ceiling, clamped to [0, 1].
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import psutil

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_CEILING_BYTES = 1024 * 1024 * 1024  # 1 GiB

PressureProbe = Callable[[], float]


@dataclass(frozen=True)
class MemorySnapshot:
    rss_bytes: int
    ceiling_bytes: int

    @property
    def pressure(self) -> float:
        if self.ceiling_bytes <= 0:
            return 0.0
        return max(0.0, min(1.0, self.rss_bytes / self.ceiling_bytes))


class MemoryProbe:
    """Callable pressure probe backed by psutil."""

    def __init__(self, ceiling_bytes: int = DEFAULT_MEMORY_CEILING_BYTES) -> None:
        if ceiling_bytes <= 0:
            raise ValueError("ceiling_bytes must be positive")
        self.ceiling_bytes = ceiling_bytes
        self._process = psutil.Process()

    def snapshot(self) -> MemorySnapshot:
        rss = self._process.memory_info().rss
        return MemorySnapshot(rss_bytes=int(rss), ceiling_bytes=self.ceiling_bytes)

    def pressure(self) -> float:
        try:
            return self.snapshot().pressure
        except psutil.Error as exc:
            logger.debug("Memory sampling failed: %s", exc)
            return 0.0

    def __call__(self) -> float:
        return self.pressure()


class FixedPressureProbe:
    """Probe returning a settable constant, for drills and tests."""

    def __init__(self, pressure: float = 0.0) -> None:
        self.value = pressure

    def set(self, pressure: float) -> None:
        self.value = pressure

    def __call__(self) -> float:
        return self.value
