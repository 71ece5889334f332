"""Immutable logging context and identifier generators."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, replace
from enum import Enum

from flowlog.utils.time_provider import TimeProvider, get_default_time_provider, now_ms


class Component(str, Enum):
    """Subsystems that log through the pipeline."""

    CLI = "CLI"
    MCP = "MCP"
    SWARM = "Swarm"
    CORE = "Core"
    TERMINAL = "Terminal"
    MEMORY = "Memory"
    MIGRATION = "Migration"
    HOOKS = "Hooks"
    ENTERPRISE = "Enterprise"


# stdout of these components carries the wire protocol
PROTOCOL_COMPONENTS: frozenset[str] = frozenset({Component.MCP.value})


def component_name(component: Component | str) -> str:
    return component.value if isinstance(component, Component) else str(component)


def is_protocol_component(component: Component | str | None) -> bool:
    return component is not None and component_name(component) in PROTOCOL_COMPONENTS


@dataclass(frozen=True)
class LogContext:
    """Component, correlation and session identity carried by a logger view.

    Derivation always returns a new value and never touches the receiver.
    """

    component: str = Component.CORE.value
    correlation_id: str | None = None
    session_id: str | None = None

    def with_component(self, component: Component | str) -> LogContext:
        return replace(self, component=component_name(component))

    def with_correlation_id(self, correlation_id: str) -> LogContext:
        return replace(self, correlation_id=correlation_id)

    def with_session_id(self, session_id: str) -> LogContext:
        return replace(self, session_id=session_id)

    def as_dict(self) -> dict[str, str]:
        result = {"component": self.component}
        if self.correlation_id:
            result["correlation_id"] = self.correlation_id
        if self.session_id:
            result["session_id"] = self.session_id
        return result


def _random_hex(length: int) -> str:
    return uuid.uuid4().hex[:length]


def generate_correlation_id(time_provider: TimeProvider | None = None) -> str:
    """``<epoch ms>-<13 hex chars>``."""
    provider = time_provider or get_default_time_provider()
    return f"{now_ms(provider)}-{_random_hex(13)}"


def generate_session_id(time_provider: TimeProvider | None = None) -> str:
    provider = time_provider or get_default_time_provider()
    return f"sess-{now_ms(provider)}-{_random_hex(9)}"


def generate_operation_id(time_provider: TimeProvider | None = None) -> str:
    provider = time_provider or get_default_time_provider()
    return f"op_{now_ms(provider)}_{_random_hex(9)}"


def generate_invocation_id(time_provider: TimeProvider | None = None) -> str:
    provider = time_provider or get_default_time_provider()
    return f"tool_{now_ms(provider)}_{_random_hex(9)}"


_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_for_path(value: str) -> str:
    """Make a command or id usable as a single path segment."""
    cleaned = _UNSAFE_PATH_CHARS.sub("-", value).strip(".-")
    return cleaned or "unknown"
