"""Configuration loading with validation.

Sources, lowest precedence first:
1. the packaged ``default_config.yaml``
2. the YAML file passed in, or named by ``FLOWLOG_CONFIG``
3. ``FLOWLOG_`` environment variables, ``__`` separating nested keys
"""

from __future__ import annotations

import copy
import os
from collections.abc import Mapping
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

from flowlog.utils.errors import ConfigurationError, ErrorCode

from .schema import FlowlogConfig, validate_config_dict

ENV_PREFIX = "FLOWLOG_"
CONFIG_PATH_ENV = "FLOWLOG_CONFIG"


class ConfigLoader:
    """Load and validate pipeline configuration."""

    @staticmethod
    def load_config(
        path: str | Path | None = None,
        env_override: bool = True,
        environ: Mapping[str, str] | None = None,
    ) -> FlowlogConfig:
        """Load configuration from defaults, a YAML file and the environment.

        Args:
            path: YAML file to load; falls back to ``$FLOWLOG_CONFIG``
            env_override: If True, apply ``FLOWLOG_`` environment overrides
            environ: Environment mapping to read instead of ``os.environ``

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        env = os.environ if environ is None else environ
        config = ConfigLoader.load_defaults()

        file_path = path or env.get(CONFIG_PATH_ENV)
        if file_path:
            ConfigLoader._merge(config, ConfigLoader._load_yaml(Path(file_path)))

        if env_override:
            config = ConfigLoader._apply_env_overrides(config, env)

        return validate_config_dict(config)

    @staticmethod
    def load_defaults() -> dict[str, Any]:
        text = resources.files("flowlog.config").joinpath("default_config.yaml").read_text(
            encoding="utf-8"
        )
        return yaml.safe_load(text) or {}

    @staticmethod
    def _load_yaml(path: Path) -> dict[str, Any]:
        if not path.is_file():
            raise ConfigurationError(
                ErrorCode.E103_INVALID_CONFIG_FILE, f"Configuration file not found: {path}"
            )
        if path.suffix not in (".yaml", ".yml"):
            raise ConfigurationError(
                ErrorCode.E103_INVALID_CONFIG_FILE,
                f"Unsupported configuration file format: {path.name}. "
                "Only YAML (.yaml, .yml) is supported.",
            )
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                ErrorCode.E103_INVALID_CONFIG_FILE, f"Invalid YAML syntax in '{path}': {e}"
            ) from e
        except OSError as e:
            raise ConfigurationError(
                ErrorCode.E103_INVALID_CONFIG_FILE, f"Error reading '{path}': {e}"
            ) from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                ErrorCode.E103_INVALID_CONFIG_FILE,
                f"Top level of '{path}' must be a mapping, got {type(loaded).__name__}",
            )
        return loaded

    @staticmethod
    def _merge(base: dict[str, Any], override: Mapping[str, Any]) -> None:
        """Deep-merge ``override`` into ``base``; lists are replaced whole."""
        for key, value in override.items():
            existing = base.get(key)
            if isinstance(existing, dict) and isinstance(value, Mapping):
                ConfigLoader._merge(existing, value)
            else:
                base[key] = copy.deepcopy(value)

    @staticmethod
    def _apply_env_overrides(
        config: dict[str, Any], environ: Mapping[str, str]
    ) -> dict[str, Any]:
        """Apply environment variable overrides to configuration.

        For example:
        - FLOWLOG_LOGGING__LEVEL=debug
        - FLOWLOG_SESSION__RETENTION_DAYS=3
        - FLOWLOG_METRICS_ENABLED=false
        """
        for env_key, env_value in environ.items():
            if not env_key.startswith(ENV_PREFIX) or env_key == CONFIG_PATH_ENV:
                continue

            parts = [p for p in env_key[len(ENV_PREFIX) :].lower().split("__") if p]
            if not parts:
                continue

            target = config
            path_segments: list[str] = []
            for part in parts[:-1]:
                path_segments.append(part)
                existing = target.get(part)
                if existing is None:
                    target[part] = {}
                    target = target[part]
                elif isinstance(existing, dict):
                    target = existing
                else:
                    raise ConfigurationError(
                        ErrorCode.E100_CONFIG_ERROR,
                        "Environment override target is not a mapping; refusing to overwrite "
                        f"path '{'.'.join(path_segments)}' "
                        f"(existing type: {type(existing).__name__}).",
                    )

            target[parts[-1]] = ConfigLoader._parse_env_value(env_value)

        return config

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse environment variable value to appropriate type."""
        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        return value


def load_config(path: str | Path | None = None, env_override: bool = True) -> FlowlogConfig:
    return ConfigLoader.load_config(path, env_override=env_override)
