"""
Configuration manager for tracemind

Holds the process-wide :class:`TraceMindSettings`. Sources are layered in a
fixed order: defaults, then the first config file found, then ``TRACEMIND_*``
environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from loguru import logger

from ..utils.exceptions import ConfigurationError
from .settings import TraceMindSettings


def _search_paths() -> list[str | Path | None]:
    return [
        os.getenv("TRACEMIND_CONFIG_PATH"),
        "tracemind.json",
        "tracemind.yaml",
        "tracemind.yml",
        "config/tracemind.json",
        "config/tracemind.yaml",
        Path.home() / ".tracemind" / "config.json",
        Path.home() / ".tracemind" / "config.yaml",
    ]


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """Process-wide settings holder"""

    _instance: ConfigManager | None = None

    def __new__(cls) -> ConfigManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if getattr(self, "_initialized", False):
            return
        self._initialized = True
        self._settings = TraceMindSettings()
        self._sources: list[str] = ["defaults"]
        self._config_path: str | None = None
        self._env_overrides: list[str] = []
        logger.debug("Loaded default configuration")

    @classmethod
    def get_instance(cls) -> ConfigManager:
        return cls()

    # ------------------------------------------------------------------
    # Provenance
    # ------------------------------------------------------------------
    @property
    def sources(self) -> list[str]:
        return list(self._sources)

    @property
    def config_path(self) -> str | None:
        return self._config_path

    @property
    def env_overrides(self) -> list[str]:
        return list(self._env_overrides)

    def _record_env(self, used_keys: set[str]) -> None:
        self._env_overrides = sorted(used_keys)
        if used_keys and "environment" not in self._sources:
            self._sources.append("environment")

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load_from_env(self) -> None:
        """Replace the settings with defaults plus environment variables"""
        try:
            settings, used_keys = TraceMindSettings.from_env_with_metadata()
        except Exception as e:
            logger.warning(f"Failed to load configuration from environment: {e}")
            raise ConfigurationError(f"Environment configuration error: {e}") from e

        self._settings = settings
        self._record_env(used_keys)
        if used_keys:
            logger.info(
                "Configuration loaded from environment variables: {}",
                ", ".join(self._env_overrides),
            )
        else:
            logger.info("Environment load requested but no TRACEMIND_* variables were set")

    def load_from_file(self, config_path: str | Path) -> None:
        """Replace the settings with the contents of a JSON or YAML file"""
        config_path = Path(config_path)
        try:
            self._settings = TraceMindSettings.from_file(config_path)
        except FileNotFoundError as e:
            logger.warning(f"Configuration file not found: {config_path}")
            raise ConfigurationError(f"Configuration file not found: {config_path}") from e
        except Exception as e:
            logger.error(f"Failed to load configuration from file {config_path}: {e}")
            raise ConfigurationError(f"File configuration error: {e}") from e

        self._sources.append(str(config_path))
        self._config_path = str(config_path)
        logger.info(f"Configuration loaded from file: {config_path}")

    def auto_load(self) -> None:
        """Load the first config file found, then merge environment overrides on top"""
        for candidate in _search_paths():
            if not candidate or not Path(candidate).exists():
                continue
            try:
                self.load_from_file(candidate)
                break
            except ConfigurationError:
                continue

        try:
            env_data, used_keys = TraceMindSettings._collect_env_data()
            if used_keys:
                self._settings = TraceMindSettings(
                    **_deep_merge(self._settings.model_dump(), env_data)
                )
        except Exception as e:
            logger.warning(f"Ignoring environment configuration: {e}")
            return

        self._record_env(used_keys)
        if used_keys:
            logger.info(
                "Environment variables merged into configuration: {}",
                ", ".join(self._env_overrides),
            )

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------
    def get_settings(self) -> TraceMindSettings:
        return self._settings

    def export_settings(self, *, include_sensitive: bool = False) -> dict[str, Any]:
        """Serialisable snapshot; secrets are masked unless asked for"""
        return self._settings.export(include_sensitive=include_sensitive)


__all__ = ["ConfigManager"]
