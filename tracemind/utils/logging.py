"""
Loguru configuration helpers for tracemind
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from loguru import logger

from ..config.settings import LoggingSettings


class LoggingManager:
    """Installs and tracks the loguru sinks used by the library."""

    _initialized = False
    _handler_ids: list[int] = []

    @classmethod
    def setup_logging(
        cls, settings: LoggingSettings, verbose: bool = False
    ) -> None:
        """Replace the active sinks with ones derived from ``settings``."""

        cls.reset()
        level = "DEBUG" if verbose else _level_name(settings.level)

        cls._handler_ids.append(
            logger.add(
                sys.stderr,
                level=level,
                format=settings.format,
                colorize=not settings.structured_logging,
                serialize=settings.structured_logging,
            )
        )

        if settings.log_to_file:
            log_path = Path(settings.log_file_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            cls._handler_ids.append(
                logger.add(
                    str(log_path),
                    level=level,
                    format=settings.format,
                    rotation=settings.log_rotation,
                    retention=settings.log_retention,
                    compression=settings.log_compression,
                    serialize=settings.structured_logging,
                )
            )

        cls._initialized = True
        logger.debug(f"Logging configured at level {level}")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized

    @classmethod
    def reset(cls) -> None:
        """Remove every sink, including loguru's default stderr handler."""
        logger.remove()
        cls._handler_ids = []
        cls._initialized = False


def _level_name(level: Any) -> str:
    return getattr(level, "value", None) or str(level)


def get_logger(name: str | None = None):
    """Return the shared loguru logger bound to ``name`` when provided."""
    if name:
        return logger.bind(component=name)
    return logger


__all__ = ["LoggingManager", "get_logger"]
