"""
Configuration management for tracemind
"""

from .manager import ConfigManager
from .settings import (
    AgentSettings,
    CompressionSettings,
    ContextSettings,
    DatabaseSettings,
    IntentSettings,
    LoggingSettings,
    LogLevel,
    MemorySettings,
    SessionSettings,
    StateSettings,
    TraceMindSettings,
)

__all__ = [
    "ConfigManager",
    "TraceMindSettings",
    "AgentSettings",
    "CompressionSettings",
    "ContextSettings",
    "DatabaseSettings",
    "IntentSettings",
    "LoggingSettings",
    "LogLevel",
    "MemorySettings",
    "SessionSettings",
    "StateSettings",
]
