"""
Utils package for tracemind - exceptions and logging helpers
"""

from .exceptions import (
    CompletionError,
    ConfigurationError,
    ExceptionHandler,
    StorageError,
    TraceMindError,
    ValidationError,
)
from .logging import LoggingManager, get_logger

__all__ = [
    # Exceptions
    "TraceMindError",
    "ConfigurationError",
    "CompletionError",
    "StorageError",
    "ValidationError",
    "ExceptionHandler",
    # Logging
    "LoggingManager",
    "get_logger",
]
