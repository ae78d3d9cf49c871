"""
Exception hierarchy for tracemind

Every error raised by the library derives from :class:`TraceMindError` so callers
can catch the whole family at the turn boundary while still logging structured
context.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from loguru import logger as default_logger


class TraceMindError(Exception):
    """Base exception carrying an error code and structured context."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__.upper()
        self.context = dict(context or {})
        self.timestamp = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} (context: {self.context})"
        return self.message


class ConfigurationError(TraceMindError):
    """Raised when settings cannot be loaded or are invalid."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, error_code="CONFIGURATION_ERROR", context=context)


class CompletionError(TraceMindError):
    """Raised when the completion service fails or returns unusable output."""

    def __init__(
        self,
        message: str,
        model: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        ctx = dict(context or {})
        if model:
            ctx["model"] = model
        super().__init__(message, error_code="COMPLETION_ERROR", context=ctx)


class StorageError(TraceMindError):
    """Raised by persistence backends when a read or write fails."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        ctx = dict(context or {})
        if operation:
            ctx["operation"] = operation
        super().__init__(message, error_code="STORAGE_ERROR", context=ctx)


class ValidationError(TraceMindError):
    """Raised when an input payload has the wrong shape."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        ctx = dict(context or {})
        if field:
            ctx["field"] = field
        super().__init__(message, error_code="VALIDATION_ERROR", context=ctx)


class ExceptionHandler:
    """Helpers for logging exceptions with structured context."""

    @staticmethod
    def log_exception(
        error: Exception,
        logger: Any = None,
        level: str = "ERROR",
        extra_context: dict[str, Any] | None = None,
    ) -> None:
        """Log ``error`` with its serialised form bound to the record."""

        target = logger or default_logger
        if isinstance(error, TraceMindError):
            payload = error.to_dict()
        else:
            payload = {
                "error_type": error.__class__.__name__,
                "message": str(error),
                "error_code": None,
                "context": {},
            }
        if extra_context:
            payload = {**payload, "context": {**payload["context"], **extra_context}}

        target.bind(
            exception_data=payload,
            error_type=error.__class__.__name__,
        ).log(level, f"{error.__class__.__name__}: {error}")


__all__ = [
    "TraceMindError",
    "ConfigurationError",
    "CompletionError",
    "StorageError",
    "ValidationError",
    "ExceptionHandler",
]
