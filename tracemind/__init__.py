"""
tracemind - turn synthesis and memory for conversational companions

Tracks a per-conversation dialogue stage, keeps a capped digest of what the
user has shared, assembles a token-budgeted memory context, compresses older
history into rolling summaries and fuses detector signals into one turn
directive.
"""

__version__ = "0.4.0"

from .brain import (
    TraceIntent,
    TurnSignals,
    create_empty_trace_intent,
    log_trace_intent,
    synthesize,
    synthesize_turn_directive,
)
from .config import ConfigManager, TraceMindSettings
from .core import TraceMind, TurnContext
from .memory import (
    CompressionEngine,
    ContextAssembler,
    CoreMemory,
    CoreMemoryManager,
    LockTable,
    build_memory_context,
    merge_core_memory,
    validate_core_memory,
)
from .state import ConversationState, ConversationStateStore, Stage
from .storage import MemoryStore
from .utils import (
    CompletionError,
    ConfigurationError,
    ExceptionHandler,
    LoggingManager,
    StorageError,
    TraceMindError,
    ValidationError,
)

__all__ = [
    "__version__",
    # Facade
    "TraceMind",
    "TurnContext",
    # Configuration
    "ConfigManager",
    "TraceMindSettings",
    # State
    "ConversationState",
    "ConversationStateStore",
    "Stage",
    # Memory
    "CoreMemory",
    "CoreMemoryManager",
    "ContextAssembler",
    "CompressionEngine",
    "LockTable",
    "build_memory_context",
    "merge_core_memory",
    "validate_core_memory",
    "MemoryStore",
    # Directive
    "TraceIntent",
    "TurnSignals",
    "create_empty_trace_intent",
    "synthesize",
    "synthesize_turn_directive",
    "log_trace_intent",
    # Errors and logging
    "TraceMindError",
    "ConfigurationError",
    "CompletionError",
    "StorageError",
    "ValidationError",
    "ExceptionHandler",
    "LoggingManager",
]
