"""Core memory, context assembly, compression and session continuity."""

from .compression import CompressionEngine, CompressionResult
from .context import ContextAssembler, build_memory_context, estimate_tokens
from .core_memory import (
    CORE_MEMORY_CAPS,
    TRIMMED_CAPS,
    Commitment,
    Constraint,
    CoreMemory,
    EmotionEntry,
    Goal,
    merge_core_memory,
    validate_core_memory,
)
from .locks import LockTable
from .manager import CoreMemoryManager
from .sessions import (
    ContinuityVector,
    RotationResult,
    build_greeting,
    check_and_rotate_session,
    compute_continuity_vector,
    gap_category,
)

__all__ = [
    "CORE_MEMORY_CAPS",
    "TRIMMED_CAPS",
    "Goal",
    "Constraint",
    "Commitment",
    "EmotionEntry",
    "CoreMemory",
    "validate_core_memory",
    "merge_core_memory",
    "LockTable",
    "CoreMemoryManager",
    "ContextAssembler",
    "build_memory_context",
    "estimate_tokens",
    "CompressionEngine",
    "CompressionResult",
    "ContinuityVector",
    "RotationResult",
    "build_greeting",
    "check_and_rotate_session",
    "compute_continuity_vector",
    "gap_category",
]
