"""Persistence facade, relational backend and stored records."""

from .records import (
    ConversationRecord,
    PendingWrites,
    SessionCompression,
    SessionSummary,
)
from .service import MemoryStore, MirroredConversation, normalize_conversation_id

__all__ = [
    "MemoryStore",
    "MirroredConversation",
    "normalize_conversation_id",
    "ConversationRecord",
    "PendingWrites",
    "SessionCompression",
    "SessionSummary",
]
