"""Conversation-state tracking."""

from .conversation_state import (
    ActiveRun,
    ConversationState,
    ConversationStateStore,
    PendingFollowup,
    Stage,
)

__all__ = [
    "ActiveRun",
    "ConversationState",
    "ConversationStateStore",
    "PendingFollowup",
    "Stage",
]
