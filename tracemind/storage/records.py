"""Plain records exchanged between the persistence facade and its callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class ConversationRecord:
    conversation_id: str
    current_session_id: str
    session_started_at: datetime
    last_activity_at: datetime
    user_msg_count_since_extraction: int = 0
    user_msg_count_since_summary: int = 0
    message_count: int = 0


@dataclass
class SessionSummary:
    session_id: str
    summary: str
    updated_at: datetime


@dataclass
class SessionCompression:
    session_id: str | None
    summary: str
    covers_message_count: int
    created_at: datetime


@dataclass
class PendingWrites:
    """Writes that failed against the backend and await the next flush."""

    messages: list[dict[str, Any]] = field(default_factory=list)
    conversation_update: dict[str, Any] | None = None
    core_memory_upsert: dict[str, Any] | None = None
    session_summary_upserts: list[SessionSummary] = field(default_factory=list)
    compression_inserts: list[SessionCompression] = field(default_factory=list)
    attempts: int = 0
    last_attempt_at: datetime | None = None

    def is_empty(self) -> bool:
        return not (
            self.messages
            or self.conversation_update
            or self.core_memory_upsert
            or self.session_summary_upserts
            or self.compression_inserts
        )

    def __len__(self) -> int:
        return (
            len(self.messages)
            + (1 if self.conversation_update else 0)
            + (1 if self.core_memory_upsert else 0)
            + len(self.session_summary_upserts)
            + len(self.compression_inserts)
        )


__all__ = [
    "ConversationRecord",
    "SessionSummary",
    "SessionCompression",
    "PendingWrites",
]
