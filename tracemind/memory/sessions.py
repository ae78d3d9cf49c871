"""Session rotation on long gaps, plus the continuity helpers used when a user returns."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger

from .core_memory import CoreMemory

if TYPE_CHECKING:
    from ..storage.records import ConversationRecord
    from ..storage.service import MemoryStore

HOUR_SECONDS = 60 * 60


@dataclass
class RotationResult:
    rotated: bool
    session_id: str
    gap_hours: int
    previous_session_id: str | None = None

    @property
    def gap_category(self) -> str:
        return gap_category(self.gap_hours)


@dataclass
class ContinuityVector:
    primary_theme: str = "general"
    recent_emotion: str | None = None


def gap_category(gap_hours: float) -> str:
    if gap_hours <= 24:
        return "same_day"
    if gap_hours <= 48:
        return "next_day"
    return "extended_absence"


async def check_and_rotate_session(
    store: MemoryStore,
    conversation: ConversationRecord,
    gap_hours_threshold: float = 24,
) -> RotationResult:
    """Start a new session when the user was away longer than the threshold."""

    gap_seconds = (store.now() - conversation.last_activity_at).total_seconds()
    result = RotationResult(
        rotated=False,
        session_id=conversation.current_session_id,
        gap_hours=math.floor(max(gap_seconds, 0) / HOUR_SECONDS),
    )
    if gap_seconds <= gap_hours_threshold * HOUR_SECONDS:
        return result

    new_session_id = await store.start_session(conversation.conversation_id)
    logger.info(
        f"Rotated session for {conversation.conversation_id} after "
        f"{result.gap_hours}h away ({result.gap_category})"
    )
    return RotationResult(
        rotated=True,
        session_id=new_session_id,
        gap_hours=result.gap_hours,
        previous_session_id=conversation.current_session_id,
    )


def compute_continuity_vector(
    core_memory: CoreMemory | None,
    recent_user_messages: Sequence[Mapping[str, Any]],
) -> ContinuityVector:
    """Pick the theme most present in the last ten user messages and the latest emotion."""

    if core_memory is None:
        return ContinuityVector()

    last_ten = [
        str(message.get("content") or "").lower() for message in recent_user_messages[-10:]
    ]
    primary_theme = "general"
    best_count = 0
    for theme in core_memory.themes:
        count = sum(1 for text in last_ten if theme.lower() in text)
        if count > best_count:
            primary_theme, best_count = theme, count

    recent_emotion = (
        core_memory.emotion_timeline[-1].emotion if core_memory.emotion_timeline else None
    )
    return ContinuityVector(primary_theme=primary_theme, recent_emotion=recent_emotion)


def build_greeting(gap_hours: float, recent_emotion: str | None = None) -> str:
    if gap_hours <= 24:
        if recent_emotion:
            return f"Hey. Still feeling {recent_emotion}, or has it shifted?"
        return "Hey. I'm here."
    return "Hey. I'm here. Where do you want to start today?"


__all__ = [
    "ContinuityVector",
    "RotationResult",
    "build_greeting",
    "check_and_rotate_session",
    "compute_continuity_vector",
    "gap_category",
]
