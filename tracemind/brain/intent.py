"""
Turn directive model

A :class:`TraceIntent` is built fresh for every turn from
:func:`create_empty_trace_intent`, filled in by the synthesizer and handed to
the prompt layer. It is never persisted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

AllowActivities = Literal["never", "ifAsked", "allowed"]

MODES = ("micro", "normal", "longform", "crisis")
INTENT_TYPES = (
    "presence",
    "clarify",
    "recipe",
    "story",
    "steps",
    "dream",
    "music",
    "info",
    "crisis",
    "other",
)
PRIMARY_MODES = ("studios", "conversation", "dream", "activity", "crisis", "onboarding")


class IntentConstraints(BaseModel):
    max_sentences: int | None = 2
    allow_questions: int = 1
    allow_activities: AllowActivities = "ifAsked"
    ban_therapy_speak: bool = True
    must_not_truncate: bool = False
    required_sections: list[str] | None = None
    disclaimer_shown: bool | None = None
    suppress_soundscapes: bool = False
    studios_directive: str | None = None


class SelectedContext(BaseModel):
    memory_bullets: list[Any] = Field(default_factory=list)
    pattern_bullets: list[Any] = Field(default_factory=list)
    dream_bullet: str | None = None
    activity_bullets: list[Any] = Field(default_factory=list)
    doorway_hint: str | None = None


class IntentSignals(BaseModel):
    """Compact provenance of every input that shaped the directive."""

    crisis: dict[str, Any] | None = None
    cognitive: dict[str, Any] | None = None
    conversation_state: dict[str, Any] | None = None
    trace_brain: dict[str, Any] | None = None
    doorways: dict[str, Any] | None = None
    atmosphere: dict[str, Any] | None = None


class TraceIntent(BaseModel):
    version: str = "v1"
    created_at: datetime = Field(default_factory=datetime.now)

    mode: str | None = "micro"
    intent_type: str | None = "presence"
    primary_mode: str = "conversation"

    posture: str | None = None
    detected_state: str | None = None

    constraints: IntentConstraints = Field(default_factory=IntentConstraints)
    selected_context: SelectedContext = Field(default_factory=SelectedContext)
    signals: IntentSignals = Field(default_factory=IntentSignals)


def create_empty_trace_intent() -> TraceIntent:
    return TraceIntent()


__all__ = [
    "MODES",
    "INTENT_TYPES",
    "PRIMARY_MODES",
    "IntentConstraints",
    "SelectedContext",
    "IntentSignals",
    "TraceIntent",
    "create_empty_trace_intent",
]
