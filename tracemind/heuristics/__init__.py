"""Lexical heuristics shared by the state store, memory manager and synthesizer."""

from .content import (
    extract_topic_keywords,
    has_content,
    has_emotional_intensity,
    is_acknowledgement,
)
from .importance import disclosure_signals, has_importance_signal
from .moves import MoveType, classify_move_type, fallback_reply, is_open_probe
from .rules import Rule, all_matches, first_match, keyword_rules, pattern

__all__ = [
    "Rule",
    "first_match",
    "all_matches",
    "keyword_rules",
    "pattern",
    "extract_topic_keywords",
    "has_content",
    "has_emotional_intensity",
    "is_acknowledgement",
    "disclosure_signals",
    "has_importance_signal",
    "MoveType",
    "classify_move_type",
    "fallback_reply",
    "is_open_probe",
]
