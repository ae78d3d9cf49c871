"""Turn directive model, synthesis, context bullets and diagnostics."""

from .bullets import (
    extract_recent_openers,
    format_dream_bullet,
    pick_activity_bullets,
    pick_memory_bullets,
    pick_pattern_bullets,
)
from .diagnostics import is_weird, log_trace_intent, summarize_trace_intent
from .intent import (
    IntentConstraints,
    IntentSignals,
    SelectedContext,
    TraceIntent,
    create_empty_trace_intent,
)
from .synthesis import (
    INTENT_RULES,
    PRIMARY_MODE_RULES,
    STUDIOS_DIRECTIVE,
    TurnSignals,
    pick_doorway_hint,
    synthesize,
    synthesize_turn_directive,
)

__all__ = [
    "TraceIntent",
    "IntentConstraints",
    "IntentSignals",
    "SelectedContext",
    "create_empty_trace_intent",
    "TurnSignals",
    "INTENT_RULES",
    "PRIMARY_MODE_RULES",
    "STUDIOS_DIRECTIVE",
    "pick_doorway_hint",
    "synthesize",
    "synthesize_turn_directive",
    "pick_memory_bullets",
    "pick_pattern_bullets",
    "pick_activity_bullets",
    "format_dream_bullet",
    "extract_recent_openers",
    "is_weird",
    "log_trace_intent",
    "summarize_trace_intent",
]
