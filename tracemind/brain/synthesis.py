"""
Turn directive synthesis

:func:`synthesize` fuses the outputs of independent signal detectors into one
:class:`~tracemind.brain.intent.TraceIntent`. Precedence lives in two ordered
rule tables, :data:`INTENT_RULES` and :data:`PRIMARY_MODE_RULES`, evaluated with
:func:`~tracemind.heuristics.rules.first_match`. The function is pure: it
performs no I/O and never mutates its inputs.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, fields
from typing import Any, NamedTuple

from ..heuristics.rules import Rule, first_match
from .intent import TraceIntent, create_empty_trace_intent

MEMORY_BULLET_CAP = 6
PATTERN_BULLET_CAP = 4
ACTIVITY_BULLET_CAP = 2

STUDIOS_DIRECTIVE = (
    "Studios mode: talk only about albums, tracks and playlists from the catalog. "
    "Do not suggest activities, do not mention soundscapes, and do not mix in "
    "content from any other source."
)

_RECIPE = re.compile(r"\b(recipe|ingredients|how do i make|how to make|cook|bake)\b")
_STEPS = re.compile(r"\b(step by step|steps|walk me through|how do i|instructions)\b")
_STORY = re.compile(
    r"\b(tell\s+me\s+a\s+(\w+\s+){0,3}story|story\s+time|"
    r"write\s+(me\s+)?a\s+(\w+\s+){0,3}story|can\s+you\s+narrate|"
    r"short\s+story|complete\s+story)\b"
)
_MUSIC = re.compile(r"\b(play|night swim|music|song|album|listen|soundscape)\b")
_DREAM = re.compile(r"\b(i had a dream|dreamt|weird dream|in my dream)\b")


def _get(mapping: Mapping[str, Any] | None, *keys: str) -> Any:
    """First non-empty value among ``keys``; accepts snake_case and camelCase inputs."""
    if not mapping:
        return None
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None


@dataclass
class TurnSignals:
    """Everything the synthesizer reads for one turn."""

    current_message: str = ""
    is_crisis: bool = False
    cognitive_intent: Mapping[str, Any] | None = None
    conversation_state: Mapping[str, Any] | None = None
    brain_signals: Mapping[str, Any] | None = None
    attunement: Mapping[str, Any] | None = None
    doorways: Mapping[str, Any] | None = None
    atmosphere: Mapping[str, Any] | None = None
    disclaimer_shown: bool | None = None
    onboarding_scripted: bool = False
    activity_requested: bool = False
    music_requested: bool = False
    memory_bullets: Any = None
    pattern_bullets: Any = None
    dream_bullet: str | None = None
    activity_bullets: Any = None

    @property
    def text(self) -> str:
        return (self.current_message or "").lower()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> TurnSignals:
        """Build from a plain dict, ignoring unknown keys."""
        known = {item.name for item in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


class IntentChoice(NamedTuple):
    intent_type: str
    mode: str
    required_sections: tuple[str, ...] | None = None


class _Resolved(NamedTuple):
    signals: TurnSignals
    intent_type: str


def pick_doorway_hint(doorways: Mapping[str, Any] | None) -> str | None:
    """First of selected door, triggered door, doorway, first candidate."""
    if not doorways:
        return None
    hint = _get(doorways, "selected_door_id", "selectedDoorId", "triggered_door", "triggeredDoor", "doorway")
    if hint:
        return hint
    candidates = doorways.get("candidates")
    if isinstance(candidates, Sequence) and not isinstance(candidates, str) and candidates:
        return candidates[0]
    return None


def _text(regex: re.Pattern[str]) -> Callable[[TurnSignals], bool]:
    def _predicate(signals: TurnSignals) -> bool:
        return regex.search(signals.text) is not None

    return _predicate


def _doorway_is(door: str) -> Callable[[TurnSignals], bool]:
    return lambda signals: pick_doorway_hint(signals.doorways) == door


def _cognitive_emotional(signals: TurnSignals) -> bool:
    context = _get(signals.cognitive_intent, "emotional_context")
    return bool(context) and context != "neutral"


INTENT_RULES: tuple[Rule[IntentChoice], ...] = (
    Rule("recipe", _text(_RECIPE), IntentChoice("recipe", "longform", ("ingredients", "steps"))),
    Rule("steps", _text(_STEPS), IntentChoice("steps", "longform", ("steps",))),
    Rule("story", _text(_STORY), IntentChoice("story", "longform", ("beginning", "middle", "end"))),
    Rule("music", _text(_MUSIC), IntentChoice("music", "normal")),
    Rule(
        "dream",
        lambda s: _DREAM.search(s.text) is not None or _doorway_is("dreams_symbols")(s),
        IntentChoice("dream", "normal"),
    ),
    Rule("grief_doorway", _doorway_is("grief"), IntentChoice("presence", "normal")),
    Rule(
        "cognitive_help",
        lambda s: bool(_get(s.cognitive_intent, "asks_for_help")),
        IntentChoice("clarify", "micro"),
    ),
    Rule("cognitive_emotion", _cognitive_emotional, IntentChoice("presence", "micro")),
    Rule(
        "brain_help",
        lambda s: bool(_get(s.brain_signals, "asks_for_help", "asksForHelp")),
        IntentChoice("clarify", "micro"),
    ),
    Rule(
        "brain_mood",
        lambda s: bool(_get(s.brain_signals, "high_arousal", "highArousal", "low_mood", "lowMood")),
        IntentChoice("presence", "micro"),
    ),
)
DEFAULT_INTENT = IntentChoice("other", "micro")

PRIMARY_MODE_RULES: tuple[Rule[str], ...] = (
    Rule(
        "studios",
        lambda r: r.intent_type == "music" or r.signals.music_requested,
        "studios",
    ),
    Rule("onboarding", lambda r: r.signals.onboarding_scripted, "onboarding"),
    Rule(
        "dream",
        lambda r: r.intent_type == "dream" or _doorway_is("dreams_symbols")(r.signals),
        "dream",
    ),
    Rule("activity", lambda r: r.signals.activity_requested, "activity"),
)
DEFAULT_PRIMARY_MODE = "conversation"


# ----------------------------------------------------------------------
# Provenance summaries
# ----------------------------------------------------------------------
def summarize_cognitive(cognitive: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not cognitive:
        return None
    return {
        "emotional_context": cognitive.get("emotional_context"),
        "topic_shift": cognitive.get("topic_shift"),
        "is_short_message": cognitive.get("is_short_message"),
        "asks_for_help": cognitive.get("asks_for_help"),
    }


def summarize_conversation_state(state: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not state:
        return None
    return {
        "stage": _get(state, "stage"),
        "last_move_type": _get(state, "last_move_type", "lastMoveType"),
        "topic_established": bool(_get(state, "topic_established", "topicEstablished")),
        "probe_count": _get(state, "probe_count", "probeCount") or 0,
    }


def summarize_brain_signals(signals: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not signals:
        return None
    return {
        "asks_for_help": _get(signals, "asks_for_help", "asksForHelp"),
        "high_arousal": _get(signals, "high_arousal", "highArousal"),
        "low_mood": _get(signals, "low_mood", "lowMood"),
        "reflective_tone": _get(signals, "reflective_tone", "reflectiveTone"),
    }


def summarize_doorways(doorways: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not doorways:
        return None
    candidates = doorways.get("candidates")
    return {
        "triggered_door": _get(
            doorways, "selected_door_id", "selectedDoorId", "triggered_door", "triggeredDoor", "doorway"
        ),
        "candidates": list(candidates)[:3] if isinstance(candidates, Sequence) and candidates else None,
    }


def summarize_atmosphere(atmosphere: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not atmosphere:
        return None
    return {
        "sound_state": _get(
            atmosphere, "sound_state", "recommended_sound_state", "recommendedSoundState"
        )
    }


def _bullets(value: Any, cap: int) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)[:cap]
    return []


# ----------------------------------------------------------------------
# Synthesis
# ----------------------------------------------------------------------
def apply_mode_constraints(intent: TraceIntent, required_sections: Sequence[str] | None) -> None:
    constraints = intent.constraints
    if intent.mode == "micro":
        constraints.max_sentences = 2
        constraints.allow_questions = 1
        constraints.must_not_truncate = False
        constraints.required_sections = None
    elif intent.mode == "normal":
        constraints.max_sentences = None
        constraints.allow_questions = 1
        constraints.must_not_truncate = False
        constraints.required_sections = None
    elif intent.mode == "longform":
        constraints.max_sentences = None
        constraints.allow_questions = 0
        constraints.must_not_truncate = True
        constraints.required_sections = list(required_sections) if required_sections else None


def apply_studios_gate(intent: TraceIntent) -> None:
    intent.constraints.allow_activities = "never"
    intent.constraints.suppress_soundscapes = True
    intent.constraints.studios_directive = STUDIOS_DIRECTIVE


def synthesize(signals: TurnSignals) -> TraceIntent:
    """Build this turn's directive from ``signals``."""

    intent = create_empty_trace_intent()

    intent.signals.crisis = {"is_crisis": bool(signals.is_crisis)}
    intent.signals.cognitive = summarize_cognitive(signals.cognitive_intent)
    intent.signals.conversation_state = summarize_conversation_state(signals.conversation_state)
    intent.signals.trace_brain = summarize_brain_signals(signals.brain_signals)
    intent.signals.doorways = summarize_doorways(signals.doorways)
    intent.signals.atmosphere = summarize_atmosphere(signals.atmosphere)

    if signals.attunement:
        intent.posture = _get(signals.attunement, "posture", "detected_posture", "detectedPosture")
        intent.detected_state = _get(signals.attunement, "detected_state", "detectedState")

    intent.constraints.disclaimer_shown = signals.disclaimer_shown

    context = intent.selected_context
    context.memory_bullets = _bullets(signals.memory_bullets, MEMORY_BULLET_CAP)
    context.pattern_bullets = _bullets(signals.pattern_bullets, PATTERN_BULLET_CAP)
    context.dream_bullet = signals.dream_bullet or None
    context.activity_bullets = _bullets(signals.activity_bullets, ACTIVITY_BULLET_CAP)
    context.doorway_hint = pick_doorway_hint(signals.doorways)

    if signals.is_crisis:
        intent.mode = "crisis"
        intent.intent_type = "crisis"
        intent.primary_mode = "crisis"
        intent.constraints.max_sentences = None
        intent.constraints.allow_questions = 0
        intent.constraints.allow_activities = "never"
        return intent

    _, choice = first_match(INTENT_RULES, signals, DEFAULT_INTENT)
    intent.intent_type = choice.intent_type
    intent.mode = choice.mode

    _, primary_mode = first_match(
        PRIMARY_MODE_RULES, _Resolved(signals, choice.intent_type), DEFAULT_PRIMARY_MODE
    )
    intent.primary_mode = primary_mode

    apply_mode_constraints(intent, choice.required_sections)
    if primary_mode == "studios":
        apply_studios_gate(intent)
    return intent


def synthesize_turn_directive(**inputs: Any) -> TraceIntent:
    """Keyword form of :func:`synthesize`."""
    return synthesize(TurnSignals.from_mapping(inputs))


__all__ = [
    "TurnSignals",
    "IntentChoice",
    "INTENT_RULES",
    "PRIMARY_MODE_RULES",
    "DEFAULT_INTENT",
    "DEFAULT_PRIMARY_MODE",
    "STUDIOS_DIRECTIVE",
    "pick_doorway_hint",
    "summarize_cognitive",
    "summarize_conversation_state",
    "summarize_brain_signals",
    "summarize_doorways",
    "summarize_atmosphere",
    "apply_mode_constraints",
    "apply_studios_gate",
    "synthesize",
    "synthesize_turn_directive",
]
