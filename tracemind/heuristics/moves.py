"""Classification of assistant replies into conversational move types."""

from __future__ import annotations

import re
from enum import Enum

from .rules import Rule, first_match, pattern


class MoveType(str, Enum):
    OPEN_PROBE = "OPEN_PROBE"
    REFLECT = "REFLECT"
    SPECIFIC_FOLLOWUP = "SPECIFIC_FOLLOWUP"
    VALIDATE = "VALIDATE"
    SUMMARIZE = "SUMMARIZE"
    SUGGEST = "SUGGEST"
    CHECKIN = "CHECKIN"


OPEN_PROBE_PATTERNS: tuple[str, ...] = (
    r"what['’]?s\s+(been\s+)?on\s+your\s+mind",
    r"how\s+(are\s+you|have\s+you\s+been)\s+feeling",
    r"want\s+to\s+share\s+(more|anything)",
    r"anything\s+(else|specific|you('d)?\s+(like|want)\s+to)",
    r"what\s+would\s+you\s+like\s+to\s+talk\s+about",
    r"what\s+brings\s+you\s+here",
    r"is\s+there\s+something\s+(on\s+your\s+mind|you('d)?\s+like\s+to)",
    r"what['’]?s\s+going\s+on(\s+with\s+you)?",
    r"how\s+can\s+i\s+(help|support)\s+you",
    r"tell\s+me\s+(more\s+)?about\s+(what['’]?s|yourself)",
    r"i['’]?m\s+here\s+if\s+you\s+(want|need)\s+to",
    r"what\s+are\s+you\s+(thinking|feeling)\s+about",
)

_OPEN_PROBE_REGEX = "|".join(f"(?:{p})" for p in OPEN_PROBE_PATTERNS)
_OPEN_PROBE = re.compile(_OPEN_PROBE_REGEX, re.IGNORECASE)

_SPECIFIC_FOLLOWUP_MIN_CHARS = 30


def _is_specific_followup(reply: str) -> bool:
    stripped = reply.strip()
    return stripped.endswith("?") and len(stripped) > _SPECIFIC_FOLLOWUP_MIN_CHARS


MOVE_RULES: tuple[Rule[MoveType], ...] = (
    Rule("open_probe", pattern(_OPEN_PROBE_REGEX), MoveType.OPEN_PROBE),
    Rule(
        "reflect",
        pattern(r"sounds like|seems like|i hear|that must|it makes sense"),
        MoveType.REFLECT,
    ),
    Rule(
        "validate",
        pattern(r"that['’]?s (valid|real|understandable|okay)|makes sense|of course"),
        MoveType.VALIDATE,
    ),
    Rule("specific_followup", _is_specific_followup, MoveType.SPECIFIC_FOLLOWUP),
    Rule("suggest", pattern(r"maybe|could try|how about|want me to"), MoveType.SUGGEST),
)


def classify_move_type(reply: str | None) -> MoveType:
    """Map an assistant reply to the first matching move type, else CHECKIN."""

    if not reply:
        return MoveType.CHECKIN
    _, move = first_match(MOVE_RULES, reply, default=MoveType.CHECKIN)
    return move


def is_open_probe(reply: str | None) -> bool:
    return bool(reply) and _OPEN_PROBE.search(reply) is not None


TOPIC_FALLBACKS: dict[str, str] = {
    "work": "work stuff can weigh on you. what part's been sitting heaviest?",
    "school": "school can take a lot out of you. what's been the hardest part?",
    "family": "family's complicated. is there a specific moment that's stuck with you?",
    "relationships": "those connections matter. what's been different about it lately?",
    "sleep": "sleep's been tough. is it the falling asleep or the staying asleep?",
    "anxiety": "that anxious feeling, does it come in waves or is it more constant?",
    "sadness": "I hear that. is it more of a heavy feeling or more like emptiness?",
    "stress": "a lot on your plate. what's the one thing that keeps coming back to you?",
    "dreams": "dreams can surface things. anything in particular that stood out?",
    "music": "mm. how's it landing right now?",
}

PRESENCE_FALLBACKS: tuple[str, ...] = (
    "I'm here.",
    "mm. take your time.",
    "still with you.",
    "no rush.",
)


def fallback_reply(topics: list[str], turn_count: int = 0) -> str:
    """A non-probing reply used when generated text keeps breaking probe rules."""

    for topic in topics:
        if topic in TOPIC_FALLBACKS:
            return TOPIC_FALLBACKS[topic]
    return PRESENCE_FALLBACKS[turn_count % len(PRESENCE_FALLBACKS)]


__all__ = [
    "MoveType",
    "OPEN_PROBE_PATTERNS",
    "MOVE_RULES",
    "classify_move_type",
    "is_open_probe",
    "fallback_reply",
]
