"""Lexical checks applied to user turns: content, topics and emotional intensity."""

from __future__ import annotations

import re

from .rules import Rule, all_matches, keyword_rules, pattern

_ACKNOWLEDGEMENT = re.compile(
    r"^(ok|okay|k|kk|yes|yeah|yep|yup|no|nope|nah|sure|fine|good|great|thanks|"
    r"thank you|ty|thx|cool|nice|alright|right|hmm|hm|mm|mhm|uh|um|idk|dunno|"
    r"maybe|sup|hi|hey|hello|yo|lol|same)[.!]?$",
    re.IGNORECASE,
)

_SENTENCE_PUNCTUATION = re.compile(r"[.,!?;:]")

_EMOTION_WORDS = re.compile(
    r"\b(feel|feeling|felt|think|thought|worried|anxious|sad|happy|stressed|tired|"
    r"overwhelmed|scared|angry|frustrated|confused|lost|stuck|hurt|lonely|afraid|"
    r"excited|grateful|numb)\b",
    re.IGNORECASE,
)

_EMOTIONAL_INTENSITY = re.compile(
    r"overwhelm|really\s+(sad|scared|anxious|stressed)|can[’']?t\s+(stop|handle|take)",
    re.IGNORECASE,
)

MIN_CONTENT_CHARS = 8
MIN_CONTENT_WORDS = 2

TOPIC_RULES: tuple[Rule[str], ...] = keyword_rules(
    [
        (r"work|job|boss|coworkers?|office|career|meeting|shift", "work"),
        (r"school|class|classes|homework|exam|exams|teacher|college|university", "school"),
        (
            r"mom|dad|parents?|family|brother|sister|son|daughter|kids?|wife|husband|"
            r"grandma|grandpa",
            "family",
        ),
        (r"friends?|friendship|social|lonely|alone|partner|boyfriend|girlfriend", "relationships"),
        (r"sleep|sleeping|tired|exhausted|insomnia|rest", "sleep"),
        (r"anxious|anxiety|worried|nervous|panic", "anxiety"),
        (r"sad|depressed|down|low|empty|crying", "sadness"),
        (r"stress|stressed|pressure|overwhelmed", "stress"),
        (r"dreams?|nightmares?|dreamt|dreamed", "dreams"),
        (r"music|songs?|listening|album|playlist", "music"),
        (r"money|rent|bills?|debt|paycheck|budget|finances?", "finances"),
        (r"health|sick|doctor|hospital|diagnosis|diagnosed|therapy|pain", "health"),
        (r"breakup|broke up|divorce|divorced|split up|ex", "breakup"),
        (
            r"moving|moved|new job|graduat\w*|pregnant|baby|wedding|married|retired?|"
            r"first day",
            "life_change",
        ),
    ]
)

INTENSITY_RULE: Rule[bool] = Rule(
    name="emotional_intensity",
    predicate=pattern(_EMOTIONAL_INTENSITY.pattern),
    result=True,
)


def is_acknowledgement(message: str | None) -> bool:
    """True for short acknowledgement-only replies such as "ok" or "yeah"."""
    if not message:
        return True
    return _ACKNOWLEDGEMENT.match(message.strip()) is not None


def extract_topic_keywords(message: str | None) -> list[str]:
    """Every topic label whose pattern matches ``message``, in rule order."""
    if not message:
        return []
    return all_matches(TOPIC_RULES, message)


def has_emotional_intensity(message: str | None) -> bool:
    return bool(message) and INTENSITY_RULE.matches(message)


def has_content(message: str | None) -> bool:
    """Decide whether a user turn carries substance beyond an acknowledgement."""

    if not message or not message.strip():
        return False
    trimmed = message.strip()
    if is_acknowledgement(trimmed):
        return False

    return (
        len(trimmed) >= MIN_CONTENT_CHARS
        or len(trimmed.split()) >= MIN_CONTENT_WORDS
        or _SENTENCE_PUNCTUATION.search(trimmed) is not None
        or _EMOTION_WORDS.search(trimmed) is not None
        or bool(extract_topic_keywords(trimmed))
    )


__all__ = [
    "TOPIC_RULES",
    "INTENSITY_RULE",
    "is_acknowledgement",
    "extract_topic_keywords",
    "has_emotional_intensity",
    "has_content",
]
