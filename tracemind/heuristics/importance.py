"""Self-disclosure heuristic used to pull core-memory extraction forward."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .rules import Rule, all_matches, pattern

IMPORTANCE_RULES: tuple[Rule[str], ...] = (
    Rule(
        "named_relation",
        pattern(
            r"\bmy\s+(mom|mother|dad|father|son|daughter|wife|husband|partner|"
            r"brother|sister|friend|boss|dog|cat|therapist)\b"
        ),
        "named_relation",
    ),
    Rule("proper_name", pattern(r"\b(named|called|name is)\s+[A-Z][a-z]+", 0), "proper_name"),
    Rule(
        "recent_event",
        pattern(r"\bi\s+(just|recently|finally)\s+\w+"),
        "recent_event",
    ),
    Rule(
        "life_event",
        pattern(
            r"\b(got married|engaged|divorced?|pregnant|gave birth|passed away|died|"
            r"funeral|moved|new job|got fired|laid off|quit my job|graduated|"
            r"broke up|first day)\b"
        ),
        "life_event",
    ),
    Rule(
        "diagnosis",
        pattern(
            r"\b(diagnosed|diagnosis|adhd|autism|autistic|depression|bipolar|ptsd|"
            r"ocd|anxiety disorder|cancer|diabetes|chronic)\b"
        ),
        "diagnosis",
    ),
    Rule(
        "strong_affect",
        pattern(
            r"\b(devastated|heartbroken|terrified|furious|ecstatic|hopeless|"
            r"overwhelmed|so proud|can[’']?t stop crying)\b"
        ),
        "strong_affect",
    ),
    Rule(
        "future_plan",
        pattern(
            r"\b(i('m| am) going to|i will|i'll|next (week|month|year)|tomorrow|"
            r"planning to|i plan to)\b"
        ),
        "future_plan",
    ),
    Rule(
        "goal",
        pattern(
            r"\b(my goal|i want to|i'm trying to|i am trying to|i hope to|"
            r"working on|i need to)\b"
        ),
        "goal",
    ),
)


def disclosure_signals(message: str) -> list[str]:
    """Names of every disclosure pattern present in ``message``."""
    return all_matches(IMPORTANCE_RULES, message)


def _user_texts(messages: Iterable[Mapping[str, Any]]) -> list[str]:
    return [
        str(message.get("content") or "")
        for message in messages
        if message.get("role") == "user"
    ]


def has_importance_signal(
    recent_messages: Sequence[Mapping[str, Any]],
    *,
    window: int = 5,
    min_matches: int = 2,
    long_message_chars: int = 100,
) -> bool:
    """True when one of the last ``window`` user messages looks like a disclosure.

    A message qualifies when it matches at least ``min_matches`` disclosure
    patterns or is longer than ``long_message_chars`` characters.
    """

    for text in _user_texts(recent_messages)[-window:]:
        if len(text) > long_message_chars:
            return True
        if len(disclosure_signals(text)) >= min_matches:
            return True
    return False


__all__ = ["IMPORTANCE_RULES", "disclosure_signals", "has_importance_signal"]
