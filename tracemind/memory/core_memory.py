"""
Core memory model, validation and merge

Core memory is the durable, capped digest of what a user has disclosed. Raw
completion output only ever reaches it through :func:`validate_core_memory`
followed by :func:`merge_core_memory`; both return new objects and never mutate
their inputs.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..utils.exceptions import ValidationError

ConstraintType = Literal["time", "money", "health", "family", "work", "other"]
CONSTRAINT_TYPES = ("time", "money", "health", "family", "work", "other")

CORE_MEMORY_CAPS: dict[str, int] = {
    "user_facts": 25,
    "goals": 15,
    "constraints": 10,
    "commitments": 10,
    "themes": 10,
    "pending_topics": 8,
    "emotion_timeline": 5,
    "contradictions": 10,
}

TRIMMED_CAPS: dict[str, int] = {
    "user_facts": 5,
    "goals": 3,
    "constraints": 3,
    "commitments": 3,
    "themes": 3,
    "pending_topics": 3,
    "emotion_timeline": 3,
    "contradictions": 3,
}


class Goal(BaseModel):
    text: str
    started_at: str


class Constraint(BaseModel):
    type: ConstraintType = "other"
    description: str


class Commitment(BaseModel):
    text: str
    date: str | None = None


class EmotionEntry(BaseModel):
    emotion: str
    context: str = ""
    timestamp: str


class CoreMemory(BaseModel):
    """Capped lists of durable facts about one user."""

    user_facts: list[str] = Field(default_factory=list)
    goals: list[Goal] = Field(default_factory=list)
    constraints: list[Constraint] = Field(default_factory=list)
    commitments: list[Commitment] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    pending_topics: list[str] = Field(default_factory=list)
    emotion_timeline: list[EmotionEntry] = Field(default_factory=list)
    contradictions: list[str | dict[str, Any]] = Field(default_factory=list)
    updated_at: datetime | None = None

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in CORE_MEMORY_CAPS)

    def to_payload(self) -> dict[str, Any]:
        """JSON-compatible dict used by persistence backends."""
        return self.model_dump(mode="json")


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------
def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _strings(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [text for text in (_text(item) for item in raw) if text]


def _objects(raw: Any, key: str) -> list[Mapping[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, Mapping) and _text(item.get(key))]


def validate_core_memory(
    raw: Any,
    caps: Mapping[str, int] | None = None,
    now: datetime | None = None,
) -> CoreMemory:
    """Coerce an untrusted extraction payload into a capped :class:`CoreMemory`.

    Elements of the wrong shape are dropped field by field. Every list is sliced
    to its cap from the front, except ``emotion_timeline`` which keeps the most
    recent entries. A payload that is not a mapping raises
    :class:`~tracemind.utils.exceptions.ValidationError`.
    """

    if isinstance(raw, CoreMemory):
        raw = raw.model_dump(mode="json")
    if not isinstance(raw, Mapping):
        raise ValidationError(
            "Core memory payload must be a JSON object",
            context={"received": type(raw).__name__},
        )

    limits = {**CORE_MEMORY_CAPS, **(caps or {})}
    stamp = (now or datetime.now()).isoformat()

    goals = [
        Goal(text=_text(item["text"]), started_at=_text(item.get("started_at")) or stamp)
        for item in _objects(raw.get("goals"), "text")
    ]
    constraints = [
        Constraint(
            type=item.get("type") if item.get("type") in CONSTRAINT_TYPES else "other",
            description=_text(item["description"]),
        )
        for item in _objects(raw.get("constraints"), "description")
    ]
    commitments = [
        Commitment(text=_text(item["text"]), date=_text(item.get("date")))
        for item in _objects(raw.get("commitments"), "text")
    ]
    emotions = [
        EmotionEntry(
            emotion=_text(item["emotion"]),
            context=_text(item.get("context")) or "",
            timestamp=_text(item.get("timestamp")) or stamp,
        )
        for item in _objects(raw.get("emotion_timeline"), "emotion")
    ]
    contradictions: list[str | dict[str, Any]] = []
    if isinstance(raw.get("contradictions"), list):
        for item in raw["contradictions"]:
            if _text(item):
                contradictions.append(_text(item))
            elif isinstance(item, Mapping) and item:
                contradictions.append(dict(item))

    emotion_cap = limits["emotion_timeline"]
    return CoreMemory(
        user_facts=_strings(raw.get("user_facts"))[: limits["user_facts"]],
        goals=goals[: limits["goals"]],
        constraints=constraints[: limits["constraints"]],
        commitments=commitments[: limits["commitments"]],
        themes=_strings(raw.get("themes"))[: limits["themes"]],
        pending_topics=_strings(raw.get("pending_topics"))[: limits["pending_topics"]],
        emotion_timeline=emotions[-emotion_cap:] if emotion_cap else [],
        contradictions=contradictions[: limits["contradictions"]],
        updated_at=now or datetime.now(),
    )


# ----------------------------------------------------------------------
# Merge
# ----------------------------------------------------------------------
def _keep_last(items: list[Any], cap: int) -> list[Any]:
    return items[-cap:] if cap > 0 else []


def _merge_unique(
    existing: list[str],
    extracted: Iterable[str],
    cap: int,
    key: Callable[[str], str] = lambda value: value,
) -> list[str]:
    """Append unseen items, then evict the oldest down to ``cap``.

    Items re-confirmed by ``extracted`` count as recent: when eviction is needed,
    entries absent from the latest extraction go first. This keeps the merge
    idempotent even when the list sits at its cap.
    """

    seen = {key(item) for item in existing}
    confirmed: set[str] = set()
    merged = list(existing)
    for item in extracted:
        confirmed.add(key(item))
        if key(item) not in seen:
            seen.add(key(item))
            merged.append(item)

    overflow = len(merged) - cap
    if overflow <= 0:
        return merged
    result: list[str] = []
    for item in merged:
        if overflow > 0 and key(item) not in confirmed:
            overflow -= 1
            continue
        result.append(item)
    return _keep_last(result, cap)


def merge_core_memory(
    existing: CoreMemory | None,
    extracted: CoreMemory,
    caps: Mapping[str, int] | None = None,
    now: datetime | None = None,
) -> CoreMemory:
    """Fold a validated extraction into ``existing``.

    ``user_facts`` and ``themes`` dedupe by exact match, ``pending_topics`` by
    case-insensitive match. ``goals``, ``constraints``, ``commitments``,
    ``emotion_timeline`` and ``contradictions`` append unconditionally. Every
    list keeps its last ``cap`` entries.
    """

    limits = {**CORE_MEMORY_CAPS, **(caps or {})}
    stamp = now or datetime.now()
    if existing is None:
        return extracted.model_copy(update={"updated_at": stamp}, deep=True)

    return CoreMemory(
        user_facts=_merge_unique(
            existing.user_facts, extracted.user_facts, limits["user_facts"]
        ),
        themes=_merge_unique(existing.themes, extracted.themes, limits["themes"]),
        pending_topics=_merge_unique(
            existing.pending_topics,
            extracted.pending_topics,
            limits["pending_topics"],
            key=str.casefold,
        ),
        goals=_keep_last(existing.goals + extracted.goals, limits["goals"]),
        constraints=_keep_last(
            existing.constraints + extracted.constraints, limits["constraints"]
        ),
        commitments=_keep_last(
            existing.commitments + extracted.commitments, limits["commitments"]
        ),
        emotion_timeline=_keep_last(
            existing.emotion_timeline + extracted.emotion_timeline,
            limits["emotion_timeline"],
        ),
        contradictions=_keep_last(
            existing.contradictions + extracted.contradictions,
            limits["contradictions"],
        ),
        updated_at=stamp,
    )


__all__ = [
    "CORE_MEMORY_CAPS",
    "TRIMMED_CAPS",
    "Goal",
    "Constraint",
    "Commitment",
    "EmotionEntry",
    "CoreMemory",
    "validate_core_memory",
    "merge_core_memory",
]
