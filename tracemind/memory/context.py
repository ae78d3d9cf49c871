"""
Token-budgeted memory context assembly

Sections are produced in priority order and admitted against a running token
budget. A section that does not fit is hard-truncated when enough budget is
left, which ends admission; otherwise it is skipped and the next one is tried.
Accepted sections are then stably sorted by priority and joined.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from loguru import logger

from ..config.settings import ContextSettings, MemorySettings
from .core_memory import (
    CORE_MEMORY_CAPS,
    TRIMMED_CAPS,
    CoreMemory,
    validate_core_memory,
)

SECTION_SEPARATOR = "\n\n"
ELLIPSIS = "..."

MEMORY_HEADER = "USER MEMORY (use implicitly, never quote):"
RECENT_HEADER = "RECENT USER MESSAGES:"
SUMMARY_HEADER = "PRIOR SESSIONS:"
COMPRESSION_HEADER = "EARLIER IN THIS CONVERSATION:"


@dataclass
class ContextSection:
    priority: int
    name: str
    text: str
    truncated: bool = False


def estimate_tokens(text: str, chars_per_token: float = 3.5) -> int:
    """Rough token count: ``ceil(len(text) / chars_per_token)``."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def _level_value(values: Sequence[int], trim_level: int) -> int:
    index = min(max(trim_level, 0), len(values) - 1)
    return values[index]


def _summary_text(item: Any) -> str:
    if isinstance(item, str):
        return item.strip()
    if isinstance(item, Mapping):
        return str(item.get("summary") or "").strip()
    return str(getattr(item, "summary", "") or "").strip()


def _as_core_memory(core_memory: Any) -> CoreMemory | None:
    if core_memory is None or isinstance(core_memory, CoreMemory):
        return core_memory
    return validate_core_memory(core_memory)


class ContextAssembler:
    """Builds the memory context block handed to the reply prompt."""

    def __init__(
        self,
        settings: ContextSettings | None = None,
        memory: MemorySettings | None = None,
    ):
        self.settings = settings or ContextSettings()
        self.memory = memory or MemorySettings()

    def estimate(self, text: str) -> int:
        return estimate_tokens(text, self.settings.chars_per_token)

    # ------------------------------------------------------------------
    # Section builders
    # ------------------------------------------------------------------
    def memory_section(self, core_memory: CoreMemory | None, trim_level: int) -> str:
        if core_memory is None or core_memory.is_empty():
            return ""
        if trim_level <= 0:
            caps = {**CORE_MEMORY_CAPS, **self.memory.caps}
        else:
            caps = {**TRIMMED_CAPS, **self.memory.trimmed_caps}

        lines = [MEMORY_HEADER]
        if core_memory.user_facts:
            facts = core_memory.user_facts[: caps["user_facts"]]
            lines.append(f"- Facts: {'; '.join(facts)}")
        if core_memory.goals:
            goals = [goal.text for goal in core_memory.goals[: caps["goals"]]]
            lines.append(f"- Goals: {'; '.join(goals)}")
        if core_memory.themes:
            lines.append(f"- Themes: {', '.join(core_memory.themes[: caps['themes']])}")
        if core_memory.pending_topics:
            topics = core_memory.pending_topics[: caps["pending_topics"]]
            lines.append(f"- Pending topics: {', '.join(topics)}")
        if core_memory.constraints:
            constraints = [
                f"{item.type}: {item.description}"
                for item in core_memory.constraints[: caps["constraints"]]
            ]
            lines.append(f"- Constraints: {'; '.join(constraints)}")
        if core_memory.emotion_timeline and caps["emotion_timeline"] > 0:
            recent = core_memory.emotion_timeline[-caps["emotion_timeline"] :]
            lines.append(f"- Recent emotions: {' → '.join(e.emotion for e in recent)}")
        return "\n".join(lines) if len(lines) > 1 else ""

    def recent_messages_section(
        self, recent_messages: Sequence[Mapping[str, Any]], trim_level: int
    ) -> str:
        limit = _level_value(self.settings.message_limits, trim_level)
        window = list(recent_messages)[-limit:] if limit > 0 else []
        user_messages = [m for m in window if m.get("role") == "user"]
        if self.settings.recent_user_messages <= 0:
            return ""
        user_messages = user_messages[-self.settings.recent_user_messages :]
        if not user_messages:
            return ""

        max_chars = self.settings.message_chars
        lines = [RECENT_HEADER]
        for message in user_messages:
            content = str(message.get("content") or "")
            if len(content) > max_chars:
                content = content[:max_chars] + ELLIPSIS
            lines.append(f'- "{content}"')
        return "\n".join(lines)

    def summaries_section(self, session_summaries: Sequence[Any], trim_level: int) -> str:
        limit = _level_value(self.settings.summary_limits, trim_level)
        texts = [text for text in map(_summary_text, session_summaries) if text][:limit]
        if not texts:
            return ""
        lines = [SUMMARY_HEADER]
        lines.extend(f"{index}. {text}" for index, text in enumerate(texts, start=1))
        return "\n".join(lines)

    def compressions_section(self, compressions: Sequence[Any] | None) -> str:
        if not compressions:
            return ""
        texts = [text for text in map(_summary_text, compressions) if text]
        texts = texts[: self.settings.compression_blocks]
        if not texts:
            return ""
        return "\n".join([COMPRESSION_HEADER, *texts])

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------
    def candidates(
        self,
        core_memory: Any,
        session_summaries: Sequence[Any] | None,
        recent_messages: Sequence[Mapping[str, Any]] | None,
        trim_level: int = 0,
        compressions: Sequence[Any] | None = None,
    ) -> list[ContextSection]:
        """Non-empty candidate sections in priority order."""

        sections = [
            ContextSection(1, "memory", self.memory_section(_as_core_memory(core_memory), trim_level)),
            ContextSection(2, "recent", self.recent_messages_section(recent_messages or [], trim_level)),
            ContextSection(3, "summaries", self.summaries_section(session_summaries or [], trim_level)),
            ContextSection(4, "compressions", self.compressions_section(compressions)),
        ]
        return [section for section in sections if section.text]

    def select(self, candidates: Sequence[ContextSection]) -> list[ContextSection]:
        """Admit candidates against the budget; the separator is charged to each."""

        budget = self.settings.token_budget
        used = 0
        accepted: list[ContextSection] = []
        for section in candidates:
            cost = self.estimate(section.text + SECTION_SEPARATOR)
            remaining = budget - used
            if cost <= remaining:
                accepted.append(section)
                used += cost
                continue
            if remaining >= self.settings.min_truncation_tokens:
                max_chars = (
                    math.floor(remaining * self.settings.chars_per_token)
                    - len(SECTION_SEPARATOR)
                    - len(ELLIPSIS)
                )
                accepted.append(
                    ContextSection(
                        section.priority,
                        section.name,
                        section.text[: max(max_chars, 0)] + ELLIPSIS,
                        truncated=True,
                    )
                )
                logger.debug(
                    f"Context section {section.name} truncated to {remaining} tokens"
                )
                break
            logger.debug(
                f"Context section {section.name} skipped: {cost} tokens, {remaining} left"
            )
        return accepted

    def assemble(
        self,
        core_memory: Any,
        session_summaries: Sequence[Any] | None,
        recent_messages: Sequence[Mapping[str, Any]] | None,
        trim_level: int = 0,
        compressions: Sequence[Any] | None = None,
    ) -> str:
        """Return the budgeted context block, or ``""`` when nothing fit."""

        accepted = self.select(
            self.candidates(
                core_memory, session_summaries, recent_messages, trim_level, compressions
            )
        )
        ordered = sorted(accepted, key=lambda section: section.priority)
        return SECTION_SEPARATOR.join(section.text for section in ordered)


def build_memory_context(
    core_memory: Any,
    session_summaries: Sequence[Any] | None,
    recent_messages: Sequence[Mapping[str, Any]] | None,
    trim_level: int = 0,
    compressions: Sequence[Any] | None = None,
    settings: ContextSettings | None = None,
    memory: MemorySettings | None = None,
) -> str:
    """Functional form of :meth:`ContextAssembler.assemble`."""
    return ContextAssembler(settings, memory).assemble(
        core_memory, session_summaries, recent_messages, trim_level, compressions
    )


__all__ = [
    "ContextAssembler",
    "ContextSection",
    "build_memory_context",
    "estimate_tokens",
]
