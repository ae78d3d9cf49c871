"""Concise context bullets pulled from memory, pattern, activity and dreamscape inputs."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

_SKIPPED_HEADERS = (
    "USER MEMORY",
    "PRIOR SESSIONS",
    "RECENT USER MESSAGES",
    "EARLIER IN THIS CONVERSATION",
)
_OPENER_SPLIT = re.compile(r"[.!?\n]")


def pick_memory_bullets(memory_context: Any, limit: int = 6) -> list[str]:
    """Bullets from an assembled memory context string or a structured dict."""

    if not memory_context:
        return []

    if isinstance(memory_context, Mapping):
        if isinstance(memory_context.get("bullets"), list):
            return list(memory_context["bullets"])[:limit]
        if isinstance(memory_context.get("facts"), list):
            return [str(fact) for fact in memory_context["facts"][:limit]]
        return []

    if not isinstance(memory_context, str):
        return []

    bullets: list[str] = []
    for line in memory_context.splitlines():
        if not line.strip() or any(header in line for header in _SKIPPED_HEADERS):
            continue
        trimmed = re.sub(r"^-\s*", "", line).strip()
        if 3 < len(trimmed) < 200:
            bullets.append(trimmed)
        if len(bullets) >= limit:
            break
    return bullets


def pick_pattern_bullets(pattern_context: Mapping[str, Any] | None, limit: int = 4) -> list[str]:
    if not pattern_context:
        return []
    if isinstance(pattern_context.get("bullets"), list):
        return list(pattern_context["bullets"])[:limit]

    out: list[str] = []
    summary = pattern_context.get("pattern_summary") or pattern_context.get("patternSummary")
    if summary:
        if summary.get("peaks"):
            out.append(f"Peak energy: {', '.join(map(str, summary['peaks'][:2]))}")
        if summary.get("stress_echoes"):
            out.append(f"Stress patterns: {', '.join(map(str, summary['stress_echoes'][:2]))}")
        if summary.get("rhythm"):
            out.append(f"Weekly rhythm: {summary['rhythm']}")
        if summary.get("energy_tides"):
            out.append(f"Energy: {summary['energy_tides']}")
    return out[:limit]


def pick_activity_bullets(
    activity_outcomes: Sequence[Mapping[str, Any]] | None,
    reflection_context: Mapping[str, Any] | None = None,
    limit: int = 2,
) -> list[str]:
    """Helpful past activities first, then post-activity reflection state."""

    out: list[str] = []
    if isinstance(activity_outcomes, Sequence) and activity_outcomes:
        helpful = [
            str(outcome.get("label") or outcome.get("activity"))
            for outcome in activity_outcomes
            if (outcome.get("avg_improvement") or outcome.get("avgImprovement") or 0) > 0
        ][:2]
        if helpful:
            out.append(f"Helpful activities: {', '.join(helpful)}")

    if reflection_context:
        post_state = reflection_context.get("post_activity_state") or reflection_context.get(
            "postActivityState"
        )
        if post_state:
            out.append(f"Post-activity: {post_state}")
        recent = reflection_context.get("recent_activity") or reflection_context.get(
            "recentActivity"
        )
        if recent:
            out.append(f"Just did: {recent}")
    return out[:limit]


def format_dream_bullet(history: Mapping[str, Any] | None) -> str | None:
    if not history:
        return None

    track = None
    for key in ("track_id", "trackId", "track", "last_track", "lastTrack"):
        if history.get(key):
            track = history[key]
            break
    days = history.get("days_ago")
    if days is None:
        days = history.get("daysAgo")

    if track and days is not None:
        return f"Dreamscape: {track} ({days}d ago)"
    if track:
        return f"Dreamscape: {track}"
    if days is not None:
        return f"Dreamscape session: {days}d ago"
    return None


def extract_recent_openers(messages: Any, count: int = 3, max_chars: int = 80) -> list[str]:
    """First sentence of each of the last ``count`` assistant replies, for anti-repetition."""

    if not isinstance(messages, Sequence) or isinstance(messages, str):
        return []
    assistant = [m for m in messages if isinstance(m, Mapping) and m.get("role") == "assistant"]
    openers = []
    for message in assistant[-count:]:
        opener = _OPENER_SPLIT.split(str(message.get("content") or ""), maxsplit=1)[0]
        opener = opener.strip()[:max_chars]
        if opener:
            openers.append(opener)
    return openers


__all__ = [
    "pick_memory_bullets",
    "pick_pattern_bullets",
    "pick_activity_bullets",
    "format_dream_bullet",
    "extract_recent_openers",
]
