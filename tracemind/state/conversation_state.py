"""
Per-conversation dialogue state

Tracks the dialogue stage, the last assistant move, the topics the user has
raised, and two short-lived structures: an active multi-turn run (for example a
music exploration) and a pending followup question. Both short-lived structures
expire lazily when read; whole conversation states are evicted by ``sweep``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loguru import logger

from ..heuristics.content import (
    extract_topic_keywords,
    has_content,
    has_emotional_intensity,
)
from ..heuristics.moves import MoveType, classify_move_type, fallback_reply

Clock = Callable[[], datetime]


class Stage(str, Enum):
    ARRIVAL = "ARRIVAL"
    OPENING = "OPENING"
    SHARING = "SHARING"
    EXPLORING = "EXPLORING"
    PROCESSING = "PROCESSING"
    INTEGRATING = "INTEGRATING"
    CLOSING = "CLOSING"


EARLY_STAGES = frozenset({Stage.ARRIVAL, Stage.OPENING})
ENGAGED_STAGES = frozenset({Stage.SHARING, Stage.EXPLORING, Stage.PROCESSING})

DEFAULT_RUN_MODE = "studios"
DEFAULT_RUN_LABEL = "music exploration"


@dataclass
class ActiveRun:
    """A tracked multi-turn mode with its own time-to-live."""

    mode: str
    anchor_label: str
    started_at: datetime
    last_touched_at: datetime
    ttl: timedelta
    expired: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now - self.last_touched_at > self.ttl


@dataclass
class PendingFollowup:
    """An expectation that the next user turn answers an earlier question."""

    created_at: datetime
    ttl: timedelta
    type: str = "activity_reflection"
    expected_intent: str = "reflection_answer"
    activity_id: str | None = None
    activity_name: str = "an activity"
    expired: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now - self.created_at > self.ttl


@dataclass
class ConversationState:
    """Mutable dialogue state for a single conversation."""

    conversation_id: str
    last_accessed: datetime
    stage: Stage = Stage.ARRIVAL
    last_move_type: MoveType | None = None
    topic_established: bool = False
    turn_count: int = 0
    last_topic_keywords: list[str] = field(default_factory=list)
    active_run: ActiveRun | None = None
    pending_followup: PendingFollowup | None = None
    consecutive_probes: int = 0
    consecutive_non_run_turns: int = 0


class ConversationStateStore:
    """
    Owns the conversation-state map and its lifetimes.

    Every instance keeps its own map, so tests and shards never share state.
    Eviction of idle conversations only happens through :meth:`sweep`, which a
    scheduler (or the caller) invokes explicitly.
    """

    def __init__(
        self,
        state_ttl: timedelta = timedelta(minutes=30),
        run_ttl: timedelta = timedelta(minutes=12),
        followup_ttl: timedelta = timedelta(minutes=10),
        auto_advance_turns: int = 3,
        clock: Clock | None = None,
    ):
        self.state_ttl = state_ttl
        self.run_ttl = run_ttl
        self.followup_ttl = followup_ttl
        self.auto_advance_turns = auto_advance_turns
        self._clock = clock or datetime.now
        self._states: dict[str, ConversationState] = {}

    @classmethod
    def from_settings(cls, settings: Any, clock: Clock | None = None) -> ConversationStateStore:
        """Build a store from :class:`~tracemind.config.settings.StateSettings`."""
        return cls(
            state_ttl=timedelta(seconds=settings.state_ttl_seconds),
            run_ttl=timedelta(seconds=settings.active_run_ttl_seconds),
            followup_ttl=timedelta(seconds=settings.followup_ttl_seconds),
            auto_advance_turns=settings.auto_advance_turns,
            clock=clock,
        )

    def now(self) -> datetime:
        return self._clock()

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._states

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def get_or_create(self, conversation_id: str) -> ConversationState:
        now = self.now()
        state = self._states.get(conversation_id)
        if state is None:
            state = ConversationState(conversation_id=conversation_id, last_accessed=now)
            self._states[conversation_id] = state
            logger.debug(f"Created conversation state for {conversation_id}")
        state.last_accessed = now
        return state

    def get(self, conversation_id: str) -> ConversationState | None:
        return self._states.get(conversation_id)

    def clear(self, conversation_id: str) -> bool:
        return self._states.pop(conversation_id, None) is not None

    def sweep(self) -> int:
        """Evict every state idle for longer than ``state_ttl``; returns the count."""
        now = self.now()
        expired = [
            conversation_id
            for conversation_id, state in self._states.items()
            if now - state.last_accessed > self.state_ttl
        ]
        for conversation_id in expired:
            del self._states[conversation_id]
        if expired:
            logger.debug(f"Swept {len(expired)} idle conversation states")
        return len(expired)

    # ------------------------------------------------------------------
    # Stage machine
    # ------------------------------------------------------------------
    def advance(self, state: ConversationState, user_text: str | None) -> bool:
        """Advance ``state`` for a new user turn and return whether it had content.

        Transition rules are evaluated against the stage the turn started in, so
        a single turn never moves two steps through the early stages. Emotional
        intensity forces PROCESSING from any stage.
        """

        state.last_accessed = self.now()
        started_in = state.stage
        content = has_content(user_text)
        topics = extract_topic_keywords(user_text)
        if topics:
            state.last_topic_keywords = topics

        if started_in in EARLY_STAGES and content:
            state.stage = Stage.SHARING
            state.topic_established = True
        elif started_in in EARLY_STAGES and state.turn_count >= self.auto_advance_turns:
            state.stage = Stage.SHARING
        elif started_in == Stage.SHARING and content:
            state.stage = Stage.EXPLORING

        if has_emotional_intensity(user_text):
            state.stage = Stage.PROCESSING

        if state.stage != started_in:
            logger.debug(
                f"Conversation {state.conversation_id} stage {started_in.value} -> "
                f"{state.stage.value} (content={content}, topics={topics})"
            )
        return content

    def record_response(self, state: ConversationState, reply_text: str | None) -> MoveType:
        """Register the assistant's reply: move type, turn count and probe streak."""

        move = classify_move_type(reply_text)
        state.last_move_type = move
        state.turn_count += 1
        state.consecutive_probes = (
            state.consecutive_probes + 1 if move == MoveType.OPEN_PROBE else 0
        )
        state.last_accessed = self.now()
        logger.debug(
            f"Conversation {state.conversation_id} after reply: stage={state.stage.value} "
            f"move={move.value} turn={state.turn_count}"
        )
        return move

    # ------------------------------------------------------------------
    # Active runs
    # ------------------------------------------------------------------
    def set_active_run(
        self,
        state: ConversationState,
        mode: str | None = None,
        anchor_label: str | None = None,
    ) -> ActiveRun:
        now = self.now()
        mode = mode or DEFAULT_RUN_MODE
        run = state.active_run
        if run is not None and run.mode == mode:
            run.last_touched_at = now
            if anchor_label:
                run.anchor_label = anchor_label
        else:
            run = ActiveRun(
                mode=mode,
                anchor_label=anchor_label or DEFAULT_RUN_LABEL,
                started_at=now,
                last_touched_at=now,
                ttl=self.run_ttl,
            )
            state.active_run = run
        state.consecutive_non_run_turns = 0
        return replace(run)

    def get_active_run(self, state: ConversationState) -> ActiveRun | None:
        """Return a view of the active run, clearing it if its TTL elapsed."""
        run = state.active_run
        if run is None:
            return None
        if run.is_expired(self.now()):
            state.active_run = None
            state.consecutive_non_run_turns = 0
            logger.debug(f"Active {run.mode} run expired for {state.conversation_id}")
            return replace(run, expired=True)
        return replace(run, expired=False)

    def clear_active_run(self, state: ConversationState, reason: str | None = None) -> str:
        state.active_run = None
        state.consecutive_non_run_turns = 0
        return reason or "manual_clear"

    def increment_non_run_turns(self, state: ConversationState) -> int:
        state.consecutive_non_run_turns += 1
        return state.consecutive_non_run_turns

    # ------------------------------------------------------------------
    # Pending followups
    # ------------------------------------------------------------------
    def set_pending_followup(
        self,
        state: ConversationState,
        activity_id: str | None = None,
        activity_name: str | None = None,
        ttl: timedelta | None = None,
    ) -> PendingFollowup:
        followup = PendingFollowup(
            created_at=self.now(),
            ttl=ttl or self.followup_ttl,
            activity_id=activity_id,
            activity_name=activity_name or "an activity",
        )
        state.pending_followup = followup
        return replace(followup)

    def get_pending_followup(self, state: ConversationState) -> PendingFollowup | None:
        followup = state.pending_followup
        if followup is None:
            return None
        if followup.is_expired(self.now()):
            state.pending_followup = None
            return replace(followup, expired=True)
        return replace(followup, expired=False)

    def clear_pending_followup(self, state: ConversationState) -> None:
        state.pending_followup = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @staticmethod
    def snapshot(state: ConversationState) -> dict[str, Any]:
        """Plain-dict copy of ``state`` for synthesis; never mutates it."""
        return {
            "stage": state.stage.value,
            "last_move_type": state.last_move_type.value if state.last_move_type else None,
            "topic_established": state.topic_established,
            "turn_count": state.turn_count,
            "probe_count": state.consecutive_probes,
            "last_topic_keywords": list(state.last_topic_keywords),
            "active_run_mode": state.active_run.mode if state.active_run else None,
            "pending_followup": (
                state.pending_followup.type if state.pending_followup else None
            ),
        }

    @staticmethod
    def build_state_prompt(state: ConversationState, had_content: bool) -> str:
        """Render the conversation state as prompt guidance for the reply model."""

        topics = ", ".join(state.last_topic_keywords) or "none yet"
        lines = [
            "=== CONVERSATION STATE ===",
            f"Stage: {state.stage.value}",
            f"Last Move Type: {state.last_move_type.value if state.last_move_type else 'NONE'}",
            f"Topic Established: {state.topic_established}",
            f"Topics Mentioned: {topics}",
            f"Turn Count: {state.turn_count}",
        ]

        if state.last_move_type == MoveType.OPEN_PROBE:
            lines += [
                "",
                "Your last message was an open probe. Do not ask another generic open question.",
                "Reflect what they said, follow up on something specific, validate, or simply stay present.",
            ]

        if had_content and state.topic_established:
            lines += [
                "",
                "They shared something real. Respond to it instead of resetting with a generic question.",
                f"Stay with: {', '.join(state.last_topic_keywords) or 'what they said'}.",
            ]

        if state.stage in EARLY_STAGES:
            lines += ["", "Early conversation: one warm, gentle probe is acceptable."]
        elif state.stage in (Stage.SHARING, Stage.EXPLORING):
            lines += [
                "",
                "They're sharing. Follow their thread; generic probes are not allowed at this stage.",
            ]

        return "\n".join(lines)

    @staticmethod
    def violates_probe_rules(
        reply_text: str | None, state: ConversationState, had_content: bool
    ) -> bool:
        """True when ``reply_text`` is an open probe the current state forbids."""

        if classify_move_type(reply_text) != MoveType.OPEN_PROBE:
            return False
        if state.last_move_type == MoveType.OPEN_PROBE and had_content:
            logger.info(
                f"Probe rule violation for {state.conversation_id}: consecutive open probes"
            )
            return True
        if state.topic_established and state.stage in ENGAGED_STAGES:
            logger.info(
                f"Probe rule violation for {state.conversation_id}: open probe in "
                f"{state.stage.value} with an established topic"
            )
            return True
        return False

    @staticmethod
    def fallback_response(state: ConversationState) -> str:
        return fallback_reply(state.last_topic_keywords, state.turn_count)


__all__ = [
    "Stage",
    "ActiveRun",
    "PendingFollowup",
    "ConversationState",
    "ConversationStateStore",
]
