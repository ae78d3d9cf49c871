"""
Core-memory scheduling and background extraction

:class:`CoreMemoryManager` decides when a conversation is due for extraction or
a session summary and runs either one under a single-flight lock. Generation
failures abort the attempt without touching stored memory, so the
since-extraction and since-summary counters keep growing and the next natural
threshold retries.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

from loguru import logger

from ..agents.completion import CompletionService, complete_json, complete_text
from ..agents.prompts import EXTRACTION_PROMPT, SESSION_SUMMARY_PROMPT
from ..config.settings import AgentSettings, MemorySettings
from ..heuristics.importance import has_importance_signal
from ..utils.exceptions import CompletionError, ExceptionHandler, ValidationError
from .core_memory import CoreMemory, merge_core_memory, validate_core_memory
from .locks import LockTable

if TYPE_CHECKING:
    from ..storage.records import SessionSummary
    from ..storage.service import MemoryStore


def _counter(conversation: Any, name: str) -> int:
    if isinstance(conversation, Mapping):
        value = conversation.get(name)
    else:
        value = getattr(conversation, name, None)
    return int(value or 0)


class CoreMemoryManager:
    """Schedules and runs extraction and session summaries for conversations."""

    def __init__(
        self,
        store: MemoryStore,
        completion: CompletionService | None,
        settings: MemorySettings | None = None,
        agents: AgentSettings | None = None,
        locks: LockTable | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.completion = completion
        self.settings = settings or MemorySettings()
        self.agents = agents or AgentSettings()
        self.locks = locks or LockTable()
        self._clock = clock or datetime.now

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------
    def should_extract(
        self, conversation: Any, recent_messages: Sequence[Mapping[str, Any]] = ()
    ) -> bool:
        """True once enough user messages arrived, sooner if one looks important."""

        count = _counter(conversation, "user_msg_count_since_extraction")
        if count >= self.settings.extraction_threshold:
            return True
        if count >= self.settings.importance_extraction_threshold:
            return has_importance_signal(
                recent_messages,
                window=self.settings.importance_window,
                min_matches=self.settings.importance_min_matches,
                long_message_chars=self.settings.importance_long_message_chars,
            )
        return False

    def should_summarize(self, conversation: Any, session_rotated: bool = False) -> bool:
        if session_rotated:
            return True
        count = _counter(conversation, "user_msg_count_since_summary")
        return count >= self.settings.summary_threshold

    # ------------------------------------------------------------------
    # Validation and merge with configured caps
    # ------------------------------------------------------------------
    def validate(self, raw: Any) -> CoreMemory:
        return validate_core_memory(raw, caps=self.settings.caps, now=self._clock())

    def merge(self, existing: CoreMemory | None, extracted: CoreMemory) -> CoreMemory:
        return merge_core_memory(
            existing, extracted, caps=self.settings.caps, now=self._clock()
        )

    # ------------------------------------------------------------------
    # Background operations
    # ------------------------------------------------------------------
    async def run_extraction(
        self, conversation_id: str, messages: Sequence[Mapping[str, Any]]
    ) -> CoreMemory | None:
        """Extract core memory from recent user messages and merge it in.

        Returns the merged memory, or None when the run was skipped (lock held,
        too little text, no completion service) or failed.
        """

        if self.completion is None:
            logger.debug(f"No completion service; extraction skipped for {conversation_id}")
            return None

        with self.locks.hold(conversation_id, "extraction") as acquired:
            if not acquired:
                return None

            user_messages = [
                str(message.get("content") or "")
                for message in messages
                if message.get("role") == "user"
            ][-self.settings.extraction_message_window :]
            user_text = "\n\n".join(user_messages)
            if len(user_text) < self.settings.min_extraction_chars:
                logger.debug(
                    f"Not enough content for extraction in {conversation_id} "
                    f"({len(user_text)} chars)"
                )
                return None

            try:
                raw = await complete_json(
                    self.completion,
                    EXTRACTION_PROMPT,
                    [{"role": "user", "content": user_text}],
                    temperature=self.agents.extraction_temperature,
                )
                extracted = self.validate(raw)
            except (CompletionError, ValidationError) as e:
                logger.warning(f"Extraction failed for {conversation_id}: {e}")
                ExceptionHandler.log_exception(
                    e,
                    logger=logger,
                    level="DEBUG",
                    extra_context={"conversation_id": conversation_id, "kind": "extraction"},
                )
                return None

            existing = await self.store.fetch_core_memory(conversation_id)
            merged = self.merge(existing, extracted)
            await self.store.save_core_memory(conversation_id, merged)
            logger.info(
                f"Core memory extraction complete for {conversation_id}: "
                f"{len(merged.user_facts)} facts, {len(merged.themes)} themes"
            )
            return merged

    async def run_session_summary(
        self,
        conversation_id: str,
        session_id: str,
        messages: Sequence[Mapping[str, Any]],
    ) -> SessionSummary | None:
        """Summarize one session in a few sentences and store the result."""

        if self.completion is None:
            logger.debug(f"No completion service; summary skipped for {conversation_id}")
            return None

        with self.locks.hold(conversation_id, "summary") as acquired:
            if not acquired:
                return None

            session_messages = [
                f"{message.get('role')}: {message.get('content') or ''}"
                for message in messages
                if message.get("session_id") == session_id
            ][-self.settings.summary_message_window :]
            transcript = "\n".join(session_messages)
            if len(transcript) < self.settings.min_summary_chars:
                logger.debug(f"Session {session_id} too short to summarize")
                return None

            try:
                summary = await complete_text(
                    self.completion,
                    SESSION_SUMMARY_PROMPT,
                    [{"role": "user", "content": transcript}],
                    temperature=self.agents.summary_temperature,
                    max_tokens=self.agents.summary_max_tokens,
                )
            except CompletionError as e:
                logger.warning(f"Session summary failed for {conversation_id}: {e}")
                ExceptionHandler.log_exception(
                    e,
                    logger=logger,
                    level="DEBUG",
                    extra_context={"conversation_id": conversation_id, "kind": "summary"},
                )
                return None

            record = await self.store.save_session_summary(
                conversation_id, session_id, summary
            )
            logger.info(f"Session summary saved for {session_id}")
            return record


__all__ = ["CoreMemoryManager"]
