"""
TraceMind facade

Wires the state store, persistence facade, memory manager, compression engine,
context assembler and synthesizer into one turn pipeline. Extraction and
session summaries run as background asyncio tasks; :meth:`TraceMind.drain`
waits for them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Mapping
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any

from loguru import logger

from ..agents.completion import CompletionService, OpenAICompletionService
from ..brain.bullets import pick_memory_bullets
from ..brain.diagnostics import log_trace_intent
from ..brain.intent import TraceIntent
from ..brain.synthesis import TurnSignals, synthesize
from ..config.manager import ConfigManager
from ..config.settings import TraceMindSettings
from ..heuristics.moves import MoveType
from ..memory.compression import CompressionEngine, CompressionResult
from ..memory.context import ContextAssembler
from ..memory.core_memory import CoreMemory
from ..memory.locks import LockTable
from ..memory.manager import CoreMemoryManager
from ..memory.sessions import (
    ContinuityVector,
    RotationResult,
    build_greeting,
    check_and_rotate_session,
    compute_continuity_vector,
)
from ..state.conversation_state import ConversationState, ConversationStateStore
from ..storage.records import SessionSummary
from ..storage.service import MemoryStore


@dataclass
class TurnContext:
    """Everything the reply layer needs for one user turn."""

    conversation_id: str
    session_id: str
    state: ConversationState
    had_content: bool
    rotation: RotationResult
    memory_context: str
    directive: TraceIntent
    state_prompt: str
    recent_messages: list[dict[str, Any]] = field(default_factory=list)
    compression: CompressionResult | None = None
    continuity: ContinuityVector | None = None
    greeting: str | None = None


class TraceMind:
    """Turn-synthesis and memory layer for one process."""

    def __init__(
        self,
        settings: TraceMindSettings | None = None,
        completion: CompletionService | None = None,
        store: MemoryStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings or ConfigManager.get_instance().get_settings()
        if completion is None and self.settings.agents.openai_api_key:
            completion = OpenAICompletionService.from_settings(self.settings.agents)
        if completion is None:
            logger.info("No completion service configured; extraction and compression disabled")
        self.completion = completion

        self.store = store or MemoryStore.from_settings(self.settings, clock=clock)
        self.locks = LockTable()
        self.states = ConversationStateStore.from_settings(self.settings.state, clock=clock)
        self.memory = CoreMemoryManager(
            self.store,
            completion,
            settings=self.settings.memory,
            agents=self.settings.agents,
            locks=self.locks,
            clock=clock,
        )
        self.compressor = CompressionEngine(
            self.store,
            completion,
            settings=self.settings.compression,
            agents=self.settings.agents,
            locks=self.locks,
        )
        self.assembler = ContextAssembler(self.settings.context, self.settings.memory)
        self._tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Conversation state
    # ------------------------------------------------------------------
    def get_or_create_conversation_state(self, conversation_id: str) -> ConversationState:
        return self.states.get_or_create(conversation_id)

    def advance_conversation_state(self, conversation_id: str, user_text: str) -> bool:
        return self.states.advance(self.states.get_or_create(conversation_id), user_text)

    def sweep(self) -> int:
        """Evict idle conversation states; meant to be called by a scheduler."""
        return self.states.sweep()

    # ------------------------------------------------------------------
    # Memory operations
    # ------------------------------------------------------------------
    async def _messages(self, conversation_id: str, messages: Any) -> list[dict[str, Any]]:
        if messages is not None:
            return list(messages)
        return await self.store.fetch_recent_messages(
            conversation_id, self.settings.compression.fetch_limit
        )

    async def run_extraction(
        self, conversation_id: str, messages: list[dict[str, Any]] | None = None
    ) -> CoreMemory | None:
        return await self.memory.run_extraction(
            conversation_id, await self._messages(conversation_id, messages)
        )

    async def run_session_summary(
        self,
        conversation_id: str,
        session_id: str,
        messages: list[dict[str, Any]] | None = None,
    ) -> SessionSummary | None:
        return await self.memory.run_session_summary(
            conversation_id, session_id, await self._messages(conversation_id, messages)
        )

    async def compress_older_messages(
        self,
        conversation_id: str,
        session_id: str | None,
        messages: list[dict[str, Any]] | None = None,
    ) -> CompressionResult | None:
        return await self.compressor.compress(
            conversation_id, session_id, await self._messages(conversation_id, messages)
        )

    async def build_memory_context(
        self,
        conversation_id: str,
        trim_level: int = 0,
        recent_messages: list[dict[str, Any]] | None = None,
        compressions: list[Any] | None = None,
    ) -> str:
        core_memory = await self.store.fetch_core_memory(conversation_id)
        summaries = await self.store.fetch_session_summaries(
            conversation_id, self.settings.database.max_session_summaries
        )
        if recent_messages is None:
            recent_messages = await self.store.fetch_recent_messages(conversation_id, 30)
        if compressions is None:
            compressions = await self.store.fetch_session_compressions(
                conversation_id, self.settings.context.compression_blocks
            )
        return self.assembler.assemble(
            core_memory, summaries, recent_messages, trim_level, compressions
        )

    # ------------------------------------------------------------------
    # Directive
    # ------------------------------------------------------------------
    def synthesize_turn_directive(
        self,
        signals: TurnSignals | Mapping[str, Any] | None = None,
        *,
        request_id: str | None = None,
        **inputs: Any,
    ) -> TraceIntent:
        if signals is None:
            signals = TurnSignals.from_mapping(inputs)
        elif isinstance(signals, Mapping):
            signals = TurnSignals.from_mapping({**signals, **inputs})
        directive = synthesize(signals)
        log_trace_intent(
            directive,
            enabled=self.settings.intent.log_enabled,
            request_id=request_id,
            model=self.settings.agents.default_model,
        )
        return directive

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------
    def _schedule(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.opt(exception=error).error(f"Background task {task.get_name()} failed")

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every background task scheduled so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self.store.backend is not None:
            self.store.backend.dispose()

    # ------------------------------------------------------------------
    # Turn pipeline
    # ------------------------------------------------------------------
    async def prepare_turn(
        self,
        conversation_id: str | None,
        user_text: str,
        signals: TurnSignals | Mapping[str, Any] | None = None,
        trim_level: int = 0,
        request_id: str | None = None,
    ) -> TurnContext:
        """Run one user turn up to the point where a reply can be generated."""

        conversation = await self.store.ensure_conversation(conversation_id)
        cid = conversation.conversation_id
        rotation = await check_and_rotate_session(
            self.store, conversation, self.settings.session.rotation_gap_hours
        )
        await self.store.save_message(cid, "user", user_text, rotation.session_id)

        state = self.states.get_or_create(cid)
        had_content = self.states.advance(state, user_text)

        messages = await self.store.fetch_recent_messages(
            cid, self.settings.compression.fetch_limit
        )
        mirrored = self.store.get_mirrored_conversation(cid)
        record = mirrored.record if mirrored else conversation

        if self.memory.should_extract(record, messages):
            self._schedule(self.memory.run_extraction(cid, messages), f"extraction:{cid}")
        if self.memory.should_summarize(record, rotation.rotated):
            target = rotation.previous_session_id if rotation.rotated else rotation.session_id
            if target:
                self._schedule(
                    self.memory.run_session_summary(cid, target, messages),
                    f"summary:{cid}",
                )

        compression = await self.compressor.compress(cid, rotation.session_id, messages)
        recent = compression.recent_messages if compression else messages
        compressions = [compression.compression_context] if compression else []

        core_memory = await self.store.fetch_core_memory(cid)
        summaries = await self.store.fetch_session_summaries(
            cid, self.settings.database.max_session_summaries
        )
        memory_context = self.assembler.assemble(
            core_memory, summaries, recent, trim_level, compressions
        )

        if isinstance(signals, TurnSignals):
            inputs = {item.name: getattr(signals, item.name) for item in fields(signals)}
        else:
            inputs = dict(signals or {})
        inputs["current_message"] = user_text
        inputs["conversation_state"] = self.states.snapshot(state)
        if inputs.get("memory_bullets") is None:
            inputs["memory_bullets"] = pick_memory_bullets(memory_context)
        directive = self.synthesize_turn_directive(
            TurnSignals.from_mapping(inputs), request_id=request_id
        )

        continuity = None
        greeting = None
        if rotation.rotated:
            user_messages = [m for m in messages if m.get("role") == "user"]
            continuity = compute_continuity_vector(core_memory, user_messages)
            greeting = build_greeting(rotation.gap_hours, continuity.recent_emotion)

        return TurnContext(
            conversation_id=cid,
            session_id=rotation.session_id,
            state=state,
            had_content=had_content,
            rotation=rotation,
            memory_context=memory_context,
            directive=directive,
            state_prompt=self.states.build_state_prompt(state, had_content),
            recent_messages=list(recent),
            compression=compression,
            continuity=continuity,
            greeting=greeting,
        )

    async def record_response(
        self,
        conversation_id: str,
        reply_text: str,
        session_id: str | None = None,
    ) -> MoveType:
        """Store the assistant reply and classify it for the state machine."""

        await self.store.save_message(conversation_id, "assistant", reply_text, session_id)
        return self.states.record_response(self.states.get_or_create(conversation_id), reply_text)


__all__ = ["TraceMind", "TurnContext"]
