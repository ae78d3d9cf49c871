"""
Persistence facade with an in-memory mirror

Every write lands in a per-conversation in-memory mirror first and is then
forwarded to the relational backend when one is configured. A backend failure
never reaches the caller: reads fall back to the mirror and writes are parked in
a pending-write queue that is flushed the next time the conversation is ensured.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from loguru import logger

from ..memory.core_memory import CoreMemory
from ..utils.exceptions import ExceptionHandler, StorageError, ValidationError
from .records import (
    ConversationRecord,
    PendingWrites,
    SessionCompression,
    SessionSummary,
)

Clock = Callable[[], datetime]


@dataclass
class MirroredConversation:
    record: ConversationRecord
    messages: list[dict[str, Any]] = field(default_factory=list)
    core_memory: CoreMemory | None = None
    session_summaries: list[SessionSummary] = field(default_factory=list)
    compressions: list[SessionCompression] = field(default_factory=list)


def normalize_conversation_id(conversation_id: str | None) -> str:
    """Return ``conversation_id`` if it is a UUID, otherwise a fresh UUID4."""
    if conversation_id:
        try:
            return str(uuid.UUID(str(conversation_id)))
        except ValueError:
            pass
    return str(uuid.uuid4())


class MemoryStore:
    """Async persistence facade used by the memory pipeline."""

    def __init__(
        self,
        backend: Any | None = None,
        max_messages: int = 200,
        max_session_summaries: int = 3,
        clock: Clock | None = None,
    ):
        self.backend = backend
        self.max_messages = max_messages
        self.max_session_summaries = max_session_summaries
        self._clock = clock or datetime.now
        self._conversations: dict[str, MirroredConversation] = {}
        self._pending: dict[str, PendingWrites] = {}

    @classmethod
    def from_settings(cls, settings: Any, clock: Clock | None = None) -> MemoryStore:
        """Build a store from :class:`~tracemind.config.settings.TraceMindSettings`."""

        backend = None
        url = settings.get_database_url()
        if url:
            from .backend import SQLAlchemyBackend

            backend = SQLAlchemyBackend(url, echo=settings.database.echo_sql)
        else:
            logger.info("No database configured; running with in-memory storage only")
        return cls(
            backend=backend,
            max_messages=settings.database.max_messages_in_memory,
            max_session_summaries=settings.database.max_session_summaries,
            clock=clock,
        )

    @property
    def memory_only(self) -> bool:
        return self.backend is None

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _mirror(self, conversation_id: str) -> MirroredConversation:
        mirrored = self._conversations.get(conversation_id)
        if mirrored is None:
            now = self.now()
            mirrored = MirroredConversation(
                record=ConversationRecord(
                    conversation_id=conversation_id,
                    current_session_id=str(uuid.uuid4()),
                    session_started_at=now,
                    last_activity_at=now,
                )
            )
            self._conversations[conversation_id] = mirrored
        return mirrored

    def _trim_mirror(self, mirrored: MirroredConversation) -> None:
        """Cap mirrored messages; without a backend, unfolded messages are kept."""

        excess = len(mirrored.messages) - self.max_messages
        if excess <= 0:
            return
        if self.backend is None:
            covered = max(
                (item.covers_message_count for item in mirrored.compressions), default=0
            )
            excess = sum(
                1 for message in mirrored.messages[:excess] if message["position"] < covered
            )
        if excess:
            mirrored.messages = mirrored.messages[excess:]

    def _queue(self, conversation_id: str) -> PendingWrites:
        return self._pending.setdefault(conversation_id, PendingWrites())

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        """Run a backend method in a worker thread."""
        return await asyncio.to_thread(getattr(self.backend, method), *args, **kwargs)

    def _log_failure(self, operation: str, conversation_id: str, error: Exception) -> None:
        logger.warning(f"Storage {operation} failed for {conversation_id}; using in-memory fallback")
        ExceptionHandler.log_exception(
            error,
            logger=logger,
            level="DEBUG",
            extra_context={"operation": operation, "conversation_id": conversation_id},
        )

    def _counter_fields(self, record: ConversationRecord) -> dict[str, Any]:
        return {
            "last_activity_at": record.last_activity_at,
            "user_msg_count_since_extraction": record.user_msg_count_since_extraction,
            "user_msg_count_since_summary": record.user_msg_count_since_summary,
            "message_count": record.message_count,
        }

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------
    async def ensure_conversation(self, conversation_id: str | None) -> ConversationRecord:
        """Load or create the conversation, flushing any parked writes first."""

        valid_id = normalize_conversation_id(conversation_id)
        if conversation_id and valid_id != conversation_id:
            logger.debug(f"Replaced non-UUID conversation id {conversation_id!r} with {valid_id}")
        mirrored = self._mirror(valid_id)

        if self.backend is None:
            return replace(mirrored.record)

        await self.flush_pending_writes(valid_id)
        try:
            stored = await self._call("get_conversation", valid_id)
            if stored is None:
                stored = await self._call(
                    "create_conversation", replace(mirrored.record)
                )
            elif self._pending.get(valid_id) is None:
                mirrored.record = replace(stored)
        except StorageError as e:
            self._log_failure("ensure_conversation", valid_id, e)
        return replace(mirrored.record)

    def get_mirrored_conversation(self, conversation_id: str) -> MirroredConversation | None:
        return self._conversations.get(conversation_id)

    async def start_session(self, conversation_id: str) -> str:
        """Open a new session for ``conversation_id`` and return its id."""

        mirrored = self._mirror(conversation_id)
        previous = mirrored.record.current_session_id
        new_session_id = str(uuid.uuid4())
        now = self.now()
        mirrored.record.current_session_id = new_session_id
        mirrored.record.session_started_at = now
        mirrored.record.user_msg_count_since_summary = 0

        if self.backend is not None:
            try:
                await self._call(
                    "start_session", conversation_id, new_session_id, now, previous
                )
            except StorageError as e:
                self._log_failure("start_session", conversation_id, e)
                self._queue(conversation_id).conversation_update = {
                    "current_session_id": new_session_id,
                    "session_started_at": now,
                    **self._counter_fields(mirrored.record),
                }
        logger.info(f"Started session {new_session_id} for conversation {conversation_id}")
        return new_session_id

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    async def save_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        mirrored = self._mirror(conversation_id)
        message = {
            "conversation_id": conversation_id,
            "session_id": session_id or mirrored.record.current_session_id,
            "position": mirrored.record.message_count,
            "role": role,
            "content": content,
            "created_at": self.now(),
        }
        mirrored.messages.append(message)
        mirrored.record.message_count += 1
        self._trim_mirror(mirrored)
        mirrored.record.last_activity_at = message["created_at"]
        if role == "user":
            mirrored.record.user_msg_count_since_extraction += 1
            mirrored.record.user_msg_count_since_summary += 1

        if self.backend is None:
            return message

        inserted = False
        try:
            await self._call("insert_messages", [message])
            inserted = True
            await self._call(
                "update_conversation",
                conversation_id,
                **self._counter_fields(mirrored.record),
            )
        except StorageError as e:
            self._log_failure("save_message", conversation_id, e)
            queue = self._queue(conversation_id)
            if not inserted:
                queue.messages.append(message)
            queue.conversation_update = {
                **(queue.conversation_update or {}),
                **self._counter_fields(mirrored.record),
            }
        return message

    async def fetch_recent_messages(
        self, conversation_id: str, limit: int = 30
    ) -> list[dict[str, Any]]:
        mirrored = self._conversations.get(conversation_id)
        fallback = list(mirrored.messages[-limit:]) if mirrored and limit > 0 else []
        if self.backend is None:
            return fallback
        try:
            return await self._call(
                "recent_messages", conversation_id, limit
            )
        except StorageError as e:
            self._log_failure("fetch_recent_messages", conversation_id, e)
            return fallback

    async def fetch_messages_range(
        self, conversation_id: str, start: int, end: int
    ) -> list[dict[str, Any]]:
        """Messages with absolute position in ``[start, end)``, oldest first."""

        mirrored = self._conversations.get(conversation_id)
        fallback = (
            [m for m in mirrored.messages if start <= m["position"] < end] if mirrored else []
        )
        if self.backend is None:
            return fallback
        try:
            return await self._call("messages_in_range", conversation_id, start, end)
        except StorageError as e:
            self._log_failure("fetch_messages_range", conversation_id, e)
            return fallback

    # ------------------------------------------------------------------
    # Core memory
    # ------------------------------------------------------------------
    async def fetch_core_memory(self, conversation_id: str) -> CoreMemory | None:
        mirrored = self._conversations.get(conversation_id)
        fallback = mirrored.core_memory if mirrored else None
        if self.backend is None:
            return fallback
        try:
            payload = await self._call("load_core_memory", conversation_id)
        except StorageError as e:
            self._log_failure("fetch_core_memory", conversation_id, e)
            return fallback
        if payload is None:
            return fallback
        return CoreMemory.model_validate(payload)

    async def save_core_memory(self, conversation_id: str, memory: CoreMemory) -> None:
        """Store ``memory`` and reset the since-extraction counter."""

        mirrored = self._mirror(conversation_id)
        mirrored.core_memory = memory
        mirrored.record.user_msg_count_since_extraction = 0

        if self.backend is None:
            return
        payload = memory.to_payload()
        updated_at = memory.updated_at or self.now()
        try:
            await self._call(
                "upsert_core_memory", conversation_id, payload, updated_at
            )
            await self._call(
                "update_conversation",
                conversation_id,
                user_msg_count_since_extraction=0,
            )
        except StorageError as e:
            self._log_failure("save_core_memory", conversation_id, e)
            queue = self._queue(conversation_id)
            queue.core_memory_upsert = payload
            queue.conversation_update = {
                **(queue.conversation_update or {}),
                **self._counter_fields(mirrored.record),
            }

    # ------------------------------------------------------------------
    # Session summaries
    # ------------------------------------------------------------------
    async def fetch_session_summaries(
        self, conversation_id: str, limit: int = 3
    ) -> list[SessionSummary]:
        """Most recent summaries first."""

        mirrored = self._conversations.get(conversation_id)
        fallback = (
            list(reversed(mirrored.session_summaries))[:limit] if mirrored else []
        )
        if self.backend is None:
            return fallback
        try:
            return await self._call(
                "session_summaries", conversation_id, limit
            )
        except StorageError as e:
            self._log_failure("fetch_session_summaries", conversation_id, e)
            return fallback

    async def save_session_summary(
        self, conversation_id: str, session_id: str, summary: str
    ) -> SessionSummary:
        """Store a session summary and reset the since-summary counter."""

        mirrored = self._mirror(conversation_id)
        record = SessionSummary(session_id=session_id, summary=summary, updated_at=self.now())
        mirrored.session_summaries = [
            existing
            for existing in mirrored.session_summaries
            if existing.session_id != session_id
        ] + [record]
        mirrored.session_summaries = mirrored.session_summaries[-self.max_session_summaries :]
        mirrored.record.user_msg_count_since_summary = 0

        if self.backend is None:
            return record
        try:
            await self._call(
                "save_session_summary", conversation_id, record
            )
            await self._call(
                "update_conversation",
                conversation_id,
                user_msg_count_since_summary=0,
            )
        except StorageError as e:
            self._log_failure("save_session_summary", conversation_id, e)
            queue = self._queue(conversation_id)
            queue.session_summary_upserts.append(record)
            queue.conversation_update = {
                **(queue.conversation_update or {}),
                **self._counter_fields(mirrored.record),
            }
        return record

    # ------------------------------------------------------------------
    # Compressions
    # ------------------------------------------------------------------
    async def fetch_session_compressions(
        self, conversation_id: str, limit: int = 2
    ) -> list[SessionCompression]:
        """Compressions ordered by coverage, highest first."""

        mirrored = self._conversations.get(conversation_id)
        fallback = (
            sorted(
                mirrored.compressions,
                key=lambda item: item.covers_message_count,
                reverse=True,
            )[:limit]
            if mirrored
            else []
        )
        if self.backend is None:
            return fallback
        try:
            stored = await self._call(
                "latest_compressions", conversation_id, limit
            )
        except StorageError as e:
            self._log_failure("fetch_session_compressions", conversation_id, e)
            return fallback
        if fallback and (
            not stored
            or fallback[0].covers_message_count > stored[0].covers_message_count
        ):
            return fallback
        return stored

    async def save_session_compression(
        self,
        conversation_id: str,
        session_id: str | None,
        summary: str,
        covers_message_count: int,
    ) -> SessionCompression:
        """Record a compression; coverage may never drop below the latest one."""

        mirrored = self._mirror(conversation_id)
        latest = max(
            (item.covers_message_count for item in mirrored.compressions), default=0
        )
        if covers_message_count < latest:
            raise ValidationError(
                "Compression coverage cannot decrease",
                field="covers_message_count",
                context={"latest": latest, "received": covers_message_count},
            )

        record = SessionCompression(
            session_id=session_id,
            summary=summary,
            covers_message_count=covers_message_count,
            created_at=self.now(),
        )
        mirrored.compressions.append(record)

        if self.backend is None:
            return record
        try:
            await self._call(
                "insert_compression", conversation_id, record
            )
        except StorageError as e:
            self._log_failure("save_session_compression", conversation_id, e)
            self._queue(conversation_id).compression_inserts.append(record)
        return record

    # ------------------------------------------------------------------
    # Pending writes
    # ------------------------------------------------------------------
    def pending_write_count(self, conversation_id: str) -> int:
        queue = self._pending.get(conversation_id)
        return len(queue) if queue else 0

    async def flush_pending_writes(self, conversation_id: str) -> bool:
        """Retry parked writes for ``conversation_id``; True when the queue drained."""

        queue = self._pending.get(conversation_id)
        if queue is None or self.backend is None:
            return queue is None

        mirrored = self._mirror(conversation_id)
        try:
            if await self._call("get_conversation", conversation_id) is None:
                await self._call("create_conversation", replace(mirrored.record))
            if queue.messages:
                await self._call("insert_messages", list(queue.messages))
                queue.messages = []
            if queue.core_memory_upsert is not None:
                await self._call(
                    "upsert_core_memory",
                    conversation_id,
                    queue.core_memory_upsert,
                    self.now(),
                )
                queue.core_memory_upsert = None
            while queue.session_summary_upserts:
                await self._call(
                    "save_session_summary", conversation_id, queue.session_summary_upserts[0]
                )
                queue.session_summary_upserts.pop(0)
            while queue.compression_inserts:
                await self._call(
                    "insert_compression", conversation_id, queue.compression_inserts[0]
                )
                queue.compression_inserts.pop(0)
            if queue.conversation_update:
                await self._call(
                    "update_conversation",
                    conversation_id,
                    **queue.conversation_update,
                )
                queue.conversation_update = None
        except StorageError as e:
            queue.attempts += 1
            queue.last_attempt_at = self.now()
            logger.warning(
                f"Flushing {len(queue)} pending writes for {conversation_id} failed "
                f"(attempt {queue.attempts}): {e}"
            )
            return False

        del self._pending[conversation_id]
        logger.info(f"Flushed pending writes for {conversation_id}")
        return True


__all__ = ["MemoryStore", "MirroredConversation", "normalize_conversation_id"]
