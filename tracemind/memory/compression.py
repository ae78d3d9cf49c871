"""
Rolling compression of older conversation history

Once a conversation grows past the compression threshold, every message except
the most recent ``keep_recent`` is eventually folded into one rolling summary.
Each compression record stores the cumulative number of messages it covers, so
the next pass only has to summarize the new segment and integrate the prior
summary text.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from ..agents.completion import CompletionService, complete_text
from ..agents.prompts import build_compression_prompt
from ..config.settings import AgentSettings, CompressionSettings
from ..utils.exceptions import CompletionError, ExceptionHandler, ValidationError
from .locks import LockTable

if TYPE_CHECKING:
    from ..storage.records import SessionCompression
    from ..storage.service import MemoryStore


@dataclass
class CompressionResult:
    compression_context: str
    recent_messages: list[dict[str, Any]] = field(default_factory=list)
    covers_message_count: int = 0
    is_new: bool = False


def _positioned(
    messages: Sequence[Mapping[str, Any]],
) -> list[tuple[int, Mapping[str, Any]]]:
    """Pair each message with its absolute position in the conversation.

    Messages without a stored position are taken to be the full history, so
    their list index is their position.
    """
    return [
        (index if message.get("position") is None else int(message["position"]), message)
        for index, message in enumerate(messages)
    ]


def _transcript(messages: Sequence[Mapping[str, Any]]) -> str:
    return "\n".join(
        f"{message.get('role')}: {message.get('content') or ''}" for message in messages
    )


class CompressionEngine:
    """Folds older history into a cumulative summary under a per-conversation lock."""

    def __init__(
        self,
        store: MemoryStore,
        completion: CompletionService | None,
        settings: CompressionSettings | None = None,
        agents: AgentSettings | None = None,
        locks: LockTable | None = None,
    ):
        self.store = store
        self.completion = completion
        self.settings = settings or CompressionSettings()
        self.agents = agents or AgentSettings()
        self.locks = locks or LockTable()

    def _reuse(
        self, prior: SessionCompression | None, recent: list[dict[str, Any]]
    ) -> CompressionResult | None:
        if prior is None:
            return None
        return CompressionResult(
            compression_context=prior.summary,
            recent_messages=recent,
            covers_message_count=prior.covers_message_count,
        )

    async def compress(
        self,
        conversation_id: str,
        session_id: str | None,
        messages: Sequence[Mapping[str, Any]],
    ) -> CompressionResult | None:
        """Compress ``messages`` beyond the recent window, if there is enough new material.

        Returns None when the conversation is below the threshold, another
        compression is running, or there is neither new material nor a prior
        compression to reuse.
        """

        positioned = _positioned(messages)
        total = positioned[-1][0] + 1 if positioned else 0
        if total <= self.settings.threshold:
            return None

        with self.locks.hold(conversation_id, "compression") as acquired:
            if not acquired:
                return None

            latest = await self.store.fetch_session_compressions(conversation_id, limit=1)
            prior = latest[0] if latest else None
            already = prior.covers_message_count if prior else 0

            keep = self.settings.keep_recent
            end = total - keep
            recent = [dict(message) for message in messages[-keep:]]

            if end - already < self.settings.min_new_messages:
                logger.debug(
                    f"Not enough new messages to compress for {conversation_id} "
                    f"({max(end - already, 0)} new)"
                )
                return self._reuse(prior, recent)

            if self.completion is None:
                logger.debug(f"No completion service; compression skipped for {conversation_id}")
                return self._reuse(prior, recent)

            pending = [
                (position, message)
                for position, message in positioned
                if already <= position < end
            ]
            if pending and pending[0][0] == already:
                segment = [message for _, message in pending]
            else:
                segment = await self.store.fetch_messages_range(conversation_id, already, end)
            if not segment:
                logger.warning(
                    f"Messages {already}-{end} of {conversation_id} are unavailable; "
                    "compression skipped"
                )
                return self._reuse(prior, recent)

            try:
                summary = await complete_text(
                    self.completion,
                    build_compression_prompt(prior.summary if prior else None),
                    [{"role": "user", "content": _transcript(segment)}],
                    temperature=self.agents.compression_temperature,
                    max_tokens=self.agents.compression_max_tokens,
                )
                if len(summary) < self.settings.min_summary_chars:
                    raise CompletionError(
                        "Compression summary too short",
                        context={"length": len(summary)},
                    )
                covers = end
                await self.store.save_session_compression(
                    conversation_id, session_id, summary, covers
                )
            except (CompletionError, ValidationError) as e:
                logger.warning(f"Compression failed for {conversation_id}: {e}")
                ExceptionHandler.log_exception(
                    e,
                    logger=logger,
                    level="DEBUG",
                    extra_context={"conversation_id": conversation_id, "kind": "compression"},
                )
                return self._reuse(prior, recent)

            logger.info(
                f"Compressed {len(segment)} messages for {conversation_id}; "
                f"coverage now {covers}"
            )
            return CompressionResult(
                compression_context=summary,
                recent_messages=recent,
                covers_message_count=covers,
                is_new=True,
            )


__all__ = ["CompressionEngine", "CompressionResult"]
