"""Process-local single-flight locks keyed by conversation and operation."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Literal

from loguru import logger

LockKind = Literal["extraction", "summary", "compression"]


class LockTable:
    """
    Tracks which background operations are in flight.

    ``acquire``/``release`` run without awaiting, so under cooperative asyncio
    scheduling the check-and-set cannot interleave. The table gives no
    cross-process exclusion.
    """

    def __init__(self):
        self._held: dict[tuple[str, str], datetime] = {}

    def acquire(self, conversation_id: str, kind: str) -> bool:
        key = (conversation_id, kind)
        if key in self._held:
            return False
        self._held[key] = datetime.now()
        return True

    def release(self, conversation_id: str, kind: str) -> None:
        self._held.pop((conversation_id, kind), None)

    def is_held(self, conversation_id: str, kind: str) -> bool:
        return (conversation_id, kind) in self._held

    def held(self) -> list[tuple[str, str]]:
        return list(self._held)

    @contextmanager
    def hold(self, conversation_id: str, kind: str) -> Iterator[bool]:
        """Yield whether the lock was obtained; release it on every exit path."""

        acquired = self.acquire(conversation_id, kind)
        if not acquired:
            logger.info(f"{kind} already running for {conversation_id}; skipping")
        try:
            yield acquired
        finally:
            if acquired:
                self.release(conversation_id, kind)

    def __len__(self) -> int:
        return len(self._held)


__all__ = ["LockKind", "LockTable"]
