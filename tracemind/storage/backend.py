"""
SQLAlchemy-backed relational store

Synchronous on purpose: :class:`~tracemind.storage.service.MemoryStore` runs
each call in a worker thread. Every SQLAlchemy failure surfaces as
:class:`~tracemind.utils.exceptions.StorageError`.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import create_engine, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..utils.exceptions import StorageError
from .models import (
    Base,
    CompressionRow,
    ConversationRow,
    CoreMemoryRow,
    MessageRow,
    SessionRow,
)
from .records import ConversationRecord, SessionCompression, SessionSummary

T = TypeVar("T")


def _conversation_record(row: ConversationRow) -> ConversationRecord:
    return ConversationRecord(
        conversation_id=row.conversation_id,
        current_session_id=row.current_session_id,
        session_started_at=row.session_started_at,
        last_activity_at=row.last_activity_at,
        user_msg_count_since_extraction=row.user_msg_count_since_extraction or 0,
        user_msg_count_since_summary=row.user_msg_count_since_summary or 0,
        message_count=row.message_count or 0,
    )


def _message_dict(row: MessageRow) -> dict[str, Any]:
    return {
        "conversation_id": row.conversation_id,
        "session_id": row.session_id,
        "position": row.position,
        "role": row.role,
        "content": row.content,
        "created_at": row.created_at,
    }


class SQLAlchemyBackend:
    """Relational persistence for conversations, messages and derived memory."""

    def __init__(self, database_connect: str, echo: bool = False):
        self.database_connect = database_connect
        self.engine = self._create_engine(database_connect, echo)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Schema creation failed: {e}", operation="create_all") from e
        logger.info(f"SQLAlchemy backend ready: {self.engine.url.render_as_string()}")

    @staticmethod
    def _create_engine(database_connect: str, echo: bool):
        if database_connect.startswith("sqlite"):
            if database_connect in ("sqlite://", "sqlite:///:memory:"):
                return create_engine(
                    database_connect,
                    echo=echo,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            if ":///" in database_connect:
                db_path = database_connect.split(":///", 1)[1]
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            return create_engine(
                database_connect,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
        return create_engine(
            database_connect,
            echo=echo,
            json_serializer=json.dumps,
            json_deserializer=json.loads,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"{operation} failed: {e}", operation=operation) from e
        finally:
            session.close()

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        with self._session(operation) as session:
            return fn(session)

    def dispose(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Conversations and sessions
    # ------------------------------------------------------------------
    def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        def _fetch(session: Session) -> ConversationRecord | None:
            row = session.get(ConversationRow, conversation_id)
            return _conversation_record(row) if row else None

        return self._run("get_conversation", _fetch)

    def create_conversation(self, record: ConversationRecord) -> ConversationRecord:
        def _create(session: Session) -> ConversationRecord:
            session.add(
                ConversationRow(
                    conversation_id=record.conversation_id,
                    current_session_id=record.current_session_id,
                    session_started_at=record.session_started_at,
                    last_activity_at=record.last_activity_at,
                    user_msg_count_since_extraction=record.user_msg_count_since_extraction,
                    user_msg_count_since_summary=record.user_msg_count_since_summary,
                    message_count=record.message_count,
                )
            )
            session.add(
                SessionRow(
                    session_id=record.current_session_id,
                    conversation_id=record.conversation_id,
                    started_at=record.session_started_at,
                )
            )
            return record

        return self._run("create_conversation", _create)

    def update_conversation(self, conversation_id: str, **fields: Any) -> None:
        def _update(session: Session) -> None:
            session.execute(
                update(ConversationRow)
                .where(ConversationRow.conversation_id == conversation_id)
                .values(**fields)
            )

        self._run("update_conversation", _update)

    def start_session(
        self,
        conversation_id: str,
        session_id: str,
        started_at: datetime,
        previous_session_id: str | None = None,
    ) -> None:
        def _start(session: Session) -> None:
            if previous_session_id:
                session.execute(
                    update(SessionRow)
                    .where(SessionRow.session_id == previous_session_id)
                    .values(ended_at=started_at)
                )
            session.add(
                SessionRow(
                    session_id=session_id,
                    conversation_id=conversation_id,
                    started_at=started_at,
                )
            )
            session.execute(
                update(ConversationRow)
                .where(ConversationRow.conversation_id == conversation_id)
                .values(
                    current_session_id=session_id,
                    session_started_at=started_at,
                    user_msg_count_since_summary=0,
                )
            )

        self._run("start_session", _start)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    def insert_messages(self, messages: list[dict[str, Any]]) -> None:
        def _insert(session: Session) -> None:
            session.add_all(
                MessageRow(
                    conversation_id=message["conversation_id"],
                    session_id=message.get("session_id"),
                    position=message.get("position", 0),
                    role=message["role"],
                    content=message["content"],
                    created_at=message["created_at"],
                )
                for message in messages
            )

        self._run("insert_messages", _insert)

    def recent_messages(self, conversation_id: str, limit: int) -> list[dict[str, Any]]:
        def _fetch(session: Session) -> list[dict[str, Any]]:
            rows = session.scalars(
                select(MessageRow)
                .where(MessageRow.conversation_id == conversation_id)
                .order_by(MessageRow.created_at.desc(), MessageRow.id.desc())
                .limit(limit)
            ).all()
            return [_message_dict(row) for row in reversed(rows)]

        return self._run("recent_messages", _fetch)

    def messages_in_range(
        self, conversation_id: str, start: int, end: int
    ) -> list[dict[str, Any]]:
        """Messages whose position falls in ``[start, end)``, oldest first."""

        def _fetch(session: Session) -> list[dict[str, Any]]:
            rows = session.scalars(
                select(MessageRow)
                .where(
                    MessageRow.conversation_id == conversation_id,
                    MessageRow.position >= start,
                    MessageRow.position < end,
                )
                .order_by(MessageRow.position, MessageRow.id)
            ).all()
            return [_message_dict(row) for row in rows]

        return self._run("messages_in_range", _fetch)

    # ------------------------------------------------------------------
    # Derived memory
    # ------------------------------------------------------------------
    def load_core_memory(self, conversation_id: str) -> dict[str, Any] | None:
        def _fetch(session: Session) -> dict[str, Any] | None:
            row = session.get(CoreMemoryRow, conversation_id)
            return dict(row.payload) if row else None

        return self._run("load_core_memory", _fetch)

    def upsert_core_memory(
        self, conversation_id: str, payload: dict[str, Any], updated_at: datetime
    ) -> None:
        def _upsert(session: Session) -> None:
            row = session.get(CoreMemoryRow, conversation_id)
            if row is None:
                session.add(
                    CoreMemoryRow(
                        conversation_id=conversation_id,
                        payload=payload,
                        updated_at=updated_at,
                    )
                )
            else:
                row.payload = payload
                row.updated_at = updated_at

        self._run("upsert_core_memory", _upsert)

    def session_summaries(self, conversation_id: str, limit: int) -> list[SessionSummary]:
        def _fetch(session: Session) -> list[SessionSummary]:
            rows = session.scalars(
                select(SessionRow)
                .where(
                    SessionRow.conversation_id == conversation_id,
                    SessionRow.summary.is_not(None),
                )
                .order_by(SessionRow.started_at.desc())
                .limit(limit)
            ).all()
            return [
                SessionSummary(
                    session_id=row.session_id,
                    summary=row.summary,
                    updated_at=row.summary_updated_at or row.started_at,
                )
                for row in rows
            ]

        return self._run("session_summaries", _fetch)

    def save_session_summary(self, conversation_id: str, summary: SessionSummary) -> None:
        def _save(session: Session) -> None:
            row = session.get(SessionRow, summary.session_id)
            if row is None:
                row = SessionRow(
                    session_id=summary.session_id,
                    conversation_id=conversation_id,
                    started_at=summary.updated_at,
                )
                session.add(row)
            row.summary = summary.summary
            row.summary_updated_at = summary.updated_at

        self._run("save_session_summary", _save)

    def latest_compressions(
        self, conversation_id: str, limit: int
    ) -> list[SessionCompression]:
        def _fetch(session: Session) -> list[SessionCompression]:
            rows = session.scalars(
                select(CompressionRow)
                .where(CompressionRow.conversation_id == conversation_id)
                .order_by(
                    CompressionRow.covers_message_count.desc(),
                    CompressionRow.id.desc(),
                )
                .limit(limit)
            ).all()
            return [
                SessionCompression(
                    session_id=row.session_id,
                    summary=row.summary,
                    covers_message_count=row.covers_message_count,
                    created_at=row.created_at,
                )
                for row in rows
            ]

        return self._run("latest_compressions", _fetch)

    def insert_compression(
        self, conversation_id: str, compression: SessionCompression
    ) -> None:
        def _insert(session: Session) -> None:
            session.add(
                CompressionRow(
                    conversation_id=conversation_id,
                    session_id=compression.session_id,
                    summary=compression.summary,
                    covers_message_count=compression.covers_message_count,
                    created_at=compression.created_at,
                )
            )

        self._run("insert_compression", _insert)


__all__ = ["SQLAlchemyBackend"]
