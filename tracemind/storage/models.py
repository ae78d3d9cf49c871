"""
SQLAlchemy models for the tracemind relational store.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base: Any = declarative_base()


class ConversationRow(Base):
    """One companion conversation and its scheduling counters."""

    __tablename__ = "conversations"

    conversation_id = Column(String(36), primary_key=True)
    current_session_id = Column(String(36), nullable=False)
    session_started_at = Column(DateTime, nullable=False, default=datetime.now)
    last_activity_at = Column(DateTime, nullable=False, default=datetime.now)
    user_msg_count_since_extraction = Column(Integer, nullable=False, default=0)
    user_msg_count_since_summary = Column(Integer, nullable=False, default=0)
    message_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    sessions = relationship(
        "SessionRow", back_populates="conversation", cascade="all, delete-orphan"
    )
    core_memory = relationship(
        "CoreMemoryRow",
        back_populates="conversation",
        uselist=False,
        cascade="all, delete-orphan",
    )


class SessionRow(Base):
    """A run of activity inside a conversation, bounded by long gaps."""

    __tablename__ = "sessions"

    session_id = Column(String(36), primary_key=True)
    conversation_id = Column(
        String(36),
        ForeignKey("conversations.conversation_id", ondelete="CASCADE"),
        nullable=False,
    )
    started_at = Column(DateTime, nullable=False, default=datetime.now)
    ended_at = Column(DateTime)
    summary = Column(Text)
    summary_updated_at = Column(DateTime)

    conversation = relationship("ConversationRow", back_populates="sessions")

    __table_args__ = (Index("idx_session_conversation", "conversation_id", "started_at"),)


class MessageRow(Base):
    """A single user or assistant turn."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(36), nullable=False)
    session_id = Column(String(36))
    position = Column(Integer, nullable=False, default=0)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        Index("idx_message_conversation", "conversation_id", "created_at", "id"),
        Index("idx_message_position", "conversation_id", "position"),
    )


class CoreMemoryRow(Base):
    """Serialized core memory, one row per conversation."""

    __tablename__ = "core_memory"

    conversation_id = Column(
        String(36),
        ForeignKey("conversations.conversation_id", ondelete="CASCADE"),
        primary_key=True,
    )
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)

    conversation = relationship("ConversationRow", back_populates="core_memory")


class CompressionRow(Base):
    """Rolling summary of older messages with its cumulative coverage."""

    __tablename__ = "session_compressions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(36), nullable=False)
    session_id = Column(String(36))
    summary = Column(Text, nullable=False)
    covers_message_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        Index("idx_compression_conversation", "conversation_id", "covers_message_count"),
    )


__all__ = [
    "Base",
    "ConversationRow",
    "SessionRow",
    "MessageRow",
    "CoreMemoryRow",
    "CompressionRow",
]
