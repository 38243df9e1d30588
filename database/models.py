"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, MySQL 8+, SQLite.

Key design decisions:
  - JSON type for cards, nodes, edges, triggers and session context; on
    PG the dialect maps it to jsonb, on SQLite it serializes to TEXT.
  - Rows are converted to pydantic models at the store boundary; a row
    whose JSON no longer validates surfaces as DataIntegrityError there.
  - String primary keys (uuid hex), no database-specific sequences.
  - ``seq`` columns give blocks and flows a stable creation order,
    which is the trigger scan order.
"""
from __future__ import annotations

import uuid
from datetime import date as day_type, datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, Index, Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


# ──────────────────────────────────────────────────────────────
#  Bots
# ──────────────────────────────────────────────────────────────

class BotRow(Base):
    __tablename__ = "bots"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(256), default="")
    page_access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    platform: Mapped[str] = mapped_column(String(32), default="facebook")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# ──────────────────────────────────────────────────────────────
#  Sessions
# ──────────────────────────────────────────────────────────────

class SessionRow(Base):
    __tablename__ = "user_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    bot_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(128), nullable=False)

    current_block_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    current_card_index: Mapped[int] = mapped_column(Integer, default=0)
    current_node_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    current_flow_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    context: Mapped[Any] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("bot_id", "sender_id", name="uq_sessions_bot_sender"),
    )


# ──────────────────────────────────────────────────────────────
#  Blocks & Flows (authored by the editor, read by the engine)
# ──────────────────────────────────────────────────────────────

class BlockRow(Base):
    __tablename__ = "blocks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    seq: Mapped[int] = mapped_column(Integer, default=0)
    bot_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(256), default="")
    group_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    cards: Mapped[Any] = mapped_column(JSON, default=list)
    triggers: Mapped[Any] = mapped_column(JSON, default=list)
    is_welcome: Mapped[bool] = mapped_column(Boolean, default=False)
    is_default_answer: Mapped[bool] = mapped_column(Boolean, default=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_blocks_bot_seq", "bot_id", "seq"),
    )


class FlowRow(Base):
    __tablename__ = "flows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    seq: Mapped[int] = mapped_column(Integer, default=0)
    bot_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(256), default="")
    nodes: Mapped[Any] = mapped_column(JSON, default=list)
    edges: Mapped[Any] = mapped_column(JSON, default=list)
    triggers: Mapped[Any] = mapped_column(JSON, default=list)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_flows_bot_seq", "bot_id", "seq"),
    )


# ──────────────────────────────────────────────────────────────
#  Contacts
# ──────────────────────────────────────────────────────────────

class ContactRow(Base):
    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    bot_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    profile_pic: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    platform: Mapped[str] = mapped_column(String(32), default="facebook")
    message_count: Mapped[int] = mapped_column(Integer, default=0)

    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("bot_id", "sender_id", name="uq_contacts_bot_sender"),
    )


# ──────────────────────────────────────────────────────────────
#  Messages
# ──────────────────────────────────────────────────────────────

class MessageRow(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    bot_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(128), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="")
    direction: Mapped[str] = mapped_column(String(16), nullable=False)    # incoming | outgoing
    message_type: Mapped[str] = mapped_column(String(32), default="text")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_messages_bot_sender", "bot_id", "sender_id"),
        Index("ix_messages_timestamp", "timestamp"),
    )


# ──────────────────────────────────────────────────────────────
#  Daily Analytics
# ──────────────────────────────────────────────────────────────

class AnalyticsRow(Base):
    __tablename__ = "analytics"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    bot_id: Mapped[str] = mapped_column(String(64), nullable=False)
    date: Mapped[day_type] = mapped_column(Date, nullable=False)
    total_messages: Mapped[int] = mapped_column(Integer, default=0)
    incoming_messages: Mapped[int] = mapped_column(Integer, default=0)
    outgoing_messages: Mapped[int] = mapped_column(Integer, default=0)
    unique_users: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("bot_id", "date", name="uq_analytics_bot_date"),
    )
