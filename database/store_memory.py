"""
InMemoryEngineStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database)
  - Full interface compatibility with SqlEngineStore
  - Safe under asyncio (single event loop, no awaits inside updates)
  - All data lost on process restart

Records are copied on the way in and out, so callers mutating a
returned model never change stored state without a save.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Optional

import structlog

from database.store_base import BaseEngineStore
from models.schemas import (
    Block, Bot, Contact, DailyAnalytics, Flow, MessageDirection, MessageLog, Session,
)

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryEngineStore(BaseEngineStore):
    """Same interface as SqlEngineStore, backed by insertion-ordered dicts."""

    def __init__(self):
        self._bots: dict[str, Bot] = {}
        self._sessions: dict[tuple[str, str], Session] = {}    # (bot_id, sender_id) → session
        self._blocks: dict[str, Block] = {}                    # id → block, creation order
        self._flows: dict[str, Flow] = {}
        self._contacts: dict[tuple[str, str], Contact] = {}
        self._messages: dict[str, list[MessageLog]] = defaultdict(list)   # bot_id → log
        self._analytics: dict[tuple[str, date], DailyAnalytics] = {}
        logger.info("inmemory_store_initialized")

    # ── Bots ──────────────────────────────────────────────

    async def get_bot(self, bot_id: str) -> Optional[Bot]:
        bot = self._bots.get(bot_id)
        return bot.model_copy(deep=True) if bot else None

    async def save_bot(self, bot: Bot) -> Bot:
        self._bots[bot.id] = bot.model_copy(deep=True)
        return bot

    # ── Sessions ──────────────────────────────────────────

    async def get_session(self, bot_id: str, sender_id: str) -> Optional[Session]:
        session = self._sessions.get((bot_id, sender_id))
        return session.model_copy(deep=True) if session else None

    async def save_session(self, session: Session) -> Session:
        existing = self._sessions.get(session.key)
        if existing is not None and existing.id != session.id:
            # (bot_id, sender_id) is unique: keep the first row's identity
            session.id = existing.id
            session.created_at = existing.created_at
        session.updated_at = _utcnow()
        self._sessions[session.key] = session.model_copy(deep=True)
        return session

    # ── Blocks ────────────────────────────────────────────

    async def list_blocks(self, bot_id: str, enabled_only: bool = False) -> list[Block]:
        return [
            b.model_copy(deep=True) for b in self._blocks.values()
            if b.bot_id == bot_id and (b.is_enabled or not enabled_only)
        ]

    async def get_block(self, bot_id: str, block_id: str) -> Optional[Block]:
        block = self._blocks.get(block_id)
        if block is None or block.bot_id != bot_id:
            return None
        return block.model_copy(deep=True)

    async def save_block(self, block: Block) -> Block:
        self._blocks[block.id] = block.model_copy(deep=True)
        return block

    async def find_flagged_block_id(self, bot_id: str, flag: str) -> Optional[str]:
        for block in self._blocks.values():
            if block.bot_id == bot_id and getattr(block, flag):
                return block.id
        return None

    # ── Flows ─────────────────────────────────────────────

    async def list_flows(self, bot_id: str, active_only: bool = False) -> list[Flow]:
        return [
            f.model_copy(deep=True) for f in self._flows.values()
            if f.bot_id == bot_id and (f.is_active or not active_only)
        ]

    async def get_flow(self, bot_id: str, flow_id: str) -> Optional[Flow]:
        flow = self._flows.get(flow_id)
        if flow is None or flow.bot_id != bot_id:
            return None
        return flow.model_copy(deep=True)

    async def save_flow(self, flow: Flow) -> Flow:
        self._flows[flow.id] = flow.model_copy(deep=True)
        return flow

    # ── Contacts ──────────────────────────────────────────

    async def get_contact(self, bot_id: str, sender_id: str) -> Optional[Contact]:
        contact = self._contacts.get((bot_id, sender_id))
        return contact.model_copy(deep=True) if contact else None

    async def upsert_contact(self, bot_id: str, sender_id: str, name: str = None,
                             profile_pic: str = None, platform: str = "facebook") -> Contact:
        contact = self._contacts.get((bot_id, sender_id))
        if contact is None:
            contact = Contact(
                bot_id=bot_id, sender_id=sender_id, name=name,
                profile_pic=profile_pic, platform=platform, message_count=1,
            )
            self._contacts[(bot_id, sender_id)] = contact
        else:
            contact.last_seen_at = _utcnow()
            contact.message_count += 1
            if name:
                contact.name = name
            if profile_pic:
                contact.profile_pic = profile_pic
        return contact.model_copy(deep=True)

    # ── Messages & Analytics ──────────────────────────────

    async def add_message(self, message: MessageLog) -> MessageLog:
        self._messages[message.bot_id].append(message.model_copy(deep=True))
        return message

    async def list_messages(self, bot_id: str, sender_id: str = None,
                            limit: int = 50) -> list[MessageLog]:
        messages = [
            m for m in self._messages.get(bot_id, [])
            if sender_id is None or m.sender_id == sender_id
        ]
        return [m.model_copy(deep=True) for m in messages[-limit:]]

    async def increment_daily_analytics(self, bot_id: str, day: date,
                                        direction: MessageDirection,
                                        new_user: bool = False) -> DailyAnalytics:
        row = self._analytics.get((bot_id, day))
        if row is None:
            row = DailyAnalytics(bot_id=bot_id, date=day)
            self._analytics[(bot_id, day)] = row
        row.total_messages += 1
        if direction == MessageDirection.INCOMING:
            row.incoming_messages += 1
        else:
            row.outgoing_messages += 1
        if new_user:
            row.unique_users += 1
        return row.model_copy()

    async def get_daily_analytics(self, bot_id: str, day: date) -> Optional[DailyAnalytics]:
        row = self._analytics.get((bot_id, day))
        return row.model_copy() if row else None
