"""
Abstract Engine Store — Interface for all storage backends.

Implementations:
  - SqlEngineStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemoryEngineStore (dict-based, single-process, no persistence)

Blocks, flows and bots are authored elsewhere; the engine reads them
and only writes sessions, contacts, the message log and daily counters.
List methods return records in creation order, which is the order the
trigger resolver scans them in.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

from models.schemas import (
    Block, Bot, Contact, DailyAnalytics, Flow, MessageDirection, MessageLog, Session,
)


class BaseEngineStore(ABC):
    """Interface that all engine store backends must implement."""

    # ── Bots ──────────────────────────────────────────────────

    @abstractmethod
    async def get_bot(self, bot_id: str) -> Optional[Bot]:
        ...

    @abstractmethod
    async def save_bot(self, bot: Bot) -> Bot:
        ...

    # ── Sessions ──────────────────────────────────────────────

    @abstractmethod
    async def get_session(self, bot_id: str, sender_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def save_session(self, session: Session) -> Session:
        ...

    # ── Blocks ────────────────────────────────────────────────

    @abstractmethod
    async def list_blocks(self, bot_id: str, enabled_only: bool = False) -> list[Block]:
        ...

    @abstractmethod
    async def get_block(self, bot_id: str, block_id: str) -> Optional[Block]:
        ...

    @abstractmethod
    async def save_block(self, block: Block) -> Block:
        ...

    @abstractmethod
    async def find_flagged_block_id(self, bot_id: str, flag: str) -> Optional[str]:
        """
        Id of the first block with ``flag`` ("is_welcome" or
        "is_default_answer") set, whether or not its cards still validate.
        """
        ...

    # ── Flows ─────────────────────────────────────────────────

    @abstractmethod
    async def list_flows(self, bot_id: str, active_only: bool = False) -> list[Flow]:
        ...

    @abstractmethod
    async def get_flow(self, bot_id: str, flow_id: str) -> Optional[Flow]:
        ...

    @abstractmethod
    async def save_flow(self, flow: Flow) -> Flow:
        ...

    # ── Contacts ──────────────────────────────────────────────

    @abstractmethod
    async def get_contact(self, bot_id: str, sender_id: str) -> Optional[Contact]:
        ...

    @abstractmethod
    async def upsert_contact(self, bot_id: str, sender_id: str, name: str = None,
                             profile_pic: str = None, platform: str = "facebook") -> Contact:
        """Create with message_count=1, or bump message_count and last_seen_at."""
        ...

    # ── Messages & Analytics ──────────────────────────────────

    @abstractmethod
    async def add_message(self, message: MessageLog) -> MessageLog:
        ...

    @abstractmethod
    async def list_messages(self, bot_id: str, sender_id: str = None,
                            limit: int = 50) -> list[MessageLog]:
        ...

    @abstractmethod
    async def increment_daily_analytics(self, bot_id: str, day: date,
                                        direction: MessageDirection,
                                        new_user: bool = False) -> DailyAnalytics:
        """Insert the (bot_id, day) row or increment its counters."""
        ...

    @abstractmethod
    async def get_daily_analytics(self, bot_id: str, day: date) -> Optional[DailyAnalytics]:
        ...

    # ── Lifecycle ─────────────────────────────────────────────

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass
