"""
Engagement tracking — contacts, the message log and daily analytics.

These are side channels of a turn: the orchestrator calls them for every
inbound and outbound message, and a failure here is logged and
swallowed so that a broken analytics table never stops a bot from
answering.

  Orchestrator
    → ContactTracker.upsert_contact()  (first seen / last seen / count)
    → MessageLogger.log_message()      (message row + (bot, day) counters)
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional

from database.store_base import BaseEngineStore
from engine.errors import AnalyticsError
from models.schemas import Contact, MessageDirection, MessageLog

logger = structlog.get_logger()


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass
class ContactVisit:
    contact: Contact
    first_visit_today: bool      # counts towards the day's unique_users


class ContactTracker:

    def __init__(self, store: BaseEngineStore, today: Callable[[], date] = _utc_today):
        self._store = store
        self._today = today

    async def upsert_contact(self, bot_id: str, sender_id: str, name: str = None,
                             profile_pic: str = None,
                             platform: str = "facebook") -> Optional[ContactVisit]:
        """Record that the sender wrote in. Returns None if the store failed."""
        try:
            previous = await self._store.get_contact(bot_id, sender_id)
            contact = await self._store.upsert_contact(
                bot_id, sender_id, name=name, profile_pic=profile_pic, platform=platform,
            )
        except Exception as e:
            logger.error("contact_upsert_failed", bot_id=bot_id, sender_id=sender_id,
                         error=str(e))
            return None

        first_today = previous is None or previous.last_seen_at.date() != self._today()
        if previous is None:
            logger.info("contact_created", bot_id=bot_id, sender_id=sender_id,
                        platform=platform)
        return ContactVisit(contact=contact, first_visit_today=first_today)


class MessageLogger:

    def __init__(self, store: BaseEngineStore, today: Callable[[], date] = _utc_today):
        self._store = store
        self._today = today

    async def log_message(self, bot_id: str, sender_id: str, content: str,
                          direction: MessageDirection, message_type: str = "text",
                          new_user: bool = False) -> bool:
        """Store the message, then bump the day's counters. Never raises."""
        try:
            await self._record(bot_id, sender_id, content, direction, message_type, new_user)
            return True
        except AnalyticsError as e:
            logger.warning("message_log_failed", bot_id=bot_id, sender_id=sender_id,
                           direction=direction.value, error=e.message)
            return False

    async def _record(self, bot_id: str, sender_id: str, content: str,
                      direction: MessageDirection, message_type: str,
                      new_user: bool) -> None:
        try:
            await self._store.add_message(MessageLog(
                bot_id=bot_id, sender_id=sender_id, content=content,
                direction=direction, message_type=message_type,
            ))
        except Exception as e:
            raise AnalyticsError(f"message insert failed: {e}",
                                 bot_id=bot_id, sender_id=sender_id) from e

        try:
            await self._store.increment_daily_analytics(
                bot_id, self._today(), direction, new_user=new_user,
            )
        except Exception as e:
            raise AnalyticsError(f"analytics update failed: {e}",
                                 bot_id=bot_id, sender_id=sender_id) from e
