"""
Session Manager — per-(bot, sender) execution pointer persistence.

A session records where a sender's conversation is parked:
  1. A block waiting on a userInput card → (current_block_id, current_card_index)
  2. A flow waiting on a userInput node  → (current_flow_id, current_node_id)
  3. Neither → idle; the next message goes through trigger resolution

Setting one pointer always clears the other. The manager does no
locking of its own; turns for the same session are serialized by the
SessionDispatcher in job_queue/.
"""
from __future__ import annotations

import structlog
from typing import Optional

from database.store_base import BaseEngineStore
from models.schemas import Session

logger = structlog.get_logger()


class SessionManager:

    def __init__(self, store: BaseEngineStore):
        self._store = store

    async def get_or_create(self, bot_id: str, sender_id: str) -> Session:
        session = await self._store.get_session(bot_id, sender_id)
        if session is not None:
            return session
        session = Session(bot_id=bot_id, sender_id=sender_id)
        await self._store.save_session(session)
        logger.info("session_created", bot_id=bot_id, sender_id=sender_id,
                    session_id=session.id)
        return session

    async def update_block_pointer(self, session: Session, block_id: Optional[str],
                                   card_index: int, context: dict[str, str]) -> Session:
        session.current_block_id = block_id
        session.current_card_index = card_index if block_id else 0
        session.current_node_id = None
        session.current_flow_id = None
        session.context = dict(context)
        await self._store.save_session(session)
        logger.debug("session_block_pointer", session_id=session.id,
                     block_id=block_id, card_index=session.current_card_index)
        return session

    async def update_node_pointer(self, session: Session, node_id: Optional[str],
                                  context: dict[str, str],
                                  flow_id: Optional[str] = None) -> Session:
        session.current_node_id = node_id
        session.current_flow_id = flow_id if node_id else None
        session.current_block_id = None
        session.current_card_index = 0
        session.context = dict(context)
        await self._store.save_session(session)
        logger.debug("session_node_pointer", session_id=session.id,
                     flow_id=session.current_flow_id, node_id=node_id)
        return session

    async def reset(self, session: Session) -> Session:
        session.current_block_id = None
        session.current_card_index = 0
        session.current_node_id = None
        session.current_flow_id = None
        session.context = {}
        await self._store.save_session(session)
        logger.info("session_reset", session_id=session.id,
                    bot_id=session.bot_id, sender_id=session.sender_id)
        return session
