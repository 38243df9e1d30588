"""
Trigger Resolver — decides what a message starts when no session is open.

Resolution order:
  1. ``BLOCK:<id>`` postback payload (block buttons and quick replies)
  2. First enabled block whose trigger the message equals or contains
  3. The bot's Default Answer block (Welcome + Default Answer are
     created on first use when the bot has no default answer at all)
  4. First active flow whose trigger matches, then the default flow

resolve_block() covers 1-2 and resolve_fallback() covers 3-4, so the
orchestrator can resume a parked flow in between.

Matching is on ``normalize()``d text; blocks and flows are scanned in
store order, so the earliest-created match wins.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from typing import Optional, Union

from config.settings import EngineConfig
from database.store_base import BaseEngineStore
from models.schemas import BLOCK_PAYLOAD_PREFIX, Block, Flow, Session, TextCard

logger = structlog.get_logger()


def normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def matches_trigger(normalized_message: str, trigger: str) -> bool:
    """Equality or substring containment; blank triggers never match."""
    needle = normalize(trigger)
    if not needle:
        return False
    return normalized_message == needle or needle in normalized_message


def first_match(message: str, candidates: list) -> Optional[Union[Block, Flow]]:
    normalized = normalize(message)
    for candidate in candidates:
        if any(matches_trigger(normalized, t) for t in candidate.triggers):
            return candidate
    return None


@dataclass
class Resolution:
    kind: str                          # "block" | "flow"
    target: Union[Block, Flow]
    reason: str                        # payload | trigger | default_answer | default_flow


class TriggerResolver:

    def __init__(self, store: BaseEngineStore, config: EngineConfig = None):
        self._store = store
        self._config = config or EngineConfig()

    async def resolve(self, session: Session, message: str) -> Optional[Resolution]:
        """None when the session is mid-block or the bot has nothing to run."""
        resolution = await self.resolve_block(session, message)
        if resolution is None:
            resolution = await self.resolve_fallback(session, message)
        return resolution

    async def resolve_block(self, session: Session, message: str) -> Optional[Resolution]:
        """Steps 1-2: an explicit payload or a keyword block."""
        if session.in_block:
            return None
        block = await self.block_from_payload(session.bot_id, message)
        if block is not None:
            return Resolution("block", block, "payload")

        block = await self.find_block(session.bot_id, message)
        if block is not None:
            return Resolution("block", block, "trigger")
        return None

    async def resolve_fallback(self, session: Session, message: str) -> Optional[Resolution]:
        """Steps 3-4: the Default Answer block, then flows."""
        if session.in_block:
            return None
        bot_id = session.bot_id

        block = await self.default_answer_block(bot_id)
        if block is not None:
            return Resolution("block", block, "default_answer")

        flows = await self._store.list_flows(bot_id, active_only=True)
        flow = first_match(message, flows)
        if flow is not None:
            return Resolution("flow", flow, "trigger")
        flow = next((f for f in flows if f.is_default), None)
        if flow is not None:
            return Resolution("flow", flow, "default_flow")
        return None

    async def block_from_payload(self, bot_id: str, message: str) -> Optional[Block]:
        text = (message or "").strip()
        if not text.startswith(BLOCK_PAYLOAD_PREFIX):
            return None
        block_id = text[len(BLOCK_PAYLOAD_PREFIX):]
        block = await self._store.get_block(bot_id, block_id) if block_id else None
        if block is None or not block.is_enabled:
            logger.warning("payload_block_unavailable", bot_id=bot_id, block_id=block_id)
            return None
        return block

    async def find_block(self, bot_id: str, message: str) -> Optional[Block]:
        blocks = await self._store.list_blocks(bot_id, enabled_only=True)
        return first_match(message, blocks)

    async def default_answer_block(self, bot_id: str) -> Optional[Block]:
        """
        The bot's Default Answer block, created on first use.

        A stored Default Answer whose cards no longer validate raises
        DataIntegrityError from get_block instead of being replaced.
        """
        block_id = await self._store.find_flagged_block_id(bot_id, "is_default_answer")
        if block_id is None:
            if not self._config.bootstrap_default_blocks:
                return None
            created = await self.ensure_default_blocks(bot_id)
            block = next((b for b in created if b.is_default_answer), None)
        else:
            block = await self._store.get_block(bot_id, block_id)
        if block is not None and not block.is_enabled:
            return None
        return block

    async def ensure_default_blocks(self, bot_id: str) -> list[Block]:
        """Create Welcome Message / Default Answer if missing. Idempotent."""
        created: list[Block] = []

        if await self._store.find_flagged_block_id(bot_id, "is_welcome") is None:
            created.append(await self._store.save_block(Block(
                bot_id=bot_id, name="Welcome Message", is_welcome=True,
                cards=[TextCard(id="welcome-text-1", text=self._config.welcome_text)],
            )))
        if await self._store.find_flagged_block_id(bot_id, "is_default_answer") is None:
            created.append(await self._store.save_block(Block(
                bot_id=bot_id, name="Default Answer", is_default_answer=True,
                cards=[TextCard(id="default-text-1", text=self._config.default_answer_text)],
            )))

        if created:
            logger.info("default_blocks_created", bot_id=bot_id,
                        blocks=[b.name for b in created])
        return created
