"""
Block Interpreter — runs a Block's cards in order.

States per session:
  Idle             → no current_block_id
  Executing        → inside a turn, walking cards
  WaitingForInput  → parked on a userInput card (block id + card index saved)

A turn either runs to the end of the last block entered (pointer
cleared) or stops at a userInput card (pointer saved). goToBlock
continues in the same turn with the target block's first card; the
shared StepBudget stops goToBlock cycles.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from typing import Optional

from database.store_base import BaseEngineStore
from engine.budget import StepBudget
from engine.errors import DataIntegrityError
from engine.sessions import SessionManager
from engine.steps import (
    AwaitInput, Done, Goto, Interpreter, Send, StepResult, Transition, Wait,
    ensure_exhaustive,
)
from models.schemas import (
    BLOCK_PAYLOAD_PREFIX, Block, CardButton, CardType, OutboundButton, OutboundCard,
    OutboundQuickReplies, QuickReplyOption, Session,
)
from utils.interpolation import interpolate
from utils.sanitize import sanitize_user_input

logger = structlog.get_logger()


@dataclass
class BlockCursor:
    block: Block
    index: int = 0


def block_payload(block_id: str) -> str:
    return f"{BLOCK_PAYLOAD_PREFIX}{block_id}"


class BlockInterpreter(Interpreter):

    handled_by = "block"

    def __init__(self, store: BaseEngineStore, sessions: SessionManager):
        self._store = store
        self._sessions = sessions

    def begin(self, block: Block) -> Goto:
        logger.info("block_started", block_id=block.id, block_name=block.name)
        return Goto(BlockCursor(block, 0))

    # ════════════════════════════════════════════════════════════
    #  Interpreter contract
    # ════════════════════════════════════════════════════════════

    async def step(self, cursor: BlockCursor, context: dict[str, str],
                   budget: StepBudget) -> list[StepResult]:
        block = cursor.block
        if cursor.index == 0:
            budget.enter_block(block.id)
        if cursor.index >= len(block.cards):
            logger.debug("block_finished", block_id=block.id)
            return [Done()]
        card = block.cards[cursor.index]
        handler = self._HANDLERS[CardType(card.type)]
        return await handler(self, card, cursor, context)

    async def resume(self, session: Session, message: str,
                     context: dict[str, str]) -> Optional[Transition]:
        """
        Store the reply in the parked userInput card's variable and continue.
        Returns None when the parked block no longer exists.
        """
        block = await self._store.get_block(session.bot_id, session.current_block_id)
        if block is None:
            logger.warning("stale_block_pointer", session_id=session.id,
                           block_id=session.current_block_id)
            return None

        index = session.current_card_index
        card = block.cards[index] if 0 <= index < len(block.cards) else None
        if card is None or card.type != CardType.USER_INPUT.value:
            raise DataIntegrityError(
                f"Block {block.id} card {index} is not a userInput card",
                bot_id=session.bot_id, sender_id=session.sender_id,
            )

        context[card.variable_name] = sanitize_user_input(message)
        logger.info("block_input_captured", block_id=block.id,
                    variable=card.variable_name)

        if card.next_block_id:
            target = await self._load_target(block, card.next_block_id)
            return self.begin(target) if target else Done()
        return Goto(BlockCursor(block, index + 1))

    async def commit(self, session: Session, parked: Optional[BlockCursor],
                     context: dict[str, str]) -> None:
        if parked is None:
            await self._sessions.update_block_pointer(session, None, 0, context)
        else:
            await self._sessions.update_block_pointer(
                session, parked.block.id, parked.index, context,
            )

    # ════════════════════════════════════════════════════════════
    #  Card handlers
    # ════════════════════════════════════════════════════════════

    async def _text(self, card, cursor, context) -> list[StepResult]:
        results: list[StepResult] = []
        text = interpolate(card.text, context)
        if text:
            results.append(Send.text(text))
        results.append(_advance(cursor))
        return results

    async def _image(self, card, cursor, context) -> list[StepResult]:
        results: list[StepResult] = []
        if card.image_url:
            results.append(Send(kind="image", payload=card.image_url,
                                log_content=f"[Image: {card.image_url}]",
                                message_type="image"))
            if card.caption:
                results.append(Send.text(interpolate(card.caption, context)))
        results.append(_advance(cursor))
        return results

    async def _gallery(self, card, cursor, context) -> list[StepResult]:
        outbound = OutboundCard(
            title=interpolate(card.title, context),
            subtitle=interpolate(card.subtitle, context) if card.subtitle else None,
            image_url=card.image_url or None,
            buttons=[outbound_button(b) for b in card.buttons],
        )
        return [
            Send(kind="card", payload=outbound, log_content=f"[Card: {outbound.title}]",
                 message_type="card"),
            _advance(cursor),
        ]

    async def _quick_reply(self, card, cursor, context) -> list[StepResult]:
        results: list[StepResult] = []
        message = interpolate(card.text, context)
        if message:
            options = [
                QuickReplyOption(
                    title=b.title,
                    payload=block_payload(b.block_id) if b.block_id else b.title,
                )
                for b in card.buttons
            ]
            results.append(Send(
                kind="quick_replies",
                payload=OutboundQuickReplies(message=message, buttons=options),
                log_content=message, message_type="quick_reply",
            ))
        results.append(_advance(cursor))
        return results

    async def _user_input(self, card, cursor, context) -> list[StepResult]:
        logger.info("block_awaiting_input", block_id=cursor.block.id,
                    card_index=cursor.index, variable=card.variable_name)
        return [AwaitInput(cursor, prompt=interpolate(card.prompt, context))]

    async def _delay(self, card, cursor, context) -> list[StepResult]:
        return [Wait(seconds=card.seconds, show_typing=card.show_typing), _advance(cursor)]

    async def _go_to_block(self, card, cursor, context) -> list[StepResult]:
        target = await self._load_target(cursor.block, card.block_id)
        if target is None:
            return [Done()]
        return [self.begin(target)]

    _HANDLERS = {
        CardType.TEXT: _text,
        CardType.IMAGE: _image,
        CardType.GALLERY: _gallery,
        CardType.QUICK_REPLY: _quick_reply,
        CardType.USER_INPUT: _user_input,
        CardType.DELAY: _delay,
        CardType.GO_TO_BLOCK: _go_to_block,
    }

    async def _load_target(self, source: Block, block_id: str) -> Optional[Block]:
        target = await self._store.get_block(source.bot_id, block_id)
        if target is None or not target.is_enabled:
            logger.warning("goto_target_missing", from_block=source.id,
                           target_block=block_id)
            return None
        return target


ensure_exhaustive(CardType, BlockInterpreter._HANDLERS, "BlockInterpreter")


def _advance(cursor: BlockCursor) -> Goto:
    return Goto(BlockCursor(cursor.block, cursor.index + 1))


def outbound_button(button: CardButton) -> OutboundButton:
    """Block buttons become postbacks carrying a BLOCK:<id> payload."""
    if button.kind == "url":
        return OutboundButton(title=button.title, kind="url", url=button.url)
    if button.kind == "block" and button.block_id:
        return OutboundButton(title=button.title, payload=block_payload(button.block_id))
    return OutboundButton(title=button.title, payload=button.payload or button.title)
