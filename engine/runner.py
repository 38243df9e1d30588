"""
Turn Runner — the single loop that performs interpreter side effects.

    transition = Goto(first cursor) | result of resume()
    while transition is Goto:
        budget.tick()
        for result in interpreter.step(cursor):
            Send → gateway + outgoing message log
            Wait → typing indicator + asyncio.sleep
            Goto / AwaitInput / Done → next transition
    AwaitInput → send prompt, report the parked cursor

Delivery failures are logged and the turn goes on. The runner never
touches the session; the caller commits the returned outcome.
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from channels.base import MessagingGateway
from context.tracker import MessageLogger
from engine.budget import StepBudget
from engine.errors import TransientDeliveryError
from engine.steps import AwaitInput, Done, Goto, Interpreter, Send, Transition, Wait
from models.schemas import Bot, MessageDirection

logger = structlog.get_logger()


@dataclass
class RunOutcome:
    parked: Optional[Any] = None     # cursor of the userInput the turn stopped at
    messages_sent: int = 0
    steps: int = 0


class TurnRunner:

    def __init__(
        self,
        gateway: MessagingGateway,
        message_logger: MessageLogger,
        max_delay_seconds: float = 20.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._gateway = gateway
        self._message_logger = message_logger
        self._max_delay = max_delay_seconds
        self._sleep = sleep

    async def run(self, interpreter: Interpreter, start: Transition, bot: Bot,
                  sender_id: str, context: dict[str, str],
                  budget: StepBudget) -> RunOutcome:
        outcome = RunOutcome()
        transition: Transition = start

        while isinstance(transition, Goto):
            budget.tick()
            results = await interpreter.step(transition.cursor, context, budget)
            transition = Done()
            for result in results:
                if isinstance(result, Send):
                    if await self._deliver(result, bot, sender_id):
                        outcome.messages_sent += 1
                elif isinstance(result, Wait):
                    await self._wait(result, bot, sender_id)
                else:
                    transition = result
                    break

        outcome.steps = budget.steps
        if isinstance(transition, AwaitInput):
            if transition.prompt:
                if await self._deliver(Send.text(transition.prompt), bot, sender_id):
                    outcome.messages_sent += 1
            outcome.parked = transition.cursor
        return outcome

    # ── Effects ───────────────────────────────────────────────

    async def _deliver(self, send: Send, bot: Bot, sender_id: str) -> bool:
        method = {
            "text": self._gateway.send_text,
            "image": self._gateway.send_image,
            "card": self._gateway.send_card,
            "quick_replies": self._gateway.send_quick_replies,
        }[send.kind]
        try:
            await method(bot, sender_id, send.payload)
        except TransientDeliveryError as e:
            logger.warning("delivery_failed", bot_id=bot.id, recipient_id=sender_id,
                           kind=send.kind, error=e.message)
            return False

        await self._message_logger.log_message(
            bot.id, sender_id, send.log_content, MessageDirection.OUTGOING,
            message_type=send.message_type,
        )
        return True

    async def _wait(self, wait: Wait, bot: Bot, sender_id: str) -> None:
        seconds = max(0.0, min(float(wait.seconds or 0), self._max_delay))
        if wait.show_typing:
            await self._typing(bot, sender_id, True)
        await self._sleep(seconds)
        if wait.show_typing:
            await self._typing(bot, sender_id, False)

    async def _typing(self, bot: Bot, sender_id: str, on: bool) -> None:
        try:
            await self._gateway.send_typing_indicator(bot, sender_id, on)
        except TransientDeliveryError as e:
            logger.warning("typing_indicator_failed", bot_id=bot.id,
                           recipient_id=sender_id, error=e.message)
