"""
Orchestrator — runs one inbound message through the engine.

Per turn:
  load/create Session → upsert Contact → log incoming message
    → interrupt keyword → SessionManager.reset (skips resume)
    → open block?      → BlockInterpreter.resume
    → TriggerResolver: payload / keyword block
    → open graph node? → GraphInterpreter.resume
    → TriggerResolver: default answer → flow
    → TurnRunner performs sends and waits
    → interpreter commits the end-of-turn pointer (one session write)

``execute_flow`` never raises. Engine errors become a best-effort reply
(apology, or the not-configured message) plus a failed ExecutionResult,
and the stored session keeps the pointer it had before the turn.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Awaitable, Callable, Optional

from channels.base import MessagingGateway
from config.settings import EngineConfig, get_settings
from context.tracker import ContactTracker, MessageLogger
from database.store_base import BaseEngineStore
from engine.blocks import BlockInterpreter
from engine.budget import StepBudget
from engine.errors import ConfigurationError, EngineError, TransientDeliveryError
from engine.graph import GraphInterpreter
from engine.runner import TurnRunner
from engine.sessions import SessionManager
from engine.steps import Interpreter, Transition
from engine.triggers import TriggerResolver, normalize
from models.schemas import Bot, ExecutionResult, MessageDirection, Session

logger = structlog.get_logger()


class Orchestrator:
    """
    Wires the engine components around one store and one gateway.

    The orchestrator does not serialize turns itself; concurrent
    messages from one sender must go through job_queue.SessionDispatcher.
    """

    def __init__(
        self,
        store: BaseEngineStore,
        gateway: MessagingGateway,
        config: EngineConfig = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.gateway = gateway
        self._config = config or get_settings().engine

        self.sessions = SessionManager(store)
        self.triggers = TriggerResolver(store, self._config)
        self.contacts = ContactTracker(store)
        self.message_logger = MessageLogger(store)
        self.blocks = BlockInterpreter(store, self.sessions)
        self.graph = GraphInterpreter(store, self.sessions)
        self.runner = TurnRunner(
            gateway, self.message_logger,
            max_delay_seconds=self._config.max_delay_seconds, sleep=sleep,
        )
        self._interrupts = {normalize(k) for k in self._config.interrupt_keywords if normalize(k)}

    # ══════════════════════════════════════════════════════════
    #  INBOUND: one message from one sender
    # ══════════════════════════════════════════════════════════

    async def execute_flow(self, bot: Bot, sender_id: str, message: str,
                           platform: str = "facebook", name: str = None,
                           profile_pic: str = None) -> ExecutionResult:
        log = logger.bind(bot_id=bot.id, sender_id=sender_id)
        try:
            return await self._execute(bot, sender_id, message or "", platform,
                                       name, profile_pic)
        except ConfigurationError as e:
            log.warning("bot_not_configured", error=e.message)
            await self._reply_best_effort(bot, sender_id, self._config.not_configured_message)
            return ExecutionResult(success=False, error=e.message)
        except EngineError as e:
            log.error("turn_failed", error_type=type(e).__name__, error=e.message)
            await self._reply_best_effort(bot, sender_id, self._config.apology_message)
            return ExecutionResult(success=False, error=e.message)
        except Exception as e:
            log.exception("turn_crashed", error=str(e))
            await self._reply_best_effort(bot, sender_id, self._config.apology_message)
            return ExecutionResult(success=False, error=str(e))

    async def _execute(self, bot: Bot, sender_id: str, message: str, platform: str,
                       name: Optional[str], profile_pic: Optional[str]) -> ExecutionResult:
        session = await self.sessions.get_or_create(bot.id, sender_id)
        visit = await self.contacts.upsert_contact(
            bot.id, sender_id, name=name, profile_pic=profile_pic, platform=platform,
        )
        await self.message_logger.log_message(
            bot.id, sender_id, message, MessageDirection.INCOMING,
            new_user=bool(visit and visit.first_visit_today),
        )

        context = dict(session.context)
        budget = StepBudget(self._config.max_steps)

        if normalize(message) in self._interrupts:
            await self.sessions.reset(session)
            context = {}

        if session.in_block:
            transition = await self.blocks.resume(session, message, context)
            if transition is not None:
                return await self._run(self.blocks, transition, bot, session, context, budget)
            session.current_block_id = None
            session.current_card_index = 0

        resolution = await self.triggers.resolve_block(session, message)

        if resolution is None and session.in_graph:
            transition = await self.graph.resume(session, message, context)
            if transition is not None:
                return await self._run(self.graph, transition, bot, session, context, budget)
            session.current_node_id = None
            session.current_flow_id = None

        if resolution is None:
            resolution = await self.triggers.resolve_fallback(session, message)
        if resolution is None:
            raise ConfigurationError(
                f"Bot {bot.id} has no block or flow to run",
                bot_id=bot.id, sender_id=sender_id,
            )
        logger.info("trigger_resolved", bot_id=bot.id, sender_id=sender_id,
                    kind=resolution.kind, target_id=resolution.target.id,
                    reason=resolution.reason)

        if resolution.kind == "block":
            interpreter: Interpreter = self.blocks
            start = self.blocks.begin(resolution.target)
        else:
            interpreter = self.graph
            start = self.graph.begin(resolution.target)
        return await self._run(interpreter, start, bot, session, context, budget)

    async def _run(self, interpreter: Interpreter, start: Transition, bot: Bot,
                   session: Session, context: dict[str, str],
                   budget: StepBudget) -> ExecutionResult:
        outcome = await self.runner.run(interpreter, start, bot, session.sender_id,
                                        context, budget)
        await interpreter.commit(session, outcome.parked, context)
        logger.info("turn_completed", bot_id=bot.id, sender_id=session.sender_id,
                    handled_by=interpreter.handled_by, steps=outcome.steps,
                    messages_sent=outcome.messages_sent,
                    waiting=outcome.parked is not None)
        return ExecutionResult(
            success=True,
            handled_by=interpreter.handled_by,
            messages_sent=outcome.messages_sent,
        )

    async def _reply_best_effort(self, bot: Bot, sender_id: str, text: str) -> None:
        if not text:
            return
        try:
            await self.gateway.send_text(bot, sender_id, text)
        except TransientDeliveryError as e:
            logger.warning("error_reply_failed", bot_id=bot.id, sender_id=sender_id,
                           error=e.message)
            return
        await self.message_logger.log_message(
            bot.id, sender_id, text, MessageDirection.OUTGOING,
        )
