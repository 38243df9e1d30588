"""
Graph Flow Interpreter — walks a legacy Flow's node/edge graph.

Execution starts at the session's parked node or at the flow's start
node and follows edges until it reaches a userInput node (prompt sent,
pointer saved) or an end node, a missing edge or a dangling edge
(pointer cleared). Condition nodes pick the edge whose source_handle is
"true" or "false"; every other node follows its first outgoing edge.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from typing import Any, Optional

from database.store_base import BaseEngineStore
from engine.blocks import outbound_button
from engine.budget import StepBudget
from engine.errors import ConfigurationError
from engine.sessions import SessionManager
from engine.steps import (
    AwaitInput, Done, Goto, Interpreter, Send, StepResult, Transition, Wait,
    ensure_exhaustive,
)
from models.schemas import (
    Flow, NodeType, OutboundCard, OutboundQuickReplies, QuickReplyOption, Session,
)
from utils.conditions import Condition, evaluate
from utils.interpolation import interpolate
from utils.sanitize import sanitize_user_input

logger = structlog.get_logger()


@dataclass
class NodeCursor:
    flow: Flow
    node: Any               # one of the FlowNode variants


class GraphInterpreter(Interpreter):

    handled_by = "graph"

    def __init__(self, store: BaseEngineStore, sessions: SessionManager):
        self._store = store
        self._sessions = sessions

    def begin(self, flow: Flow) -> Goto:
        start = flow.find_start()
        if start is None:
            raise ConfigurationError(f"Flow {flow.id} has no start node", bot_id=flow.bot_id)
        logger.info("flow_started", flow_id=flow.id, flow_name=flow.name)
        return Goto(NodeCursor(flow, start))

    # ════════════════════════════════════════════════════════════
    #  Interpreter contract
    # ════════════════════════════════════════════════════════════

    async def step(self, cursor: NodeCursor, context: dict[str, str],
                   budget: StepBudget) -> list[StepResult]:
        handler = self._HANDLERS[NodeType(cursor.node.type)]
        return await handler(self, cursor, context)

    async def resume(self, session: Session, message: str,
                     context: dict[str, str]) -> Optional[Transition]:
        """Returns None when the parked flow or node no longer exists."""
        flow = await self._parked_flow(session)
        node = flow.find_node(session.current_node_id) if flow else None
        if node is None:
            logger.warning("stale_node_pointer", session_id=session.id,
                           flow_id=session.current_flow_id, node_id=session.current_node_id)
            return None

        if node.type != NodeType.USER_INPUT.value:
            return Goto(NodeCursor(flow, node))

        if node.variable_name:
            context[node.variable_name] = sanitize_user_input(message)
            logger.info("flow_input_captured", flow_id=flow.id, node_id=node.id,
                        variable=node.variable_name)
        return self._follow(flow, node, context)

    async def commit(self, session: Session, parked: Optional[NodeCursor],
                     context: dict[str, str]) -> None:
        if parked is None:
            await self._sessions.update_node_pointer(session, None, context)
        else:
            await self._sessions.update_node_pointer(
                session, parked.node.id, context, flow_id=parked.flow.id,
            )

    async def _parked_flow(self, session: Session) -> Optional[Flow]:
        if session.current_flow_id:
            return await self._store.get_flow(session.bot_id, session.current_flow_id)
        # Pointers written before flows were tracked belong to the default flow
        flows = await self._store.list_flows(session.bot_id, active_only=True)
        return next((f for f in flows if f.is_default), None)

    # ════════════════════════════════════════════════════════════
    #  Edges
    # ════════════════════════════════════════════════════════════

    def _follow(self, flow: Flow, node, context: dict[str, str]) -> Transition:
        if node.type == NodeType.CONDITION.value:
            passed = evaluate(
                Condition(variable=node.variable, operator=node.operator, value=node.value),
                context,
            )
            handle = "true" if passed else "false"
            edge = next((e for e in flow.edges
                         if e.source == node.id and e.source_handle == handle), None)
            logger.debug("condition_evaluated", node_id=node.id, result=passed)
        else:
            edge = next((e for e in flow.edges if e.source == node.id), None)

        if edge is None:
            return Done()
        target = flow.find_node(edge.target)
        if target is None:
            logger.warning("dangling_edge", flow_id=flow.id, source=node.id,
                           target=edge.target)
            return Done()
        return Goto(NodeCursor(flow, target))

    # ════════════════════════════════════════════════════════════
    #  Node handlers
    # ════════════════════════════════════════════════════════════

    async def _pass_through(self, cursor, context) -> list[StepResult]:
        return [self._follow(cursor.flow, cursor.node, context)]

    async def _text(self, cursor, context) -> list[StepResult]:
        results: list[StepResult] = []
        if cursor.node.message:
            results.append(Send.text(interpolate(cursor.node.message, context)))
        results.append(self._follow(cursor.flow, cursor.node, context))
        return results

    async def _image(self, cursor, context) -> list[StepResult]:
        node = cursor.node
        results: list[StepResult] = []
        if node.image_url:
            results.append(Send(kind="image", payload=node.image_url,
                                log_content=f"[Image: {node.image_url}]",
                                message_type="image"))
            if node.caption:
                results.append(Send.text(interpolate(node.caption, context)))
        results.append(self._follow(cursor.flow, node, context))
        return results

    async def _card(self, cursor, context) -> list[StepResult]:
        node = cursor.node
        outbound = OutboundCard(
            title=interpolate(node.title, context),
            subtitle=interpolate(node.subtitle, context) if node.subtitle else None,
            image_url=node.image_url or None,
            buttons=[outbound_button(b) for b in node.buttons],
        )
        return [
            Send(kind="card", payload=outbound, log_content=f"[Card: {outbound.title}]",
                 message_type="card"),
            self._follow(cursor.flow, node, context),
        ]

    async def _quick_reply(self, cursor, context) -> list[StepResult]:
        node = cursor.node
        results: list[StepResult] = []
        if node.message and node.buttons:
            message = interpolate(node.message, context)
            options = [QuickReplyOption(title=b.title, payload=b.payload or b.title)
                       for b in node.buttons]
            results.append(Send(
                kind="quick_replies",
                payload=OutboundQuickReplies(message=message, buttons=options),
                log_content=message, message_type="quick_reply",
            ))
        results.append(self._follow(cursor.flow, node, context))
        return results

    async def _delay(self, cursor, context) -> list[StepResult]:
        node = cursor.node
        return [
            Wait(seconds=node.seconds, show_typing=node.show_typing),
            self._follow(cursor.flow, node, context),
        ]

    async def _user_input(self, cursor, context) -> list[StepResult]:
        logger.info("flow_awaiting_input", flow_id=cursor.flow.id, node_id=cursor.node.id)
        prompt = interpolate(cursor.node.prompt, context) if cursor.node.prompt else None
        return [AwaitInput(cursor, prompt=prompt)]

    async def _end(self, cursor, context) -> list[StepResult]:
        logger.debug("flow_finished", flow_id=cursor.flow.id, node_id=cursor.node.id)
        return [Done()]

    _HANDLERS = {
        NodeType.START: _pass_through,
        NodeType.CONDITION: _pass_through,
        NodeType.TEXT: _text,
        NodeType.IMAGE: _image,
        NodeType.CARD: _card,
        NodeType.QUICK_REPLY: _quick_reply,
        NodeType.DELAY: _delay,
        NodeType.USER_INPUT: _user_input,
        NodeType.END: _end,
    }


ensure_exhaustive(NodeType, GraphInterpreter._HANDLERS, "GraphInterpreter")
