"""Tests for the legacy flow graph interpreter."""
import pytest

from engine.budget import StepBudget
from engine.errors import ConfigurationError
from engine.graph import GraphInterpreter, NodeCursor
from engine.sessions import SessionManager
from engine.steps import AwaitInput, Done, Goto, Send, Wait
from models.schemas import Flow, Session

from factories import simple_flow


@pytest.fixture
def interpreter(store):
    return GraphInterpreter(store, SessionManager(store))


def branching_flow() -> Flow:
    return simple_flow(
        "quiz",
        nodes=[
            {"id": "start", "type": "start", "data": {}},
            {"id": "ask", "type": "userInput",
             "data": {"prompt": "Do you like pizza?", "variableName": "answer"}},
            {"id": "check", "type": "condition",
             "data": {"variable": "answer", "operator": "contains", "value": "yes"}},
            {"id": "yay", "type": "text", "data": {"message": "Great, {{answer}}!"}},
            {"id": "nay", "type": "text", "data": {"message": "Too bad."}},
        ],
        edges=[
            {"source": "start", "target": "ask"},
            {"source": "ask", "target": "check"},
            {"source": "check", "target": "yay", "sourceHandle": "true"},
            {"source": "check", "target": "nay", "sourceHandle": "false"},
        ],
    )


class TestFlowModel:
    def test_data_payload_is_flattened(self):
        flow = branching_flow()
        ask = flow.find_node("ask")
        assert ask.prompt == "Do you like pizza?"
        assert ask.variable_name == "answer"
        assert flow.find_start().id == "start"

    def test_nodes_and_edges_accept_json_text(self):
        flow = Flow.model_validate({
            "id": "f", "botId": "bot-1",
            "nodes": '[{"id": "s", "type": "start", "data": {}}]',
            "edges": "",
        })
        assert flow.find_start().id == "s"
        assert flow.edges == []


class TestGraphSteps:
    def test_begin_requires_start_node(self, interpreter):
        flow = simple_flow(nodes=[{"id": "t", "type": "text", "data": {"message": "x"}}],
                           edges=[])
        with pytest.raises(ConfigurationError):
            interpreter.begin(flow)

    @pytest.mark.asyncio
    async def test_text_node_follows_first_edge(self, interpreter):
        flow = simple_flow()
        results = await interpreter.step(NodeCursor(flow, flow.find_node("hello")), {},
                                         StepBudget())
        assert results[0] == Send.text("Hello from the flow")
        assert results[1].cursor.node.id == "end"

    @pytest.mark.asyncio
    async def test_end_node_is_done(self, interpreter):
        flow = simple_flow()
        results = await interpreter.step(NodeCursor(flow, flow.find_node("end")), {},
                                         StepBudget())
        assert results == [Done()]

    @pytest.mark.asyncio
    async def test_missing_edge_is_done(self, interpreter):
        flow = simple_flow(edges=[{"source": "start", "target": "hello"}])
        results = await interpreter.step(NodeCursor(flow, flow.find_node("hello")), {},
                                         StepBudget())
        assert isinstance(results[-1], Done)

    @pytest.mark.asyncio
    async def test_dangling_edge_is_done(self, interpreter):
        flow = simple_flow(edges=[{"source": "start", "target": "nowhere"}])
        results = await interpreter.step(NodeCursor(flow, flow.find_start()), {},
                                         StepBudget())
        assert results == [Done()]

    @pytest.mark.asyncio
    async def test_condition_branches(self, interpreter):
        flow = branching_flow()
        check = NodeCursor(flow, flow.find_node("check"))
        yes = await interpreter.step(check, {"answer": "YES!"}, StepBudget())
        no = await interpreter.step(check, {"answer": "nope"}, StepBudget())
        assert yes[0].cursor.node.id == "yay"
        assert no[0].cursor.node.id == "nay"

    @pytest.mark.asyncio
    async def test_condition_without_matching_handle_is_done(self, interpreter):
        flow = branching_flow()
        flow.edges = [e for e in flow.edges if e.source_handle != "false"]
        results = await interpreter.step(NodeCursor(flow, flow.find_node("check")),
                                         {"answer": "no"}, StepBudget())
        assert results == [Done()]

    @pytest.mark.asyncio
    async def test_user_input_parks(self, interpreter):
        flow = branching_flow()
        results = await interpreter.step(NodeCursor(flow, flow.find_node("ask")), {},
                                         StepBudget())
        assert isinstance(results[0], AwaitInput)
        assert results[0].prompt == "Do you like pizza?"

    @pytest.mark.asyncio
    async def test_quick_reply_and_delay_nodes(self, interpreter):
        flow = simple_flow(
            nodes=[
                {"id": "start", "type": "start", "data": {}},
                {"id": "qr", "type": "quickReply", "data": {
                    "message": "Pick", "buttons": [{"title": "A", "payload": "PICK_A"},
                                                   {"title": "B"}],
                }},
                {"id": "wait", "type": "delay", "data": {"seconds": 2, "showTyping": True}},
            ],
            edges=[{"source": "start", "target": "qr"}, {"source": "qr", "target": "wait"}],
        )
        qr = await interpreter.step(NodeCursor(flow, flow.find_node("qr")), {}, StepBudget())
        assert [b.payload for b in qr[0].payload.buttons] == ["PICK_A", "B"]
        assert qr[1].cursor.node.id == "wait"

        wait = await interpreter.step(NodeCursor(flow, flow.find_node("wait")), {}, StepBudget())
        assert wait[0] == Wait(seconds=2, show_typing=True)
        assert wait[1] == Done()


class TestGraphResume:
    @pytest.mark.asyncio
    async def test_captures_input_and_follows_edge(self, interpreter, store):
        await store.save_flow(branching_flow())
        session = Session(bot_id="bot-1", sender_id="u", current_node_id="ask",
                          current_flow_id="quiz")
        context = {}
        transition = await interpreter.resume(session, "yes please", context)
        assert context == {"answer": "yes please"}
        assert transition.cursor.node.id == "check"

    @pytest.mark.asyncio
    async def test_legacy_pointer_uses_default_flow(self, interpreter, store):
        flow = branching_flow()
        flow.is_default = True
        await store.save_flow(flow)
        session = Session(bot_id="bot-1", sender_id="u", current_node_id="ask")
        transition = await interpreter.resume(session, "no", {})
        assert isinstance(transition, Goto)

    @pytest.mark.asyncio
    async def test_non_input_node_is_rerun(self, interpreter, store):
        await store.save_flow(branching_flow())
        session = Session(bot_id="bot-1", sender_id="u", current_node_id="yay",
                          current_flow_id="quiz")
        context = {}
        transition = await interpreter.resume(session, "hello", context)
        assert transition.cursor.node.id == "yay"
        assert context == {}

    @pytest.mark.asyncio
    async def test_stale_pointer_returns_none(self, interpreter, store):
        await store.save_flow(branching_flow())
        gone_node = Session(bot_id="bot-1", sender_id="u", current_node_id="deleted",
                            current_flow_id="quiz")
        gone_flow = Session(bot_id="bot-1", sender_id="u", current_node_id="ask",
                            current_flow_id="deleted")
        assert await interpreter.resume(gone_node, "x", {}) is None
        assert await interpreter.resume(gone_flow, "x", {}) is None
