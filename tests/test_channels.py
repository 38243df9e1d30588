"""Tests for the gateway base, the Messenger Send API adapter and the console gateway."""
import io
import json

import httpx
import pytest
from tenacity import wait_none

from channels.base import CircuitBreaker, GatewayMetrics
from channels.console_adapter import ConsoleGateway
from channels.messenger_adapter import MessengerAdapter
from config.settings import MessengerConfig
from engine.errors import TransientDeliveryError
from models.schemas import (
    Bot, OutboundButton, OutboundCard, OutboundQuickReplies, QuickReplyOption,
)

from factories import RecordingGateway

GRAPH_URL = "https://graph.test/v18.0"


@pytest.fixture
def page_bot():
    return Bot(id="bot-1", name="Pizza", page_access_token="page-token")


class RecordingHandler:
    """httpx.MockTransport handler replaying a list of responses."""

    def __init__(self, *responses):
        self.responses = list(responses) or [200]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"recipient_id": "u1"})

    def body(self, i: int = -1) -> dict:
        return json.loads(self.requests[i].content)


def make_adapter(handler, max_retries: int = 3) -> MessengerAdapter:
    client = httpx.AsyncClient(base_url=GRAPH_URL, transport=httpx.MockTransport(handler))
    config = MessengerConfig(graph_api_url=GRAPH_URL, max_retries=max_retries)
    return MessengerAdapter(config, client=client, retry_wait=wait_none())


# ══════════════════════════════════════════════════════════════
#  BASE: Circuit Breaker
# ══════════════════════════════════════════════════════════════

class TestCircuitBreaker:
    def test_starts_closed(self):
        cb = CircuitBreaker()
        assert cb.state == "closed"
        assert not cb.is_open

    def test_opens_after_threshold(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()
        assert cb.state == "closed"
        cb.record_failure()
        assert cb.is_open

    def test_half_open_after_timeout(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        assert cb.state == "half_open"
        cb.record_success()
        assert cb.state == "closed"

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=2)
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        assert cb.state == "closed"


class TestGatewayMetrics:
    def test_counts_and_rates(self):
        m = GatewayMetrics("messenger")
        m.record_send(10.0)
        m.record_send(30.0)
        m.record_failure("timeout")
        assert m.avg_latency_ms == 20.0
        assert m.failure_rate == pytest.approx(1 / 3)
        assert m.to_dict()["recent_errors"] == ["timeout"]

    def test_history_is_bounded(self):
        m = GatewayMetrics("messenger", window=5)
        for i in range(50):
            m.record_send(float(i + 1))
            m.record_failure(f"e{i}")
        assert m.messages_sent == 50
        assert m.avg_latency_ms == 48.0
        assert m.to_dict()["recent_errors"] == [f"e{i}" for i in range(40, 50)]


class TestGatewayGuard:
    @pytest.mark.asyncio
    async def test_failures_become_transient_errors(self, bot):
        gateway = RecordingGateway(fail_kinds={"text"})
        with pytest.raises(TransientDeliveryError) as exc:
            await gateway.send_text(bot, "u1", "hi")
        assert exc.value.recipient_id == "u1"
        health = await gateway.health_check()
        assert health["metrics"]["failed"] == 1

    @pytest.mark.asyncio
    async def test_open_breaker_short_circuits(self, bot):
        gateway = RecordingGateway(fail_kinds={"text"})
        for _ in range(5):
            with pytest.raises(TransientDeliveryError):
                await gateway.send_text(bot, "u1", "hi")
        gateway.fail_kinds.clear()
        with pytest.raises(TransientDeliveryError, match="Circuit breaker open"):
            await gateway.send_text(bot, "u1", "hi")
        assert gateway.sent == []

    @pytest.mark.asyncio
    async def test_breakers_are_kept_per_bot(self):
        gateway = RecordingGateway(fail_bots={"broken"})
        broken, healthy = Bot(id="broken"), Bot(id="healthy")
        for _ in range(5):
            with pytest.raises(TransientDeliveryError):
                await gateway.send_text(broken, "u1", "hi")
        assert gateway.breaker_for("broken").is_open

        await gateway.send_text(healthy, "u2", "hi")
        assert gateway.texts == ["hi"]
        health = await gateway.health_check()
        assert health["circuit_breakers"]["healthy"]["state"] == "closed"

    @pytest.mark.asyncio
    async def test_rejected_requests_do_not_trip_breaker(self, bot):
        gateway = RecordingGateway(fail_kinds={"text"}, rejected=True)
        for _ in range(10):
            with pytest.raises(TransientDeliveryError) as exc:
                await gateway.send_text(bot, "u1", "hi")
            assert not exc.value.retryable
        assert gateway.breaker_for(bot.id).state == "closed"
        assert (await gateway.health_check())["metrics"]["failed"] == 10


# ══════════════════════════════════════════════════════════════
#  MESSENGER: Send API
# ══════════════════════════════════════════════════════════════

class TestMessengerAdapter:
    @pytest.mark.asyncio
    async def test_send_text(self, page_bot):
        handler = RecordingHandler()
        adapter = make_adapter(handler)
        await adapter.send_text(page_bot, "u1", "Hello")

        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v18.0/me/messages"
        assert request.url.params["access_token"] == "page-token"
        assert handler.body() == {"recipient": {"id": "u1"}, "message": {"text": "Hello"}}

    @pytest.mark.asyncio
    async def test_send_image(self, page_bot):
        handler = RecordingHandler()
        await make_adapter(handler).send_image(page_bot, "u1", "https://img/x.png")
        attachment = handler.body()["message"]["attachment"]
        assert attachment == {
            "type": "image",
            "payload": {"url": "https://img/x.png", "is_reusable": True},
        }

    @pytest.mark.asyncio
    async def test_send_card_as_generic_template(self, page_bot):
        handler = RecordingHandler()
        card = OutboundCard(title="Pizza", subtitle="Hot", image_url="https://img/p.png",
                            buttons=[
                                OutboundButton(title="Order", payload="BLOCK:order"),
                                OutboundButton(title="Site", kind="url", url="https://x"),
                            ])
        await make_adapter(handler).send_card(page_bot, "u1", card)

        payload = handler.body()["message"]["attachment"]["payload"]
        assert payload["template_type"] == "generic"
        element = payload["elements"][0]
        assert element["title"] == "Pizza"
        assert element["image_url"] == "https://img/p.png"
        assert element["buttons"] == [
            {"type": "postback", "title": "Order", "payload": "BLOCK:order"},
            {"type": "web_url", "url": "https://x", "title": "Site"},
        ]

    @pytest.mark.asyncio
    async def test_send_quick_replies(self, page_bot):
        handler = RecordingHandler()
        replies = OutboundQuickReplies(message="Pick", buttons=[
            QuickReplyOption(title="Menu", payload="BLOCK:menu"),
        ])
        await make_adapter(handler).send_quick_replies(page_bot, "u1", replies)
        assert handler.body()["message"] == {
            "text": "Pick",
            "quick_replies": [{"content_type": "text", "title": "Menu", "payload": "BLOCK:menu"}],
        }

    @pytest.mark.asyncio
    async def test_typing_indicator(self, page_bot):
        handler = RecordingHandler()
        adapter = make_adapter(handler)
        await adapter.send_typing_indicator(page_bot, "u1", True)
        await adapter.send_typing_indicator(page_bot, "u1", False)
        assert [handler.body(i)["sender_action"] for i in (0, 1)] == ["typing_on", "typing_off"]

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, page_bot):
        handler = RecordingHandler(500, 503, 200)
        await make_adapter(handler).send_text(page_bot, "u1", "Hello")
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_retries(self, page_bot):
        handler = RecordingHandler(429)
        with pytest.raises(TransientDeliveryError) as exc:
            await make_adapter(handler, max_retries=2).send_text(page_bot, "u1", "Hello")
        assert len(handler.requests) == 2
        assert exc.value.retryable

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, page_bot):
        handler = RecordingHandler(400)
        with pytest.raises(TransientDeliveryError) as exc:
            await make_adapter(handler).send_text(page_bot, "u1", "Hello")
        assert len(handler.requests) == 1
        assert not exc.value.retryable

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self, page_bot):
        handler = RecordingHandler(httpx.ConnectError("down"), 200)
        await make_adapter(handler).send_text(page_bot, "u1", "Hello")
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_mock_mode_without_token(self):
        handler = RecordingHandler()
        await make_adapter(handler).send_text(Bot(id="draft"), "u1", "Hello")
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_shutdown_closes_client(self, page_bot):
        adapter = make_adapter(RecordingHandler())
        await adapter.shutdown()
        assert adapter.client is None


# ══════════════════════════════════════════════════════════════
#  CONSOLE
# ══════════════════════════════════════════════════════════════

class TestConsoleGateway:
    @pytest.mark.asyncio
    async def test_prints_messages_with_payloads(self, bot):
        out = io.StringIO()
        gateway = ConsoleGateway(stream=out, prefix="> ")
        await gateway.send_text(bot, "u1", "Hello")
        await gateway.send_quick_replies(bot, "u1", OutboundQuickReplies(
            message="Pick", buttons=[QuickReplyOption(title="Menu", payload="BLOCK:menu")],
        ))
        lines = out.getvalue().splitlines()
        assert lines[0] == "> Hello"
        assert lines[1] == "> Pick"
        assert "BLOCK:menu" in lines[2]
