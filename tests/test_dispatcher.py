"""Tests for per-session turn serialization."""
import asyncio

import pytest

from config.settings import QueueConfig
from job_queue.consumer import SessionDispatcher
from job_queue.message_queue import InboundJob, SessionMailbox
from models.schemas import Bot, ExecutionResult

from factories import text_block


class SlowOrchestrator:
    """Stands in for Orchestrator; tracks how many turns overlap."""

    def __init__(self, delay: float = 0.01):
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.running = 0
        self.max_running = 0
        self.per_key: dict[tuple[str, str], int] = {}
        self.max_per_key = 0
        self.release = None

    async def execute_flow(self, bot, sender_id, message, platform="facebook",
                           name=None, profile_pic=None):
        key = (bot.id, sender_id)
        self.per_key[key] = self.per_key.get(key, 0) + 1
        self.running += 1
        self.max_per_key = max(self.max_per_key, self.per_key[key])
        self.max_running = max(self.max_running, self.running)
        try:
            if self.release is not None:
                await self.release.wait()
            await asyncio.sleep(self.delay)
            if message == "explode":
                raise RuntimeError("orchestrator crashed")
            self.calls.append((sender_id, message))
            return ExecutionResult(success=True, handled_by="block", messages_sent=1)
        finally:
            self.per_key[key] -= 1
            self.running -= 1


@pytest.fixture
def bot():
    return Bot(id="bot-1")


class TestInboundJob:
    def test_defaults(self, bot):
        job = InboundJob(bot=bot, sender_id="u1", message="hi")
        assert job.job_id.startswith("job_")
        assert job.received_at
        assert job.session_key == ("bot-1", "u1")
        assert job.to_dict()["bot_id"] == "bot-1"

    @pytest.mark.asyncio
    async def test_resolve_is_idempotent(self, bot):
        job = InboundJob(bot=bot, sender_id="u1", message="hi")
        job.future = asyncio.get_running_loop().create_future()
        job.resolve(ExecutionResult(success=True))
        job.cancel()
        job.fail(RuntimeError("late"))
        assert job.future.result().success


class TestSessionMailbox:
    @pytest.mark.asyncio
    async def test_fifo_and_timeout(self, bot):
        mailbox = SessionMailbox(("bot-1", "u1"), maxsize=5)
        await mailbox.put(InboundJob(bot=bot, sender_id="u1", message="a"))
        await mailbox.put(InboundJob(bot=bot, sender_id="u1", message="b"))
        assert len(mailbox) == 2
        assert (await mailbox.get(timeout=0.1)).message == "a"
        assert (await mailbox.get(timeout=0.1)).message == "b"
        assert await mailbox.get(timeout=0.01) is None


class TestSessionDispatcher:
    @pytest.mark.asyncio
    async def test_same_session_is_serialized_in_order(self, bot):
        orchestrator = SlowOrchestrator()
        dispatcher = SessionDispatcher(orchestrator)
        futures = [await dispatcher.submit(bot, "u1", str(i)) for i in range(4)]
        results = await asyncio.gather(*futures)

        assert all(r.success for r in results)
        assert orchestrator.calls == [("u1", "0"), ("u1", "1"), ("u1", "2"), ("u1", "3")]
        assert orchestrator.max_per_key == 1
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_different_sessions_run_concurrently(self, bot):
        orchestrator = SlowOrchestrator(delay=0.05)
        dispatcher = SessionDispatcher(orchestrator)
        futures = [await dispatcher.submit(bot, f"u{i}", "hi") for i in range(3)]
        assert dispatcher.active_sessions == 3
        await asyncio.gather(*futures)

        assert orchestrator.max_running == 3
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_idle_worker_exits_and_restarts(self, bot):
        orchestrator = SlowOrchestrator(delay=0)
        dispatcher = SessionDispatcher(orchestrator, idle_timeout=0.05)

        await dispatcher.dispatch(bot, "u1", "first")
        assert dispatcher.active_sessions == 1
        await asyncio.sleep(0.2)
        assert dispatcher.active_sessions == 0

        result = await dispatcher.dispatch(bot, "u1", "second")
        assert result.success
        assert orchestrator.calls[-1] == ("u1", "second")
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_orchestrator_error_fails_only_that_turn(self, bot):
        orchestrator = SlowOrchestrator(delay=0)
        dispatcher = SessionDispatcher(orchestrator)
        bad = await dispatcher.submit(bot, "u1", "explode")
        good = await dispatcher.submit(bot, "u1", "fine")

        with pytest.raises(RuntimeError):
            await bad
        assert (await good).success
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_turns(self, bot):
        orchestrator = SlowOrchestrator(delay=0)
        orchestrator.release = asyncio.Event()
        dispatcher = SessionDispatcher(orchestrator)
        in_flight = await dispatcher.submit(bot, "u1", "a")
        queued = await dispatcher.submit(bot, "u1", "b")
        await asyncio.sleep(0.01)

        await dispatcher.stop()
        assert in_flight.cancelled()
        assert queued.cancelled()
        assert dispatcher.active_sessions == 0
        assert orchestrator.calls == []

    @pytest.mark.asyncio
    async def test_from_config(self):
        dispatcher = SessionDispatcher.from_config(
            SlowOrchestrator(), QueueConfig(mailbox_size=7, idle_timeout_seconds=12),
        )
        assert dispatcher.mailbox_size == 7
        assert dispatcher.idle_timeout == 12


class TestDispatcherWithOrchestrator:
    @pytest.mark.asyncio
    async def test_back_to_back_messages_see_committed_session(self, orchestrator, store,
                                                               gateway, bot):
        from models.schemas import Block, TextCard, UserInputCard
        await store.save_block(Block(id="form", bot_id="bot-1", triggers=["signup"], cards=[
            UserInputCard(prompt="Name?", variable_name="name"),
            TextCard(text="Hi {{name}}"),
        ]))
        await store.save_block(text_block("other", "unused", triggers=["ann"]))

        dispatcher = SessionDispatcher(orchestrator)
        first = await dispatcher.submit(bot, "user-1", "signup")
        second = await dispatcher.submit(bot, "user-1", "Ann")
        await asyncio.gather(first, second)

        assert gateway.texts == ["Name?", "Hi Ann"]
        await dispatcher.stop()
