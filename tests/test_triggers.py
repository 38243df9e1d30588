"""Tests for trigger matching and resolution order."""
import pytest

from config.settings import EngineConfig
from engine.triggers import TriggerResolver, matches_trigger, normalize
from models.schemas import Session

from factories import simple_flow, text_block


@pytest.fixture
def idle_session():
    return Session(bot_id="bot-1", sender_id="user-1")


class TestMatching:
    def test_normalize(self):
        assert normalize("  Hello ") == "hello"
        assert normalize(None) == ""

    def test_equality_and_containment(self):
        assert matches_trigger("hello", "Hello")
        assert matches_trigger("well hello there", "hello")
        assert not matches_trigger("hi", "hello")

    def test_blank_trigger_never_matches(self):
        assert not matches_trigger("anything", "")
        assert not matches_trigger("anything", "   ")


class TestTriggerResolver:
    @pytest.fixture
    def resolver(self, store):
        return TriggerResolver(store, EngineConfig())

    @pytest.mark.asyncio
    async def test_keyword_match(self, store, resolver, idle_session):
        await store.save_block(text_block("pricing", "Our prices", triggers=["price"]))
        resolution = await resolver.resolve(idle_session, "What is the PRICE?")
        assert resolution.kind == "block"
        assert resolution.target.id == "pricing"
        assert resolution.reason == "trigger"

    @pytest.mark.asyncio
    async def test_earliest_created_block_wins(self, store, resolver, idle_session):
        await store.save_block(text_block("first", "1", triggers=["hello"]))
        await store.save_block(text_block("second", "2", triggers=["hello"]))
        resolution = await resolver.resolve(idle_session, "hello")
        assert resolution.target.id == "first"

    @pytest.mark.asyncio
    async def test_disabled_blocks_are_skipped(self, store, resolver, idle_session):
        await store.save_block(text_block("off", "x", triggers=["hello"], is_enabled=False))
        await store.save_block(text_block("on", "y", triggers=["hello"]))
        resolution = await resolver.resolve(idle_session, "hello")
        assert resolution.target.id == "on"

    @pytest.mark.asyncio
    async def test_block_payload(self, store, resolver, idle_session):
        await store.save_block(text_block("menu", "Menu", triggers=["menu"]))
        resolution = await resolver.resolve(idle_session, "BLOCK:menu")
        assert resolution.target.id == "menu"
        assert resolution.reason == "payload"

    @pytest.mark.asyncio
    async def test_payload_for_unknown_block_falls_through(self, store, resolver, idle_session):
        resolution = await resolver.resolve(idle_session, "BLOCK:missing")
        assert resolution.reason == "default_answer"

    @pytest.mark.asyncio
    async def test_returns_none_mid_block(self, resolver):
        session = Session(bot_id="bot-1", sender_id="u", current_block_id="b")
        assert await resolver.resolve(session, "hello") is None

    @pytest.mark.asyncio
    async def test_default_answer_is_bootstrapped(self, store, resolver, idle_session):
        resolution = await resolver.resolve(idle_session, "unknown words")
        assert resolution.reason == "default_answer"
        assert resolution.target.is_default_answer

        blocks = await store.list_blocks("bot-1")
        assert sorted(b.name for b in blocks) == ["Default Answer", "Welcome Message"]
        welcome = next(b for b in blocks if b.is_welcome)
        assert welcome.cards[0].id == "welcome-text-1"

    @pytest.mark.asyncio
    async def test_bootstrap_is_idempotent(self, store, resolver):
        await resolver.ensure_default_blocks("bot-1")
        second = await resolver.ensure_default_blocks("bot-1")
        assert second == []
        assert len(await store.list_blocks("bot-1")) == 2

    @pytest.mark.asyncio
    async def test_bootstrap_only_adds_missing_blocks(self, store, resolver):
        await store.save_block(text_block("fallback", "Huh?", is_default_answer=True))
        created = await resolver.ensure_default_blocks("bot-1")
        assert [b.name for b in created] == ["Welcome Message"]

    @pytest.mark.asyncio
    async def test_block_resolution_never_bootstraps(self, store, resolver, idle_session):
        assert await resolver.resolve_block(idle_session, "zzz") is None
        assert await store.list_blocks("bot-1") == []

        resolution = await resolver.resolve_fallback(idle_session, "zzz")
        assert resolution.reason == "default_answer"
        assert len(await store.list_blocks("bot-1")) == 2

    @pytest.mark.asyncio
    async def test_existing_default_answer_used(self, store, resolver, idle_session):
        await store.save_block(text_block("fallback", "Huh?", is_default_answer=True))
        resolution = await resolver.resolve(idle_session, "zzz")
        assert resolution.target.id == "fallback"
        assert len(await store.list_blocks("bot-1")) == 1

    @pytest.mark.asyncio
    async def test_flow_when_default_answer_disabled(self, store, resolver, idle_session):
        await store.save_block(text_block("fallback", "Huh?", is_default_answer=True,
                                          is_enabled=False))
        await store.save_flow(simple_flow("support", triggers=["help"]))
        await store.save_flow(simple_flow("catch-all", is_default=True))

        resolution = await resolver.resolve(idle_session, "I need help")
        assert resolution.kind == "flow"
        assert resolution.target.id == "support"

        resolution = await resolver.resolve(idle_session, "something else")
        assert resolution.target.id == "catch-all"
        assert resolution.reason == "default_flow"

    @pytest.mark.asyncio
    async def test_nothing_to_run(self, store, idle_session):
        resolver = TriggerResolver(store, EngineConfig(bootstrap_default_blocks=False))
        assert await resolver.resolve(idle_session, "hello") is None
        assert await store.list_blocks("bot-1") == []
