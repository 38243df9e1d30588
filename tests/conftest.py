"""Shared test fixtures for the BlockFlow engine."""
import pytest

from config.settings import EngineConfig
from database.store_memory import InMemoryEngineStore
from models.schemas import Bot

from factories import FakeSleep, RecordingGateway


@pytest.fixture
def store():
    return InMemoryEngineStore()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def bot():
    return Bot(id="bot-1", name="Test Bot")


@pytest.fixture
def engine_config():
    return EngineConfig()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def orchestrator(store, gateway, engine_config, fake_sleep):
    from core.orchestrator import Orchestrator
    return Orchestrator(store, gateway, engine_config, sleep=fake_sleep)
