#!/usr/bin/env python3
"""
Chat Console — talk to a bot definition in the terminal.

Loads a bot (blocks and/or legacy flows) from a YAML or JSON file into
the configured store (``database.store_backend``, or ``--store``) and runs every line you type through the engine.
Outbound messages are printed by ConsoleGateway; type a quick-reply or
button payload (e.g. ``BLOCK:menu``) to simulate a tap.

Usage:
    python scripts/chat_console.py scripts/sample_bot.yaml
    python scripts/chat_console.py bot.json --sender tester-1 --delay-scale 0
    python scripts/chat_console.py bot.yaml --store sql   # keeps sessions in database.url

Definition file:
    bot:    {id: pizza, name: Pizza Bot}
    blocks: [{name: Menu, triggers: [menu], cards: [{type: text, text: Hi}]}]
    flows:  [{name: Legacy, isDefault: true, nodes: [...], edges: [...]}]
"""
import asyncio
import json
import os
import sys
import argparse
from pathlib import Path

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog
import yaml
from dotenv import load_dotenv

logger = structlog.get_logger()


def read_definition(path: str) -> dict:
    raw = Path(path).read_text(encoding="utf-8")
    if path.endswith(".json"):
        return json.loads(raw)
    return yaml.safe_load(raw) or {}


async def load_definition(store, definition: dict):
    """Save the bot, its blocks and its flows; returns the Bot."""
    from models.schemas import Block, Bot, Flow

    bot = Bot.model_validate(definition.get("bot") or {"name": "Console Bot"})
    await store.save_bot(bot)
    for raw in definition.get("blocks") or []:
        await store.save_block(Block.model_validate({**raw, "botId": bot.id}))
    for raw in definition.get("flows") or []:
        await store.save_flow(Flow.model_validate({**raw, "botId": bot.id}))
    logger.info("bot_definition_loaded", bot_id=bot.id,
                blocks=len(definition.get("blocks") or []),
                flows=len(definition.get("flows") or []))
    return bot


async def chat(path: str, sender_id: str, delay_scale: float, backend: str = None):
    from config.settings import load_settings
    from utils.logging import configure_logging
    from channels.console_adapter import ConsoleGateway
    from core.orchestrator import Orchestrator
    from database.store import SqlEngineStore
    from database.store_factory import create_store
    from job_queue.consumer import SessionDispatcher

    settings = load_settings()
    configure_logging(settings)

    if backend:
        settings.database.store_backend = backend
    store = create_store(settings.database)
    if isinstance(store, SqlEngineStore):
        await store.database.create_tables()
    bot = await load_definition(store, read_definition(path))

    async def scaled_sleep(seconds: float):
        await asyncio.sleep(seconds * delay_scale)

    orchestrator = Orchestrator(store, ConsoleGateway(), settings.engine, sleep=scaled_sleep)
    dispatcher = SessionDispatcher.from_config(orchestrator, settings.queue)

    print(f"Chatting with '{bot.name or bot.id}' as {sender_id}. Ctrl-D to quit.")
    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            result = await dispatcher.dispatch(bot, sender_id, line.rstrip("\n"),
                                               platform="console")
            if not result.success:
                print(f"  (turn failed: {result.error})")
    finally:
        await dispatcher.stop()
        await store.close()


def main():
    load_dotenv()
    parser = argparse.ArgumentParser(description="Chat with a bot definition")
    parser.add_argument("definition", help="YAML or JSON bot definition")
    parser.add_argument("--sender", default="console-user", help="Sender id to chat as")
    parser.add_argument("--delay-scale", type=float, default=1.0,
                        help="Multiply delay cards by this factor (0 skips them)")
    parser.add_argument("--store", choices=["memory", "sql"], default=None,
                        help="Override database.store_backend")
    args = parser.parse_args()

    asyncio.run(chat(args.definition, args.sender, args.delay_scale, args.store))


if __name__ == "__main__":
    main()
