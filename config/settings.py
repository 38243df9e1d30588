"""
Configuration loader for the BlockFlow engine.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class EngineConfig:
    max_steps: int = 100                    # per-turn cap shared by block and graph interpreters
    max_delay_seconds: float = 20.0         # delay cards/nodes are clamped to this
    bootstrap_default_blocks: bool = True   # auto-create Welcome + Default Answer blocks
    interrupt_keywords: list[str] = field(default_factory=lambda: ["restart", "start over"])
    apology_message: str = "Sorry, something went wrong. Please try again later."
    not_configured_message: str = "This bot is not configured yet."
    welcome_text: str = "Welcome! How can I help you today?"
    default_answer_text: str = (
        "I'm sorry, I didn't understand that. Please try again or type 'help' for options."
    )


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./blockflow.db"             # postgresql:// | mysql:// | sqlite://
    store_backend: str = "memory"                      # "sql" | "memory"
    pool_size: int = 10                                # ignored for SQLite


@dataclass
class MessengerConfig:
    graph_api_url: str = "https://graph.facebook.com/v18.0"
    timeout_seconds: float = 10.0
    max_retries: int = 3


@dataclass
class QueueConfig:
    mailbox_size: int = 100             # pending turns per session before submit() waits
    idle_timeout_seconds: float = 300   # session actor exits after this much idle time


@dataclass
class Settings:
    app_name: str = "BlockFlow"
    debug: bool = False
    log_level: str = "info"
    log_json: bool = False
    engine: EngineConfig = field(default_factory=EngineConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    messenger: MessengerConfig = field(default_factory=MessengerConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "BLOCKFLOW_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.log_level = raw.get("log_level", settings.log_level)
        settings.log_json = raw.get("log_json", settings.log_json)

        if "engine" in raw:
            eng = raw["engine"]
            defaults = EngineConfig()
            settings.engine = EngineConfig(
                max_steps=int(eng.get("max_steps", defaults.max_steps)),
                max_delay_seconds=float(eng.get("max_delay_seconds", defaults.max_delay_seconds)),
                bootstrap_default_blocks=eng.get("bootstrap_default_blocks",
                                                 defaults.bootstrap_default_blocks),
                interrupt_keywords=eng.get("interrupt_keywords", defaults.interrupt_keywords),
                apology_message=eng.get("apology_message", defaults.apology_message),
                not_configured_message=eng.get("not_configured_message",
                                               defaults.not_configured_message),
                welcome_text=eng.get("welcome_text", defaults.welcome_text),
                default_answer_text=eng.get("default_answer_text", defaults.default_answer_text),
            )

        if "database" in raw:
            db = raw["database"]
            settings.database = DatabaseConfig(
                url=db.get("url", settings.database.url),
                store_backend=db.get("store_backend", settings.database.store_backend),
                pool_size=int(db.get("pool_size", settings.database.pool_size)),
            )

        if "messenger" in raw:
            ms = raw["messenger"]
            settings.messenger = MessengerConfig(
                graph_api_url=ms.get("graph_api_url", settings.messenger.graph_api_url),
                timeout_seconds=float(ms.get("timeout_seconds", settings.messenger.timeout_seconds)),
                max_retries=int(ms.get("max_retries", settings.messenger.max_retries)),
            )

        if "queue" in raw:
            q = raw["queue"]
            settings.queue = QueueConfig(
                mailbox_size=int(q.get("mailbox_size", 100)),
                idle_timeout_seconds=float(q.get("idle_timeout_seconds", 300)),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
