"""
Database layer — Multi-backend persistence.

Backends:
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)

Quick start:
  from database import create_store
  store = create_store({"store_backend": "memory"})
  session = await store.get_session("bot-1", "psid-42")
"""
from database.models import (
    Base, AnalyticsRow, BlockRow, BotRow, ContactRow, FlowRow, MessageRow, SessionRow,
)
from database.session import Database, get_database, init_db, close_db
from database.store_base import BaseEngineStore
from database.store import SqlEngineStore
from database.store_memory import InMemoryEngineStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    # ORM models
    "Base", "AnalyticsRow", "BlockRow", "BotRow", "ContactRow", "FlowRow",
    "MessageRow", "SessionRow",
    # Session management
    "Database", "get_database", "init_db", "close_db",
    # Store interface
    "BaseEngineStore",
    # Store backends
    "SqlEngineStore", "InMemoryEngineStore",
    # Factory
    "create_store", "get_store", "reset_store",
]
