"""
Database — async engine plus transaction scope for the SQL engine store.

A ``Database`` owns one engine and its session factory. ``SqlEngineStore``
opens one ``transaction()`` per store call; ``scripts/migrate_db.py``
uses ``create_tables()`` and ``table_names()``.

Sync URLs from settings.yaml are mapped to the async drivers:
  postgresql://  → postgresql+asyncpg://     (extra: postgres)
  mysql://       → mysql+aiomysql://         (extra: mysql)
  sqlite://      → sqlite+aiosqlite://

SQLite connections run in WAL mode with a busy timeout: every session
actor writes its own turn, and concurrent writers should wait on the
file lock rather than fail with "database is locked".
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event, inspect
from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker,
)

from config.settings import DatabaseConfig, get_settings
from database.models import Base

logger = structlog.get_logger()

ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "mysql+pymysql": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}

SQLITE_BUSY_TIMEOUT_MS = 5000


def async_url(db_url: str) -> str:
    """``sqlite:///x.db`` → ``sqlite+aiosqlite:///x.db``; async URLs pass through."""
    scheme, sep, rest = db_url.partition("://")
    return f"{ASYNC_DRIVERS.get(scheme, scheme)}{sep}{rest}"


def _sqlite_on_connect(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


class Database:
    """
    One engine and session factory for one database URL.

    Usage:
        db = Database("sqlite:///./blockflow.db")
        await db.create_tables()
        async with db.transaction() as session:
            session.add(row)
        await db.dispose()
    """

    def __init__(self, url: str, echo: bool = False, pool_size: int = 10):
        self.url = async_url(url)
        kwargs: dict = {"echo": echo}
        if not self.url.startswith("sqlite"):
            kwargs.update(
                pool_size=pool_size,
                max_overflow=pool_size * 2,
                pool_timeout=30,
                pool_recycle=1800,
                pool_pre_ping=True,
            )
        self.engine: AsyncEngine = create_async_engine(self.url, **kwargs)
        if self.dialect == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _sqlite_on_connect)
        self._sessions = async_sessionmaker(self.engine, class_=AsyncSession,
                                            expire_on_commit=False)
        logger.info("database_engine_created", dialect=self.dialect,
                    url=self.url.split("@")[-1])

    @classmethod
    def from_config(cls, config: DatabaseConfig, echo: bool = False) -> "Database":
        return cls(config.url, echo=echo, pool_size=config.pool_size)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """Commit on exit, roll back on any exception."""
        async with self._sessions.begin() as session:
            yield session

    async def create_tables(self) -> list[str]:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        tables = list(Base.metadata.tables.keys())
        logger.info("database_initialized", dialect=self.dialect, tables=tables)
        return tables

    async def table_names(self) -> list[str]:
        async with self.engine.connect() as conn:
            return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("database_closed", dialect=self.dialect)


# ──────────────────────────────────────────────────────────────
#  Process-wide default (database.url from settings)
# ──────────────────────────────────────────────────────────────

_default: Optional[Database] = None


def get_database(db_url: Optional[str] = None) -> Database:
    """
    Return the default Database, creating it if needed.

    ``db_url`` only applies on first creation; it defaults to
    ``database.url`` from settings.
    """
    global _default
    if _default is None:
        settings = get_settings()
        config = settings.database
        _default = Database(db_url or config.url, echo=settings.debug,
                            pool_size=config.pool_size)
    return _default


async def init_db(db_url: Optional[str] = None) -> Database:
    """Create all tables on the default Database. Call once at startup."""
    db = get_database(db_url)
    await db.create_tables()
    return db


async def close_db() -> None:
    """Dispose the default Database. Call at shutdown."""
    global _default
    if _default is not None:
        await _default.dispose()
        _default = None
