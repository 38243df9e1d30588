"""
SqlEngineStore — Portable SQL queries for PostgreSQL, MySQL, SQLite.

Every method runs in its own transaction via ``Database.transaction()``.
Counters are bumped with ``UPDATE ... SET col = col + 1`` and rows that
may be created concurrently (sessions, contacts, daily analytics) are
inserted optimistically, retrying as an update when the unique
constraint reports that another writer got there first.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from database.models import (
    AnalyticsRow, BlockRow, BotRow, ContactRow, FlowRow, MessageRow, SessionRow,
)
from database.session import Database, get_database
from database.store_base import BaseEngineStore
from engine.errors import DataIntegrityError
from models.schemas import (
    Block, Bot, Contact, DailyAnalytics, Flow, MessageDirection, MessageLog, Session,
)

logger = structlog.get_logger()

MAX_WRITE_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log_conflict(retry_state) -> None:
    logger.warning("unique_insert_conflict",
                   operation=retry_state.fn.__name__,
                   attempt=retry_state.attempt_number)


# A concurrent insert of the same unique key: re-run the whole transaction,
# which now finds the row and updates it.
_retry_on_conflict = retry(
    retry=retry_if_exception_type(IntegrityError),
    stop=stop_after_attempt(MAX_WRITE_ATTEMPTS),
    before_sleep=_log_conflict,
    reraise=True,
)


class SqlEngineStore(BaseEngineStore):
    """
    Persistent engine store backed by any SQLAlchemy-supported database.
    Works with PostgreSQL, MySQL 8+, and SQLite.
    """

    def __init__(self, database: Database = None):
        self.database = database or get_database()

    # ── Bots ──────────────────────────────────────────────

    async def get_bot(self, bot_id: str) -> Optional[Bot]:
        async with self.database.transaction() as db:
            row = await db.get(BotRow, bot_id)
            return self._row_to_bot(row) if row else None

    async def save_bot(self, bot: Bot) -> Bot:
        async with self.database.transaction() as db:
            row = await db.get(BotRow, bot.id)
            if row is None:
                row = BotRow(id=bot.id)
                db.add(row)
            row.name = bot.name
            row.page_access_token = bot.page_access_token
            row.platform = bot.platform
            row.is_active = bot.is_active
        return bot

    # ── Sessions ──────────────────────────────────────────

    async def get_session(self, bot_id: str, sender_id: str) -> Optional[Session]:
        async with self.database.transaction() as db:
            row = await self._find_session_row(db, bot_id, sender_id)
            return self._row_to_session(row) if row else None

    @_retry_on_conflict
    async def save_session(self, session: Session) -> Session:
        async with self.database.transaction() as db:
            row = await self._find_session_row(db, session.bot_id, session.sender_id)
            if row is None:
                row = SessionRow(
                    id=session.id, bot_id=session.bot_id,
                    sender_id=session.sender_id, created_at=session.created_at,
                )
                db.add(row)
            else:
                session.id = row.id
            row.current_block_id = session.current_block_id
            row.current_card_index = session.current_card_index
            row.current_node_id = session.current_node_id
            row.current_flow_id = session.current_flow_id
            row.context = dict(session.context)
            row.updated_at = _utcnow()
        session.updated_at = row.updated_at
        return session

    @staticmethod
    async def _find_session_row(db, bot_id: str, sender_id: str) -> Optional[SessionRow]:
        stmt = select(SessionRow).where(
            SessionRow.bot_id == bot_id, SessionRow.sender_id == sender_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    # ── Blocks ────────────────────────────────────────────

    async def list_blocks(self, bot_id: str, enabled_only: bool = False) -> list[Block]:
        async with self.database.transaction() as db:
            stmt = select(BlockRow).where(BlockRow.bot_id == bot_id)
            if enabled_only:
                stmt = stmt.where(BlockRow.is_enabled.is_(True))
            stmt = stmt.order_by(BlockRow.seq, BlockRow.created_at)
            result = await db.execute(stmt)
            return _valid_only(self._row_to_block, result.scalars())

    async def find_flagged_block_id(self, bot_id: str, flag: str) -> Optional[str]:
        column = getattr(BlockRow, flag)
        async with self.database.transaction() as db:
            stmt = (
                select(BlockRow.id)
                .where(BlockRow.bot_id == bot_id, column.is_(True))
                .order_by(BlockRow.seq, BlockRow.created_at)
                .limit(1)
            )
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def get_block(self, bot_id: str, block_id: str) -> Optional[Block]:
        async with self.database.transaction() as db:
            row = await db.get(BlockRow, block_id)
            if row is None or row.bot_id != bot_id:
                return None
            return self._row_to_block(row)

    async def save_block(self, block: Block) -> Block:
        data = block.model_dump(mode="json", by_alias=True)
        async with self.database.transaction() as db:
            row = await db.get(BlockRow, block.id)
            if row is None:
                row = BlockRow(
                    id=block.id, bot_id=block.bot_id, created_at=block.created_at,
                    seq=await self._next_seq(db, BlockRow, block.bot_id),
                )
                db.add(row)
            row.name = block.name
            row.group_name = block.group_name
            row.cards = data["cards"]
            row.triggers = list(block.triggers)
            row.is_welcome = block.is_welcome
            row.is_default_answer = block.is_default_answer
            row.is_enabled = block.is_enabled
        return block

    # ── Flows ─────────────────────────────────────────────

    async def list_flows(self, bot_id: str, active_only: bool = False) -> list[Flow]:
        async with self.database.transaction() as db:
            stmt = select(FlowRow).where(FlowRow.bot_id == bot_id)
            if active_only:
                stmt = stmt.where(FlowRow.is_active.is_(True))
            stmt = stmt.order_by(FlowRow.seq, FlowRow.created_at)
            result = await db.execute(stmt)
            return _valid_only(self._row_to_flow, result.scalars())

    async def get_flow(self, bot_id: str, flow_id: str) -> Optional[Flow]:
        async with self.database.transaction() as db:
            row = await db.get(FlowRow, flow_id)
            if row is None or row.bot_id != bot_id:
                return None
            return self._row_to_flow(row)

    async def save_flow(self, flow: Flow) -> Flow:
        data = flow.model_dump(mode="json", by_alias=True)
        async with self.database.transaction() as db:
            row = await db.get(FlowRow, flow.id)
            if row is None:
                row = FlowRow(
                    id=flow.id, bot_id=flow.bot_id, created_at=flow.created_at,
                    seq=await self._next_seq(db, FlowRow, flow.bot_id),
                )
                db.add(row)
            row.name = flow.name
            row.nodes = data["nodes"]
            row.edges = data["edges"]
            row.triggers = list(flow.triggers)
            row.is_default = flow.is_default
            row.is_active = flow.is_active
        return flow

    @staticmethod
    async def _next_seq(db, model, bot_id: str) -> int:
        result = await db.execute(
            select(func.coalesce(func.max(model.seq), 0)).where(model.bot_id == bot_id)
        )
        return int(result.scalar_one()) + 1

    # ── Contacts ──────────────────────────────────────────

    async def get_contact(self, bot_id: str, sender_id: str) -> Optional[Contact]:
        async with self.database.transaction() as db:
            row = await self._find_contact_row(db, bot_id, sender_id)
            return self._row_to_contact(row) if row else None

    @_retry_on_conflict
    async def upsert_contact(self, bot_id: str, sender_id: str, name: str = None,
                             profile_pic: str = None, platform: str = "facebook") -> Contact:
        async with self.database.transaction() as db:
            row = await self._find_contact_row(db, bot_id, sender_id)
            if row is None:
                row = ContactRow(
                    bot_id=bot_id, sender_id=sender_id, name=name,
                    profile_pic=profile_pic, platform=platform, message_count=1,
                )
                db.add(row)
            else:
                row.last_seen_at = _utcnow()
                row.message_count = ContactRow.message_count + 1
                if name:
                    row.name = name
                if profile_pic:
                    row.profile_pic = profile_pic
            await db.flush()
            await db.refresh(row)
            return self._row_to_contact(row)

    @staticmethod
    async def _find_contact_row(db, bot_id: str, sender_id: str) -> Optional[ContactRow]:
        stmt = select(ContactRow).where(
            ContactRow.bot_id == bot_id, ContactRow.sender_id == sender_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    # ── Messages & Analytics ──────────────────────────────

    async def add_message(self, message: MessageLog) -> MessageLog:
        async with self.database.transaction() as db:
            db.add(MessageRow(
                id=message.id, bot_id=message.bot_id, sender_id=message.sender_id,
                content=message.content, direction=message.direction.value,
                message_type=message.message_type, timestamp=message.timestamp,
            ))
        return message

    async def list_messages(self, bot_id: str, sender_id: str = None,
                            limit: int = 50) -> list[MessageLog]:
        async with self.database.transaction() as db:
            stmt = select(MessageRow).where(MessageRow.bot_id == bot_id)
            if sender_id is not None:
                stmt = stmt.where(MessageRow.sender_id == sender_id)
            stmt = stmt.order_by(MessageRow.timestamp.desc()).limit(limit)
            result = await db.execute(stmt)
            rows = list(result.scalars())
        rows.reverse()
        return [
            MessageLog(
                id=r.id, bot_id=r.bot_id, sender_id=r.sender_id, content=r.content,
                direction=MessageDirection(r.direction), message_type=r.message_type,
                timestamp=r.timestamp,
            )
            for r in rows
        ]

    async def increment_daily_analytics(self, bot_id: str, day: date,
                                        direction: MessageDirection,
                                        new_user: bool = False) -> DailyAnalytics:
        incoming = 1 if direction == MessageDirection.INCOMING else 0
        outgoing = 1 - incoming
        users = 1 if new_user else 0
        await self._bump_analytics(bot_id, day, incoming, outgoing, users)
        return await self.get_daily_analytics(bot_id, day)

    @_retry_on_conflict
    async def _bump_analytics(self, bot_id: str, day: date, incoming: int,
                              outgoing: int, users: int) -> None:
        async with self.database.transaction() as db:
            stmt = (
                update(AnalyticsRow)
                .where(AnalyticsRow.bot_id == bot_id, AnalyticsRow.date == day)
                .values(
                    total_messages=AnalyticsRow.total_messages + 1,
                    incoming_messages=AnalyticsRow.incoming_messages + incoming,
                    outgoing_messages=AnalyticsRow.outgoing_messages + outgoing,
                    unique_users=AnalyticsRow.unique_users + users,
                )
            )
            result = await db.execute(stmt)
            if result.rowcount == 0:
                # INSERT may lose a race with another writer; the retry turns it into the UPDATE
                db.add(AnalyticsRow(
                    bot_id=bot_id, date=day, total_messages=1,
                    incoming_messages=incoming, outgoing_messages=outgoing,
                    unique_users=users,
                ))
                await db.flush()

    async def get_daily_analytics(self, bot_id: str, day: date) -> Optional[DailyAnalytics]:
        async with self.database.transaction() as db:
            stmt = select(AnalyticsRow).where(
                AnalyticsRow.bot_id == bot_id, AnalyticsRow.date == day,
            )
            result = await db.execute(stmt)
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return DailyAnalytics(
                bot_id=row.bot_id, date=row.date,
                total_messages=row.total_messages,
                incoming_messages=row.incoming_messages,
                outgoing_messages=row.outgoing_messages,
                unique_users=row.unique_users,
            )

    # ── Lifecycle ─────────────────────────────────────────

    async def health_check(self) -> bool:
        try:
            async with self.database.transaction() as db:
                await db.execute(select(1))
            return True
        except Exception as e:
            logger.error("store_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        await self.database.dispose()

    # ── Converters ────────────────────────────────────────

    @staticmethod
    def _row_to_bot(row: BotRow) -> Bot:
        return Bot(
            id=row.id, name=row.name, page_access_token=row.page_access_token,
            platform=row.platform, is_active=row.is_active,
        )

    @staticmethod
    def _row_to_session(row: SessionRow) -> Session:
        try:
            return Session(
                id=row.id, bot_id=row.bot_id, sender_id=row.sender_id,
                current_block_id=row.current_block_id,
                current_card_index=row.current_card_index or 0,
                current_node_id=row.current_node_id,
                current_flow_id=row.current_flow_id,
                context=row.context or {},
                created_at=row.created_at, updated_at=row.updated_at,
            )
        except ValidationError as e:
            raise DataIntegrityError(
                f"Session {row.id} failed validation: {e}",
                bot_id=row.bot_id, sender_id=row.sender_id,
            ) from e

    @staticmethod
    def _row_to_block(row: BlockRow) -> Block:
        return _validate(Block, {
            "id": row.id, "botId": row.bot_id, "name": row.name,
            "groupName": row.group_name, "cards": row.cards, "triggers": row.triggers,
            "isWelcome": row.is_welcome, "isDefaultAnswer": row.is_default_answer,
            "isEnabled": row.is_enabled, "createdAt": row.created_at,
        }, row.bot_id)

    @staticmethod
    def _row_to_flow(row: FlowRow) -> Flow:
        return _validate(Flow, {
            "id": row.id, "botId": row.bot_id, "name": row.name,
            "nodes": row.nodes, "edges": row.edges, "triggers": row.triggers,
            "isDefault": row.is_default, "isActive": row.is_active,
            "createdAt": row.created_at,
        }, row.bot_id)

    @staticmethod
    def _row_to_contact(row: ContactRow) -> Contact:
        return Contact(
            id=row.id, bot_id=row.bot_id, sender_id=row.sender_id, name=row.name,
            profile_pic=row.profile_pic, platform=row.platform,
            message_count=row.message_count,
            first_seen_at=row.first_seen_at, last_seen_at=row.last_seen_at,
        )


def _validate(model, data: dict[str, Any], bot_id: str):
    """Stored editor JSON that no longer matches the model is a data error."""
    try:
        return model.model_validate(data)
    except (ValidationError, ValueError) as e:
        raise DataIntegrityError(
            f"Stored {model.__name__} {data.get('id')} failed validation: {e}",
            bot_id=bot_id,
        ) from e


def _valid_only(convert, rows) -> list:
    """List queries skip rows that fail validation; direct gets raise."""
    records = []
    for row in rows:
        try:
            records.append(convert(row))
        except DataIntegrityError as e:
            logger.warning("invalid_record_skipped", record_id=row.id,
                           bot_id=row.bot_id, error=e.message[:300])
    return records
