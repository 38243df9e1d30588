"""
Inbound jobs and per-session mailboxes.

Every inbound message becomes an InboundJob addressed to one session
key ``(bot_id, sender_id)``. Jobs for the same key land in the same
bounded mailbox and are consumed by a single worker, in arrival order.

Job Schema:
  {
      "job_id":      unique job identifier,
      "bot_id":      bot the message was sent to,
      "sender_id":   platform user id (PSID on Messenger),
      "message":     text, or a quick-reply / postback payload,
      "platform":    facebook | console | ...,
      "received_at": ISO timestamp when the job was created,
  }
"""
from __future__ import annotations

import asyncio
import uuid
import structlog
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from models.schemas import Bot, ExecutionResult

logger = structlog.get_logger()

SessionKey = tuple[str, str]


# ──────────────────────────────────────────────────────────────
#  Job Model
# ──────────────────────────────────────────────────────────────

@dataclass
class InboundJob:
    """One inbound message waiting for its turn."""
    bot: Bot
    sender_id: str
    message: str
    platform: str = "facebook"
    name: Optional[str] = None
    profile_pic: Optional[str] = None
    job_id: str = ""
    received_at: str = ""
    future: Optional[asyncio.Future] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if not self.job_id:
            self.job_id = f"job_{uuid.uuid4().hex[:12]}"
        if not self.received_at:
            self.received_at = datetime.now(timezone.utc).isoformat()

    @property
    def session_key(self) -> SessionKey:
        return (self.bot.id, self.sender_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "bot_id": self.bot.id,
            "sender_id": self.sender_id,
            "message": self.message,
            "platform": self.platform,
            "received_at": self.received_at,
        }

    def resolve(self, result: ExecutionResult) -> None:
        if self.future is not None and not self.future.done():
            self.future.set_result(result)

    def fail(self, exc: BaseException) -> None:
        if self.future is not None and not self.future.done():
            self.future.set_exception(exc)

    def cancel(self) -> None:
        if self.future is not None and not self.future.done():
            self.future.cancel()


# ──────────────────────────────────────────────────────────────
#  Mailbox
# ──────────────────────────────────────────────────────────────

class SessionMailbox:
    """
    Bounded FIFO for one session key.
    ``put`` waits while the mailbox is full, pushing back on the sender.
    """

    def __init__(self, key: SessionKey, maxsize: int = 100):
        self.key = key
        self._queue: asyncio.Queue[InboundJob] = asyncio.Queue(maxsize=maxsize)

    async def put(self, job: InboundJob) -> None:
        await self._queue.put(job)
        logger.debug("job_queued", job_id=job.job_id, bot_id=self.key[0],
                     sender_id=self.key[1], depth=self._queue.qsize())

    async def get(self, timeout: float) -> Optional[InboundJob]:
        """Next job, or None after ``timeout`` seconds with nothing queued."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def task_done(self) -> None:
        self._queue.task_done()

    def drain(self) -> list[InboundJob]:
        jobs = []
        while not self._queue.empty():
            jobs.append(self._queue.get_nowait())
        return jobs

    def empty(self) -> bool:
        return self._queue.empty()

    def __len__(self) -> int:
        return self._queue.qsize()
