"""
Session Dispatcher — one worker task per active session.

  submit(bot, sender, msg) ──▶ mailbox[(bot_id, sender_id)] ──▶ worker ──▶ Orchestrator
                                 (bounded asyncio.Queue)        (one per key)

Turns of the same session run strictly one after another, so a turn
always reads the session the previous turn committed. Different
sessions run concurrently. A worker exits after ``idle_timeout``
seconds with an empty mailbox; the next message starts a new one.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from config.settings import QueueConfig
from job_queue.message_queue import InboundJob, SessionKey, SessionMailbox
from models.schemas import Bot, ExecutionResult

logger = structlog.get_logger()


class SessionDispatcher:
    """
    Serializes turns per session in front of the orchestrator.

    Usage:
        dispatcher = SessionDispatcher(orchestrator)
        future = await dispatcher.submit(bot, "psid-1", "hello")
        result = await future
        await dispatcher.stop()
    """

    def __init__(
        self,
        orchestrator,  # type: core.orchestrator.Orchestrator
        mailbox_size: int = 100,
        idle_timeout: float = 300.0,
    ):
        self.orchestrator = orchestrator
        self.mailbox_size = mailbox_size
        self.idle_timeout = idle_timeout
        self._mailboxes: dict[SessionKey, SessionMailbox] = {}
        self._workers: dict[SessionKey, asyncio.Task] = {}

    @classmethod
    def from_config(cls, orchestrator, config: QueueConfig) -> "SessionDispatcher":
        return cls(orchestrator, mailbox_size=config.mailbox_size,
                   idle_timeout=config.idle_timeout_seconds)

    async def submit(self, bot: Bot, sender_id: str, message: str,
                     platform: str = "facebook", name: str = None,
                     profile_pic: str = None) -> asyncio.Future:
        """Queue a message; the returned future resolves to its ExecutionResult."""
        job = InboundJob(bot=bot, sender_id=sender_id, message=message,
                         platform=platform, name=name, profile_pic=profile_pic)
        job.future = asyncio.get_running_loop().create_future()

        mailbox = self._mailboxes.get(job.session_key)
        if mailbox is None:
            mailbox = self._start_worker(job.session_key)
        await mailbox.put(job)
        return job.future

    async def dispatch(self, bot: Bot, sender_id: str, message: str,
                       **kwargs) -> ExecutionResult:
        """submit() and wait for the turn to finish."""
        future = await self.submit(bot, sender_id, message, **kwargs)
        return await future

    @property
    def active_sessions(self) -> int:
        return len(self._workers)

    def _start_worker(self, key: SessionKey) -> SessionMailbox:
        mailbox = SessionMailbox(key, maxsize=self.mailbox_size)
        self._mailboxes[key] = mailbox
        self._workers[key] = asyncio.create_task(self._run_session(mailbox))
        logger.debug("session_worker_started", bot_id=key[0], sender_id=key[1])
        return mailbox

    async def _run_session(self, mailbox: SessionMailbox):
        key = mailbox.key
        job = None
        try:
            while True:
                job = await mailbox.get(timeout=self.idle_timeout)
                if job is None:
                    if mailbox.empty():
                        break
                    continue
                await self._handle_job(job)
                mailbox.task_done()
        finally:
            if job is not None:
                job.cancel()

            # No await between the emptiness check and here: a concurrent
            # submit() either saw this mailbox before or will create a new one
            if self._mailboxes.get(key) is mailbox:
                del self._mailboxes[key]
                self._workers.pop(key, None)
            for job in mailbox.drain():
                job.cancel()
            logger.debug("session_worker_stopped", bot_id=key[0], sender_id=key[1])

    async def _handle_job(self, job: InboundJob):
        logger.info("processing_job", job_id=job.job_id, bot_id=job.bot.id,
                    sender_id=job.sender_id)
        try:
            result = await self.orchestrator.execute_flow(
                job.bot, job.sender_id, job.message, platform=job.platform,
                name=job.name, profile_pic=job.profile_pic,
            )
        except Exception as e:
            logger.error("job_handler_error", job_id=job.job_id, error=str(e))
            job.fail(e)
            return
        job.resolve(result)

    async def stop(self):
        """Cancel every worker; queued jobs are cancelled too."""
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        for task in workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers.clear()
        self._mailboxes.clear()
        logger.info("session_dispatcher_stopped", workers=len(workers))
