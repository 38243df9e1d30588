"""
Messaging Gateway — base infrastructure for outbound delivery.

Provides:
- CircuitBreaker: failure-counting breaker with half-open probe
- GatewayMetrics: send/fail/latency tracking
- MessagingGateway: abstract base wrapping every send with the breaker
  and metrics, and turning any failure into TransientDeliveryError

Delivery is best effort: the engine logs a TransientDeliveryError and
carries on with the next card or node.
"""
from __future__ import annotations

import abc
import time
import structlog
from collections import deque
from typing import Any, Awaitable, Callable

from engine.errors import TransientDeliveryError
from models.schemas import Bot, OutboundCard, OutboundQuickReplies

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  CIRCUIT BREAKER
# ══════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Synchronous circuit breaker with failure counting.

    closed → open (after threshold failures) → half_open (after timeout) →
    closed (on success) or open (on failure).
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = "closed"
        self._failure_count = 0
        self._opened_at: float = 0.0
        self._total_failures = 0
        self._total_successes = 0

    @property
    def state(self) -> str:
        if self._state == "open":
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                return "half_open"
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    def record_failure(self):
        self._total_failures += 1
        self._failure_count += 1
        if self.state == "half_open" or self._failure_count >= self.failure_threshold:
            self._open()

    def record_success(self):
        self._total_successes += 1
        if self.state == "half_open":
            self._close()
        else:
            self._failure_count = 0

    def _open(self):
        self._state = "open"
        self._opened_at = time.monotonic()
        logger.warning("circuit_opened", failures=self._failure_count)

    def _close(self):
        self._state = "closed"
        self._failure_count = 0

    def reset(self):
        self._close()

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "failure_count": self._failure_count,
            "total_failures": self._total_failures,
            "total_successes": self._total_successes,
        }


# ══════════════════════════════════════════════════════════════
#  GATEWAY METRICS
# ══════════════════════════════════════════════════════════════

class GatewayMetrics:
    """Tracks send, failure and latency counts for one gateway."""

    def __init__(self, gateway: str, window: int = 100):
        self.gateway = gateway
        self.messages_sent: int = 0
        self.messages_failed: int = 0
        self._latencies: deque[float] = deque(maxlen=window)
        self._errors: deque[str] = deque(maxlen=10)

    def record_send(self, latency_ms: float = 0.0):
        self.messages_sent += 1
        if latency_ms > 0:
            self._latencies.append(latency_ms)

    def record_failure(self, error: str = ""):
        self.messages_failed += 1
        if error:
            self._errors.append(error)

    @property
    def avg_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    @property
    def failure_rate(self) -> float:
        total = self.messages_sent + self.messages_failed
        return self.messages_failed / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "gateway": self.gateway,
            "sent": self.messages_sent,
            "failed": self.messages_failed,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "failure_rate": round(self.failure_rate, 4),
            "recent_errors": list(self._errors),
        }


# ══════════════════════════════════════════════════════════════
#  MESSAGING GATEWAY: Abstract Base
# ══════════════════════════════════════════════════════════════

class MessagingGateway(abc.ABC):
    """
    Base class for all outbound gateways.

    Subclasses implement the ``_do_*`` hooks. The public ``send_*``
    methods wrap each hook with the bot's circuit breaker and the
    gateway metrics and raise TransientDeliveryError on any failure.

    Breakers are kept per bot, so one page with a revoked token does not
    stop delivery for the others. Failures raised with ``retryable=False``
    (the platform rejected the request) are counted in the metrics but
    never trip a breaker.
    """

    name: str = "gateway"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._breakers: dict[str, CircuitBreaker] = {}
        self._metrics = GatewayMetrics(self.name)

    def breaker_for(self, bot_id: str) -> CircuitBreaker:
        breaker = self._breakers.get(bot_id)
        if breaker is None:
            breaker = CircuitBreaker(self._failure_threshold, self._recovery_timeout)
            self._breakers[bot_id] = breaker
        return breaker

    # ── Abstract hooks ────────────────────────────────────────

    @abc.abstractmethod
    async def _do_send_text(self, bot: Bot, recipient_id: str, text: str) -> None:
        ...

    @abc.abstractmethod
    async def _do_send_image(self, bot: Bot, recipient_id: str, image_url: str) -> None:
        ...

    @abc.abstractmethod
    async def _do_send_card(self, bot: Bot, recipient_id: str, card: OutboundCard) -> None:
        ...

    @abc.abstractmethod
    async def _do_send_quick_replies(self, bot: Bot, recipient_id: str,
                                     replies: OutboundQuickReplies) -> None:
        ...

    @abc.abstractmethod
    async def _do_send_typing(self, bot: Bot, recipient_id: str, on: bool) -> None:
        ...

    # ── Public send ───────────────────────────────────────────

    async def send_text(self, bot: Bot, recipient_id: str, text: str) -> None:
        await self._guarded(bot, "text", recipient_id,
                            lambda: self._do_send_text(bot, recipient_id, text))

    async def send_image(self, bot: Bot, recipient_id: str, image_url: str) -> None:
        await self._guarded(bot, "image", recipient_id,
                            lambda: self._do_send_image(bot, recipient_id, image_url))

    async def send_card(self, bot: Bot, recipient_id: str, card: OutboundCard) -> None:
        await self._guarded(bot, "card", recipient_id,
                            lambda: self._do_send_card(bot, recipient_id, card))

    async def send_quick_replies(self, bot: Bot, recipient_id: str,
                                 replies: OutboundQuickReplies) -> None:
        await self._guarded(bot, "quick_replies", recipient_id,
                            lambda: self._do_send_quick_replies(bot, recipient_id, replies))

    async def send_typing_indicator(self, bot: Bot, recipient_id: str, on: bool) -> None:
        await self._guarded(bot, "typing", recipient_id,
                            lambda: self._do_send_typing(bot, recipient_id, on))

    async def _guarded(self, bot: Bot, kind: str, recipient_id: str,
                       send: Callable[[], Awaitable[None]]) -> None:
        breaker = self.breaker_for(bot.id)
        if breaker.is_open:
            self._metrics.record_failure("circuit_open")
            raise TransientDeliveryError(
                f"Circuit breaker open for {self.name} (bot {bot.id})",
                recipient_id=recipient_id, bot_id=bot.id,
            )

        start = time.monotonic()
        try:
            await send()
        except TransientDeliveryError as e:
            if e.retryable:
                breaker.record_failure()
            self._metrics.record_failure(str(e))
            raise
        except Exception as e:
            breaker.record_failure()
            self._metrics.record_failure(str(e))
            raise TransientDeliveryError(
                f"{self.name} {kind} delivery failed: {e}",
                recipient_id=recipient_id, bot_id=bot.id,
            ) from e

        breaker.record_success()
        self._metrics.record_send((time.monotonic() - start) * 1000)

    # ── Health ────────────────────────────────────────────────

    async def health_check(self) -> dict[str, Any]:
        return {
            "gateway": self.name,
            "circuit_breakers": {bot_id: b.stats for bot_id, b in self._breakers.items()},
            "metrics": self._metrics.to_dict(),
        }

    async def shutdown(self) -> None:
        pass
