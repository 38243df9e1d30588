"""
Error taxonomy for the execution engine.

Everything the engine raises derives from ``EngineError`` so the
orchestrator can convert it into a user-facing reply at one boundary.
"""
from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base class. ``bot_id``/``sender_id`` are filled in when known."""

    def __init__(self, message: str, bot_id: Optional[str] = None,
                 sender_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.bot_id = bot_id
        self.sender_id = sender_id


class ConfigurationError(EngineError):
    """The bot has nothing runnable: no block, no flow, or a flow without a start node."""


class DataIntegrityError(EngineError):
    """A stored block, flow or session does not match the model."""


class ExecutionLimitError(EngineError):
    """A turn exceeded its step budget or revisited a block."""

    def __init__(self, message: str, steps: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.steps = steps


class TransientDeliveryError(EngineError):
    """The messaging gateway could not deliver. Logged, never fatal."""

    def __init__(self, message: str, recipient_id: Optional[str] = None,
                 retryable: bool = True, **kwargs):
        super().__init__(message, **kwargs)
        self.recipient_id = recipient_id
        self.retryable = retryable


class AnalyticsError(EngineError):
    """Message log or daily counter write failed. Logged, never fatal."""
