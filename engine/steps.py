"""
Step results — the contract between interpreters and the TurnRunner.

An interpreter never talks to the gateway. Each call to ``step()``
executes one card or node and returns a list of results: zero or more
effects (``Send``, ``Wait``) followed by exactly one transition
(``Goto``, ``AwaitInput``, ``Done``). The runner performs the effects
in order and follows the transition.

Cursors are opaque to the runner; each interpreter defines its own.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from engine.budget import StepBudget
from models.schemas import Session


# ──────────────────────────────────────────────────────
#  Effects
# ──────────────────────────────────────────────────────

@dataclass
class Send:
    """Deliver one outbound message."""
    kind: str               # text | image | card | quick_replies
    payload: Any            # str for text/image, OutboundCard, OutboundQuickReplies
    log_content: str        # what goes into the message log
    message_type: str = "text"

    @classmethod
    def text(cls, text: str) -> "Send":
        return cls(kind="text", payload=text, log_content=text)


@dataclass
class Wait:
    """Pause the turn; optionally show the typing indicator meanwhile."""
    seconds: float
    show_typing: bool = False


# ──────────────────────────────────────────────────────
#  Transitions
# ──────────────────────────────────────────────────────

@dataclass
class Goto:
    """Continue with the card/node at ``cursor``."""
    cursor: Any


@dataclass
class AwaitInput:
    """Send ``prompt`` (if any) and park the session at ``cursor``."""
    cursor: Any
    prompt: Optional[str] = None


@dataclass
class Done:
    """Nothing left to run; the session pointer is cleared."""


Effect = Union[Send, Wait]
Transition = Union[Goto, AwaitInput, Done]
StepResult = Union[Send, Wait, Goto, AwaitInput, Done]


# ──────────────────────────────────────────────────────
#  Interpreter contract
# ──────────────────────────────────────────────────────

class Interpreter(ABC):
    """Shared shape of the block and graph interpreters."""

    handled_by: str = "none"

    @abstractmethod
    async def step(self, cursor: Any, context: dict[str, str],
                   budget: StepBudget) -> list[StepResult]:
        """Execute the card/node at ``cursor``. Must end with a transition."""

    @abstractmethod
    async def resume(self, session: Session, message: str,
                     context: dict[str, str]) -> Transition:
        """Consume the reply to a parked input request."""

    @abstractmethod
    async def commit(self, session: Session, parked: Any,
                     context: dict[str, str]) -> None:
        """Persist the end-of-turn pointer (``parked`` is None when done)."""


def ensure_exhaustive(kinds: type[Enum], handlers: dict, owner: str) -> None:
    """Fail at import time when a card/node type has no handler."""
    missing = {k.value for k in kinds} - {getattr(k, "value", k) for k in handlers}
    if missing:
        raise RuntimeError(f"{owner} has no handler for: {', '.join(sorted(missing))}")
