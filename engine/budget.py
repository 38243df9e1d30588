"""
Per-turn execution budget shared by the block and graph interpreters.
"""
from __future__ import annotations

from engine.errors import ExecutionLimitError

DEFAULT_MAX_STEPS = 100


class StepBudget:
    """
    Counts interpreter steps within a single turn.

    ``tick()`` is called once per card or node executed. ``enter_block()``
    records every block entered at its first card; entering the same one
    twice in a turn means a goToBlock cycle.
    """

    def __init__(self, max_steps: int = DEFAULT_MAX_STEPS):
        self.max_steps = max_steps
        self.steps = 0
        self.visited_blocks: set[str] = set()

    def tick(self) -> None:
        self.steps += 1
        if self.steps > self.max_steps:
            raise ExecutionLimitError(
                f"Execution exceeded {self.max_steps} steps", steps=self.steps,
            )

    def enter_block(self, block_id: str) -> None:
        if block_id in self.visited_blocks:
            raise ExecutionLimitError(
                f"Block {block_id} entered twice in one turn", steps=self.steps,
            )
        self.visited_blocks.add(block_id)

    @property
    def remaining(self) -> int:
        return max(self.max_steps - self.steps, 0)
