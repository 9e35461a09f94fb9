"""
Iteration governor: a soft cap on turns, escalated to a human operator when exceeded.

RUNNING -> AWAITING_CONFIRMATION -> RUNNING (cap extended) | STOPPED
RUNNING -> COMPLETED | ABORTED | STOPPED (pause)
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, Optional

from config import app_config

logger = logging.getLogger(__name__)

# Operator decision: True continues, False stops
ConfirmCallback = Callable[[str], Awaitable[bool]]


class GovernorState(str, Enum):
    RUNNING = "running"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    STOPPED = "stopped"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (GovernorState.STOPPED, GovernorState.COMPLETED, GovernorState.ABORTED)


_ALLOWED: Dict[GovernorState, FrozenSet[GovernorState]] = {
    GovernorState.RUNNING: frozenset({
        GovernorState.AWAITING_CONFIRMATION,
        GovernorState.COMPLETED,
        GovernorState.ABORTED,
        GovernorState.STOPPED,
    }),
    GovernorState.AWAITING_CONFIRMATION: frozenset({
        GovernorState.RUNNING,
        GovernorState.STOPPED,
        GovernorState.ABORTED,
    }),
    GovernorState.STOPPED: frozenset(),
    GovernorState.COMPLETED: frozenset(),
    GovernorState.ABORTED: frozenset(),
}


@dataclass
class TaskState:
    """Per-task loop state. Each task gets its own instance."""
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    paused: bool = False
    executing: bool = False
    iteration_cap: int = field(default_factory=lambda: app_config.iteration_cap)
    iteration_count: int = 0
    state: GovernorState = GovernorState.RUNNING


class IterationGovernor:
    """Counts turns for one TaskState and owns its state transitions."""

    def __init__(
        self,
        task: TaskState,
        confirm: Optional[ConfirmCallback] = None,
        increment: Optional[int] = None,
    ):
        self.task = task
        self.confirm = confirm
        self.increment = increment if increment is not None else app_config.iteration_increment

    @property
    def state(self) -> GovernorState:
        return self.task.state

    def _transition(self, new_state: GovernorState) -> None:
        old = self.task.state
        if new_state not in _ALLOWED[old]:
            raise ValueError(f"Illegal governor transition {old.value} -> {new_state.value}")
        self.task.state = new_state
        logger.info(f"Task {self.task.task_id}: {old.value} -> {new_state.value}")

    async def begin_turn(self) -> bool:
        """Count one turn. Returns False when the task must stop instead of running it.

        Past the cap the loop suspends on the operator's decision. There is no
        timeout here: the call blocks until confirm() returns or is cancelled.
        """
        if self.task.state != GovernorState.RUNNING:
            return False

        self.task.iteration_count += 1
        if self.task.iteration_count <= self.task.iteration_cap:
            return True

        self._transition(GovernorState.AWAITING_CONFIRMATION)
        done = self.task.iteration_count - 1
        message = (
            f"I've completed {done} operations (limit {self.task.iteration_cap}). "
            f"Continue for up to {self.increment} more?"
        )
        if self.confirm is None:
            logger.info("No operator available to confirm; stopping")
            self._transition(GovernorState.STOPPED)
            return False

        try:
            answer = await self.confirm(message)
        except asyncio.CancelledError:
            self._transition(GovernorState.STOPPED)
            raise

        if answer:
            self.task.iteration_cap += self.increment
            logger.info(f"Operator extended iteration cap to {self.task.iteration_cap}")
            self._transition(GovernorState.RUNNING)
            return True

        self._transition(GovernorState.STOPPED)
        return False

    def complete(self) -> None:
        self._transition(GovernorState.COMPLETED)

    def abort(self) -> None:
        if not self.task.state.is_terminal:
            self._transition(GovernorState.ABORTED)

    def stop(self) -> None:
        if not self.task.state.is_terminal:
            self._transition(GovernorState.STOPPED)
