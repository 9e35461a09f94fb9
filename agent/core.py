"""
OperationAgent: the single-operation loop between the planner and the project files.

Flow per turn:
1. Honour a pending pause, then let the governor count the turn (and ask the operator past the cap)
2. Send the system prompt plus the serialized context/history to the planner
3. Parse the reply into exactly one operation
4. Reject repeats of a recent operation
5. Execute it, record it in the history, fold the result into the context
The loop ends on complete, pause, operator stop, or a task-fatal error. Every exit returns a TaskReport.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from backend import FileSystem
from bedrock_service import PlannerError
from config import app_config
from operations import (
    AgentError,
    CapabilityViolation,
    DuplicateOperationError,
    HistoryEntry,
    Operation,
    OperationKind,
    ProtocolError,
    UnknownOperationError,
)
from tools import EditorState, execute_operation

from .codec import operation_from_response
from .context import SessionContext, fold
from .events import AgentEvent, TaskReport
from .governor import ConfirmCallback, IterationGovernor, TaskState
from .guard import find_duplicate
from .planner import PlannerClient
from .prompts import build_turn_message, compose_system_prompt

logger = logging.getLogger(__name__)

EventCallback = Callable[[AgentEvent], Awaitable[None]]


class AgentBusyError(AgentError):
    """A task was submitted while another one is still executing."""

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} is still executing; wait for it to finish or pause it")
        self.task_id = task_id


async def _ignore_event(event: AgentEvent) -> None:
    return None


class OperationAgent:
    """Drives one task at a time through the planner/executor loop."""

    def __init__(
        self,
        planner: PlannerClient,
        fs: FileSystem,
        editor: Optional[EditorState] = None,
        iteration_cap: Optional[int] = None,
        iteration_increment: Optional[int] = None,
        duplicate_window: Optional[int] = None,
    ):
        self.planner = planner
        self.fs = fs
        self.editor = editor or EditorState()
        self.iteration_cap = iteration_cap if iteration_cap is not None else app_config.iteration_cap
        self.iteration_increment = (
            iteration_increment if iteration_increment is not None else app_config.iteration_increment
        )
        self.duplicate_window = duplicate_window if duplicate_window is not None else app_config.duplicate_window
        self.system_prompt = compose_system_prompt(planner.tool_negotiation)
        self._task_state: Optional[TaskState] = None

    @property
    def is_executing(self) -> bool:
        return self._task_state is not None and self._task_state.executing

    @property
    def task_state(self) -> Optional[TaskState]:
        return self._task_state

    def pause(self) -> None:
        """Request a pause. Cancels an in-flight planner request, never an operation mid-execution."""
        if self.is_executing:
            logger.info(f"Pause requested for task {self._task_state.task_id}")
            self._task_state.paused = True
            self.planner.cancel()

    async def run(
        self,
        task: str,
        on_event: Optional[EventCallback] = None,
        confirm: Optional[ConfirmCallback] = None,
    ) -> TaskReport:
        """Run `task` to a terminal state and return its report.

        Raises AgentBusyError if a task is already executing on this agent.
        """
        if self.is_executing:
            raise AgentBusyError(self._task_state.task_id)

        state = TaskState(iteration_cap=self.iteration_cap, executing=True)
        self._task_state = state
        emit = on_event or _ignore_event

        async def _confirm(message: str) -> bool:
            await emit(AgentEvent(type="confirm", content=message))
            return bool(await confirm(message))

        governor = IterationGovernor(state, _confirm if confirm else None, self.iteration_increment)
        run = _TaskRun(self, task, state, governor, emit)

        logger.info(f"Task {state.task_id} started: {task[:120]!r}")
        await emit(AgentEvent(type="task_start", content=task, data={"task_id": state.task_id}))
        try:
            report = await run.execute()
        except asyncio.CancelledError:
            governor.stop()
            raise
        except Exception as e:
            logger.exception(f"Task {state.task_id} failed unexpectedly")
            governor.abort()
            report = run.report("error", error=f"{type(e).__name__}: {e}")
        finally:
            state.executing = False

        logger.info(f"Task {state.task_id} finished: {report.state.value} ({report.reason})")
        await emit(AgentEvent(type="done", content=report.summary(), data=report.to_dict()))
        return report


class _TaskRun:
    """State of one run(): the context and history it owns exclusively."""

    def __init__(
        self,
        agent: OperationAgent,
        task: str,
        state: TaskState,
        governor: IterationGovernor,
        emit: EventCallback,
    ):
        self.agent = agent
        self.task = task
        self.state = state
        self.governor = governor
        self.emit = emit
        self.context = SessionContext()
        self.history: List[HistoryEntry] = []

    def report(self, reason: str, message: str = "", error: Optional[str] = None) -> TaskReport:
        stats = self.context.stats
        return TaskReport(
            task_id=self.state.task_id,
            task=self.task,
            state=self.state.state,
            reason=reason,
            message=message,
            error=error,
            total_operations=stats.total,
            read_operations=stats.reads,
            write_operations=stats.writes,
            failed_operations=stats.failures,
            iteration_count=self.state.iteration_count,
            history=list(self.history),
        )

    def _abort(self, reason: str, error: str) -> TaskReport:
        logger.error(f"Task {self.state.task_id} aborted ({reason}): {error}")
        self.governor.abort()
        return self.report(reason, error=error)

    async def _stream_sink(self, delta: Optional[str]) -> None:
        if delta is None:
            await self.emit(AgentEvent(type="text_reset"))
        else:
            await self.emit(AgentEvent(type="text", content=delta))

    def _messages(self) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": self.agent.system_prompt},
            {"role": "user", "content": build_turn_message(self.task, self.context, self.history)},
        ]

    def _paused(self) -> TaskReport:
        self.governor.stop()
        return self.report("paused", message="Task paused by user")

    async def execute(self) -> TaskReport:
        loop = asyncio.get_running_loop()

        while True:
            if self.state.paused:
                return self._paused()

            if not await self.governor.begin_turn():
                done = self.state.iteration_count - 1
                return self.report("iteration_limit", message=f"Stopped after {done} operations")
            if self.state.paused:
                return self._paused()

            try:
                response = await self.agent.planner.next_response(self._messages(), stream_sink=self._stream_sink)
            except PlannerError as e:
                if self.state.paused:
                    return self._paused()
                return self._abort("planner_error", str(e))
            if self.state.paused:
                return self._paused()

            try:
                op = operation_from_response(response)
            except ProtocolError as e:
                await self.emit(AgentEvent(type="text_reset"))
                excerpt = e.raw_text[:500]
                return self._abort("protocol_error", f"{e}. Planner output: {excerpt!r}")

            if op.kind == OperationKind.COMPLETE:
                return await self._complete(op)

            previous = find_duplicate(op, self.history, self.agent.duplicate_window)
            if previous is not None:
                return self._abort("duplicate_operation", str(DuplicateOperationError(op, previous)))

            await self.emit(AgentEvent(
                type="operation_start",
                content=op.describe(),
                data=op.to_dict(),
            ))
            try:
                result = await loop.run_in_executor(
                    None, execute_operation, op, self.agent.fs, self.agent.editor
                )
            except CapabilityViolation as e:
                return self._abort("capability_violation", str(e))
            except UnknownOperationError as e:
                return self._abort("unknown_operation", str(e))

            entry = HistoryEntry(sequence_number=len(self.history) + 1, operation=op, result=result)
            self.history.append(entry)
            self.context = fold(self.context, op, result)
            await self.emit(AgentEvent(
                type="operation_result",
                content=op.describe(),
                data=entry.to_dict(),
            ))

    async def _complete(self, op: Operation) -> TaskReport:
        result = execute_operation(op, self.agent.fs, self.agent.editor)
        self.history.append(HistoryEntry(sequence_number=len(self.history) + 1, operation=op, result=result))
        self.governor.complete()
        return self.report("completed", message=op.message or "")

