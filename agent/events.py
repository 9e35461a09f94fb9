"""
Agent event and task report data types.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from operations import HistoryEntry

from .governor import GovernorState


@dataclass
class AgentEvent:
    """Event emitted during agent execution"""
    type: str  # task_start, text, text_reset, operation_start, operation_result, confirm, error, done
    content: str = ""
    data: Optional[Dict[str, Any]] = None


@dataclass
class TaskReport:
    """Structured summary returned on every terminal path of a task."""
    task_id: str
    task: str
    state: GovernorState
    reason: str
    message: str = ""
    error: Optional[str] = None
    total_operations: int = 0
    read_operations: int = 0
    write_operations: int = 0
    failed_operations: int = 0
    iteration_count: int = 0
    history: List[HistoryEntry] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == GovernorState.COMPLETED

    def summary(self) -> str:
        counts = (
            f"{self.total_operations} operations "
            f"({self.read_operations} read, {self.write_operations} write"
            + (f", {self.failed_operations} failed" if self.failed_operations else "")
            + ")"
        )
        if self.state == GovernorState.COMPLETED:
            return f"Task completed: {self.message}\n{counts}"
        if self.state == GovernorState.STOPPED:
            return f"Task stopped ({self.reason}) after {counts}"
        return f"Task aborted ({self.reason}): {self.error or self.message}\n{counts}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "task": self.task,
            "state": self.state.value,
            "reason": self.reason,
            "message": self.message,
            "error": self.error,
            "total_operations": self.total_operations,
            "read_operations": self.read_operations,
            "write_operations": self.write_operations,
            "failed_operations": self.failed_operations,
            "iteration_count": self.iteration_count,
            "history": [entry.to_dict() for entry in self.history],
        }
