"""
Operation protocol data model shared by the agent loop and the executor.

An operation is the single unit of work the planner asks for on each turn:
a `read` (information gathering), a `write` (file system mutation) or a
`complete` (task finished). The read and write catalogs are fixed and disjoint.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class OperationKind(str, Enum):
    READ = "read"
    WRITE = "write"
    COMPLETE = "complete"


READ_ACTIONS = frozenset({
    "read_file",
    "list_files",
    "get_file_structure",
    "search_in_files",
    "get_project_info",
    "get_current_file",
})

WRITE_ACTIONS = frozenset({
    "create_file",
    "edit_file",
    "delete_file",
    "create_directory",
    "delete_directory",
    "move_file",
})

# Parameters that name a location in the virtual file system
PATH_PARAMETERS = ("file_path", "directory_path", "source_path", "target_path")

EDIT_TYPES = ("replace", "append")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def catalog_kind(action: Optional[str]) -> Optional[OperationKind]:
    """Return the kind whose catalog contains `action`, or None."""
    if action in READ_ACTIONS:
        return OperationKind.READ
    if action in WRITE_ACTIONS:
        return OperationKind.WRITE
    return None


# ============================================================
# Errors
# ============================================================

class AgentError(Exception):
    """Base class for task-fatal agent errors"""
    pass


class ProtocolError(AgentError):
    """Planner output could not be recovered into an operation."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class CapabilityViolation(AgentError):
    """An operation tried to cross the read/write capability boundary."""

    def __init__(self, kind: Any, action: Optional[str], detail: str = ""):
        kind_value = kind.value if isinstance(kind, OperationKind) else str(kind)
        message = f"Capability violation: '{action}' is not permitted under type '{kind_value}'"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.kind = kind
        self.action = action


class UnknownOperationError(AgentError):
    """(kind, action) pair missing from the dispatch table."""

    def __init__(self, kind: Any, action: Optional[str]):
        kind_value = kind.value if isinstance(kind, OperationKind) else str(kind)
        super().__init__(f"No executor registered for ({kind_value}, {action})")
        self.kind = kind
        self.action = action


class DuplicateOperationError(AgentError):
    """The planner repeated an operation already present in the recent history."""

    def __init__(self, operation: "Operation", previous: "HistoryEntry"):
        super().__init__(
            f"Duplicate operation: {operation.describe()} repeats operation "
            f"#{previous.sequence_number} ({previous.operation.describe()})"
        )
        self.operation = operation
        self.previous = previous


# ============================================================
# Data model
# ============================================================

@dataclass(frozen=True)
class Operation:
    """A parsed planner operation."""
    kind: OperationKind
    action: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    message: Optional[str] = None  # required for COMPLETE

    def target_paths(self) -> List[str]:
        """Values of the path-like parameters, in declaration order."""
        paths = []
        for key in PATH_PARAMETERS:
            value = self.parameters.get(key)
            if isinstance(value, str) and value.strip():
                paths.append(value)
        return paths

    def describe(self) -> str:
        if self.kind == OperationKind.COMPLETE:
            return "complete"
        targets = self.target_paths()
        return f"{self.action}({', '.join(targets)})" if targets else f"{self.action}()"

    def to_dict(self) -> Dict[str, Any]:
        if self.kind == OperationKind.COMPLETE:
            return {"type": self.kind.value, "message": self.message, "reasoning": self.reasoning}
        return {
            "type": self.kind.value,
            "action": self.action,
            "parameters": dict(self.parameters),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class OperationResult:
    """Normalized result envelope produced by the executor. Never mutated."""
    success: bool
    kind: OperationKind
    action: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: int = 0
    completed_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "type": self.kind.value,
            "action": self.action,
            "payload": self.payload,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True)
class HistoryEntry:
    """One executed turn in the audit trail."""
    sequence_number: int
    operation: Operation
    result: OperationResult
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "operation": self.operation.to_dict(),
            "result": self.result.to_dict(),
            "timestamp": self.timestamp,
        }
