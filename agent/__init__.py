"""
Agent package - the single-operation loop between the planner and the project files.

Modules:
- planner: async planner client (timeout, retries, streaming, catalog negotiation)
- codec: planner text -> Operation, with declared recovery rules
- context: SessionContext and the fold that accumulates results
- guard: duplicate-operation detection
- governor: TaskState and the iteration governor
- prompts: system prompt and per-turn message
- events: AgentEvent and TaskReport
- core: OperationAgent orchestrator
"""

from .core import OperationAgent, AgentBusyError
from .events import AgentEvent, TaskReport
from .planner import PlannerClient, retry_delay_ms
from .codec import parse_operation, operation_from_response, JSON_RECOVERY_RULES, CONTENT_RECOVERY_RULES
from .context import SessionContext, fold
from .guard import is_duplicate, find_duplicate
from .governor import GovernorState, IterationGovernor, TaskState
from .prompts import compose_system_prompt, build_turn_message

__all__ = [
    # Orchestrator
    "OperationAgent",
    "AgentBusyError",

    # Data types
    "AgentEvent",
    "TaskReport",
    "SessionContext",
    "TaskState",
    "GovernorState",

    # Components
    "PlannerClient",
    "retry_delay_ms",
    "parse_operation",
    "operation_from_response",
    "JSON_RECOVERY_RULES",
    "CONTENT_RECOVERY_RULES",
    "fold",
    "is_duplicate",
    "find_duplicate",
    "IterationGovernor",

    # Prompt system
    "compose_system_prompt",
    "build_turn_message",
]
