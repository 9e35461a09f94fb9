"""Operation execution dispatch and the read/write capability boundary."""

import logging
import time
from typing import Any, Dict, List, Optional

from backend import FileStat, FileSystem
from operations import (
    CapabilityViolation,
    Operation,
    OperationKind,
    OperationResult,
    UnknownOperationError,
    catalog_kind,
)
from tools._common import EditorState, ToolResult
from tools.schemas import DISPATCH_TABLE, REQUIRED_PARAMETERS

logger = logging.getLogger(__name__)


class ReadOnlyFileSystem(FileSystem):
    """FileSystem view handed to read implementations. Any mutating call is a violation."""

    def __init__(self, inner: FileSystem, action: Optional[str]):
        self._inner = inner
        self._action = action

    def _deny(self, call: str) -> None:
        raise CapabilityViolation(OperationKind.READ, self._action, f"attempted {call}()")

    def read_file(self, path: str) -> str:
        return self._inner.read_file(path)

    def stat(self, path: str) -> FileStat:
        return self._inner.stat(path)

    def readdir(self, path: str) -> List[str]:
        return self._inner.readdir(path)

    def write_file(self, path: str, content: str) -> None:
        self._deny("write_file")

    def unlink(self, path: str) -> None:
        self._deny("unlink")

    def mkdir(self, path: str) -> None:
        self._deny("mkdir")

    def rmdir(self, path: str) -> None:
        self._deny("rmdir")

    def rename(self, src: str, dst: str) -> None:
        self._deny("rename")


def check_capability(op: Operation) -> None:
    """Reject an operation whose action is not in the catalog of its kind."""
    if op.kind == OperationKind.COMPLETE:
        return
    owner = catalog_kind(op.action)
    if owner is None:
        raise UnknownOperationError(op.kind, op.action)
    if owner != op.kind:
        raise CapabilityViolation(op.kind, op.action, f"'{op.action}' is a {owner.value} action")
    if (op.kind, op.action) not in DISPATCH_TABLE:
        raise UnknownOperationError(op.kind, op.action)


def _missing_parameters(op: Operation) -> List[str]:
    return [name for name in REQUIRED_PARAMETERS.get(op.action, ()) if name not in op.parameters]


def execute_operation(
    op: Operation,
    fs: FileSystem,
    editor: Optional[EditorState] = None,
) -> OperationResult:
    """Execute one operation against the file system collaborator.

    Capability violations and unknown (kind, action) pairs raise. Everything the
    file system or the parameters can get wrong becomes a failed result instead,
    so the planner sees the failure on its next turn.
    """
    start = time.monotonic()

    def _elapsed() -> int:
        return int((time.monotonic() - start) * 1000)

    if op.kind == OperationKind.COMPLETE:
        return OperationResult(
            success=True,
            kind=op.kind,
            payload={"message": op.message},
            duration_ms=_elapsed(),
        )

    check_capability(op)
    impl = DISPATCH_TABLE[(op.kind, op.action)]
    logger.info(f"Executing {op.kind.value} {op.describe()}")

    missing = _missing_parameters(op)
    if missing:
        error = f"Missing required parameter(s) for {op.action}: {', '.join(missing)}"
        logger.warning(error)
        return OperationResult(success=False, kind=op.kind, action=op.action,
                               error=error, duration_ms=_elapsed())

    target_fs: FileSystem = ReadOnlyFileSystem(fs, op.action) if op.kind == OperationKind.READ else fs
    kwargs: Dict[str, Any] = {"editor": editor} if op.kind == OperationKind.READ else {}
    try:
        tool_result: ToolResult = impl(target_fs, dict(op.parameters), **kwargs)
    except (OSError, TypeError, ValueError) as e:
        duration = _elapsed()
        logger.warning(f"{op.describe()} failed after {duration}ms: {e}")
        return OperationResult(success=False, kind=op.kind, action=op.action,
                               error=_describe_error(e), duration_ms=duration)

    duration = _elapsed()
    if tool_result.success:
        logger.info(f"{op.describe()} succeeded in {duration}ms")
    else:
        logger.warning(f"{op.describe()} failed after {duration}ms: {tool_result.error}")
    return OperationResult(
        success=tool_result.success,
        kind=op.kind,
        action=op.action,
        payload=tool_result.payload,
        error=tool_result.error,
        duration_ms=duration,
    )


def _describe_error(e: Exception) -> str:
    if isinstance(e, FileNotFoundError):
        return f"Not found: {e}"
    if isinstance(e, FileExistsError):
        return f"Already exists: {e}"
    if isinstance(e, PermissionError):
        return f"Permission denied: {e}"
    if isinstance(e, IsADirectoryError):
        return f"Is a directory: {e}"
    if isinstance(e, NotADirectoryError):
        return f"Not a directory: {e}"
    return str(e)
