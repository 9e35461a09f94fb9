"""
Session context and the fold that accumulates operation results into it.
The context is what the planner is told it already knows on its next turn.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from backend import is_ancestor, normalize_path
from operations import Operation, OperationKind, OperationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnownFile:
    path: str
    content: str
    read_at: str


@dataclass(frozen=True)
class DirectoryListing:
    path: str
    entries: Tuple[Dict[str, Any], ...]
    listed_at: str


@dataclass(frozen=True)
class WrittenFile:
    """A path this task has changed (created, edited, deleted or moved)."""
    path: str
    action: str
    written_at: str
    content_length: Optional[int] = None


@dataclass(frozen=True)
class OperationStats:
    total: int = 0
    reads: int = 0
    writes: int = 0
    failures: int = 0


@dataclass(frozen=True)
class SessionContext:
    """Everything learned so far in one task. Replaced, never mutated, by fold()."""
    project_info: Optional[Dict[str, Any]] = None
    file_structure: Optional[str] = None
    structure_read_at: Optional[str] = None
    known_files: Dict[str, KnownFile] = field(default_factory=dict)
    directory_listings: Dict[str, DirectoryListing] = field(default_factory=dict)
    search_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    written_files: Dict[str, WrittenFile] = field(default_factory=dict)
    stats: OperationStats = field(default_factory=OperationStats)

    def knows_file(self, path: str) -> bool:
        return normalize_path(path) in self.known_files

    def has_listing(self, path: str) -> bool:
        return normalize_path(path) in self.directory_listings


def search_key(query: str, file_pattern: Optional[str]) -> str:
    return f"{query} [{file_pattern}]" if file_pattern else query


def _bump_stats(stats: OperationStats, op: Operation, result: OperationResult) -> OperationStats:
    return OperationStats(
        total=stats.total + 1,
        reads=stats.reads + (1 if op.kind == OperationKind.READ else 0),
        writes=stats.writes + (1 if op.kind == OperationKind.WRITE else 0),
        failures=stats.failures + (0 if result.success else 1),
    )


def _param_path(op: Operation, result: OperationResult, name: str) -> Optional[str]:
    value = (result.payload or {}).get(name) or op.parameters.get(name)
    return normalize_path(value) if isinstance(value, str) and value.strip() else None


def _affected_paths(op: Operation, result: OperationResult) -> List[Tuple[str, bool]]:
    """(path, includes_descendants) pairs touched by a write."""
    if op.action == "move_file":
        pairs = []
        for name in ("source_path", "target_path"):
            path = _param_path(op, result, name)
            if path:
                pairs.append((path, True))
        return pairs
    if op.action == "delete_directory":
        path = _param_path(op, result, "directory_path")
        return [(path, True)] if path else []
    name = "directory_path" if op.action == "create_directory" else "file_path"
    path = _param_path(op, result, name)
    return [(path, False)] if path else []


def _fold_read(context: SessionContext, op: Operation, result: OperationResult) -> SessionContext:
    payload = result.payload or {}
    when = result.completed_at

    if op.action in ("read_file", "get_current_file"):
        path = normalize_path(payload.get("file_path") or op.parameters.get("file_path", "/"))
        known = dict(context.known_files)
        known[path] = KnownFile(path=path, content=payload.get("content", ""), read_at=when)
        return replace(context, known_files=known)

    if op.action == "list_files":
        path = normalize_path(payload.get("directory_path") or op.parameters.get("directory_path") or "/")
        listings = dict(context.directory_listings)
        entries = tuple(dict(e) for e in payload.get("files", []))
        listings[path] = DirectoryListing(path=path, entries=entries, listed_at=when)
        return replace(context, directory_listings=listings)

    if op.action == "get_file_structure":
        return replace(context, file_structure=payload.get("structure", ""), structure_read_at=when)

    if op.action == "get_project_info":
        return replace(context, project_info=dict(payload))

    if op.action == "search_in_files":
        searches = dict(context.search_results)
        key = search_key(payload.get("query", op.parameters.get("query", "")), payload.get("file_pattern"))
        searches[key] = dict(payload)
        return replace(context, search_results=searches)

    return context


def _fold_write(context: SessionContext, op: Operation, result: OperationResult) -> SessionContext:
    known = dict(context.known_files)
    listings = dict(context.directory_listings)
    written = dict(context.written_files)
    content_length = (result.payload or {}).get("content_length")

    for path, with_descendants in _affected_paths(op, result):
        known.pop(path, None)
        for listed in list(listings):
            if listed == path or is_ancestor(listed, path):
                del listings[listed]
        if with_descendants:
            for cached in [p for p in known if is_ancestor(path, p)]:
                del known[cached]
            for listed in [p for p in listings if is_ancestor(path, p)]:
                del listings[listed]
        written[path] = WrittenFile(
            path=path,
            action=op.action,
            written_at=result.completed_at,
            content_length=content_length if op.action in ("create_file", "edit_file") else None,
        )

    # Search hits quote file contents, which may have just changed
    return replace(
        context,
        known_files=known,
        directory_listings=listings,
        written_files=written,
        search_results={},
    )


def fold(context: SessionContext, op: Operation, result: OperationResult) -> SessionContext:
    """Return a new context with `result` folded in. `context` itself is left untouched.

    Failed results only move the counters. A successful write to P drops the cached
    content of P and every cached listing of a directory containing P.
    """
    if op.kind == OperationKind.COMPLETE:
        return context

    updated = replace(context, stats=_bump_stats(context.stats, op, result))
    if not result.success:
        return updated

    if op.kind == OperationKind.READ:
        return _fold_read(updated, op, result)

    folded = _fold_write(updated, op, result)
    dropped = len(context.known_files) - len(folded.known_files)
    if dropped > 0:
        logger.debug(f"{op.describe()} invalidated {dropped} cached file(s)")
    return folded
