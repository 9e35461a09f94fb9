"""Duplicate-operation detection over the recent history window."""

import logging
from typing import List, Optional, Sequence

from backend import normalize_path
from config import app_config
from operations import HistoryEntry, Operation, PATH_PARAMETERS

logger = logging.getLogger(__name__)


# Actions whose omitted path means a fixed location
_DEFAULT_TARGETS = {"list_files": "/"}


def _target(op: Operation) -> Optional[str]:
    """First path-like parameter, normalized; the action default or None when the operation names no path."""
    for key in PATH_PARAMETERS:
        value = op.parameters.get(key)
        if isinstance(value, str) and value.strip():
            return normalize_path(value)
    return _DEFAULT_TARGETS.get(op.action)


def same_operation(a: Operation, b: Operation) -> bool:
    """Same kind and action, and either the same target path or no path on either side."""
    if a.kind != b.kind or a.action != b.action:
        return False
    target_a = _target(a)
    target_b = _target(b)
    if target_a is None and target_b is None:
        return True
    return target_a == target_b


def find_duplicate(
    candidate: Operation,
    history: Sequence[HistoryEntry],
    window: Optional[int] = None,
) -> Optional[HistoryEntry]:
    """The most recent entry within the lookback window that `candidate` repeats, if any.

    Failed entries count: repeating an operation that just failed is no more useful.
    """
    size = window if window is not None else app_config.duplicate_window
    recent: List[HistoryEntry] = list(history[-size:]) if size > 0 else []
    for entry in reversed(recent):
        if same_operation(candidate, entry.operation):
            logger.warning(
                f"Duplicate operation {candidate.describe()} repeats #{entry.sequence_number}"
            )
            return entry
    return None


def is_duplicate(candidate: Operation, history: Sequence[HistoryEntry], window: Optional[int] = None) -> bool:
    return find_duplicate(candidate, history, window) is not None
