"""Shared types and helpers for the tools package."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from backend import normalize_path


@dataclass
class ToolResult:
    """Result from executing a catalog action"""
    success: bool
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class EditorState:
    """What the host editor currently has open."""
    current_file: Optional[str] = None


class MissingParameter(ValueError):
    """A required action parameter is absent or empty."""


def require_path(parameters: Dict[str, Any], name: str) -> str:
    """Return the normalized path parameter `name` or raise MissingParameter."""
    value = parameters.get(name)
    if not isinstance(value, str) or not value.strip():
        raise MissingParameter(f"{name} is required")
    return normalize_path(value)


def require_text(parameters: Dict[str, Any], name: str) -> str:
    value = parameters.get(name)
    if not isinstance(value, str) or not value.strip():
        raise MissingParameter(f"{name} is required")
    return value


def optional_text(parameters: Dict[str, Any], name: str, default: str = "") -> str:
    """Return string parameter `name`, `default` when absent, or raise MissingParameter for any other type."""
    value = parameters.get(name)
    if value is None:
        return default
    if not isinstance(value, str):
        raise MissingParameter(f"{name} must be a string, got {type(value).__name__}")
    return value


def optional_path(parameters: Dict[str, Any], name: str, default: str = "/") -> str:
    return normalize_path(optional_text(parameters, name).strip() or default)


def optional_int(parameters: Dict[str, Any], name: str, default: int) -> int:
    value = parameters.get(name)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise MissingParameter(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MissingParameter(f"{name} must be an integer, got {value!r}")


def file_extension(name: str) -> str:
    dot = name.rfind(".")
    return name[dot + 1:].lower() if dot > 0 else ""
