"""File operation tools: read_file and the write catalog."""

import logging
from typing import Any, Dict

from backend import FileSystem, normalize_path, parent_path
from operations import EDIT_TYPES
from tools._common import ToolResult, MissingParameter, optional_text, require_path

logger = logging.getLogger(__name__)


def ensure_directory(fs: FileSystem, path: str, is_directory: bool = False) -> None:
    """Create every missing directory on the way to `path`.

    For a file path the parent directory is ensured; with is_directory=True the path itself.
    """
    dir_path = normalize_path(path) if is_directory else parent_path(path)
    if dir_path == "/":
        return
    try:
        st = fs.stat(dir_path)
        if st.is_directory:
            return
        raise NotADirectoryError(f"Not a directory: {dir_path}")
    except FileNotFoundError:
        pass

    ensure_directory(fs, parent_path(dir_path), is_directory=True)
    try:
        fs.mkdir(dir_path)
        logger.info(f"Created directory: {dir_path}")
    except FileExistsError:
        logger.debug(f"Directory appeared while creating it: {dir_path}")


def read_file(fs: FileSystem, parameters: Dict[str, Any], **kw: Any) -> ToolResult:
    """Read the full text of a file."""
    path = require_path(parameters, "file_path")
    content = fs.read_file(path)
    return ToolResult(success=True, payload={
        "file_path": path,
        "content": content,
        "size": len(content),
    })


def create_file(fs: FileSystem, parameters: Dict[str, Any]) -> ToolResult:
    path = require_path(parameters, "file_path")
    content = optional_text(parameters, "content")
    ensure_directory(fs, path)
    fs.write_file(path, content)
    return ToolResult(success=True, payload={
        "file_path": path,
        "content_length": len(content),
        "message": f"File {path} created",
    })


def edit_file(fs: FileSystem, parameters: Dict[str, Any]) -> ToolResult:
    """Replace or append to a file. Append on a missing file creates it."""
    path = require_path(parameters, "file_path")
    content = optional_text(parameters, "content")
    edit_type = optional_text(parameters, "edit_type") or "replace"
    if edit_type not in EDIT_TYPES:
        raise MissingParameter(f"edit_type must be one of {', '.join(EDIT_TYPES)}, got {edit_type!r}")

    if edit_type == "append":
        try:
            existing = fs.read_file(path)
        except FileNotFoundError:
            existing = ""
            ensure_directory(fs, path)
        fs.write_file(path, existing + content)
    else:
        ensure_directory(fs, path)
        fs.write_file(path, content)

    return ToolResult(success=True, payload={
        "file_path": path,
        "edit_type": edit_type,
        "content_length": len(content),
        "message": f"File {path} edited ({edit_type})",
    })


def delete_file(fs: FileSystem, parameters: Dict[str, Any]) -> ToolResult:
    path = require_path(parameters, "file_path")
    fs.unlink(path)
    return ToolResult(success=True, payload={
        "file_path": path,
        "message": f"File {path} deleted",
    })


def create_directory(fs: FileSystem, parameters: Dict[str, Any]) -> ToolResult:
    path = require_path(parameters, "directory_path")
    ensure_directory(fs, path, is_directory=True)
    return ToolResult(success=True, payload={
        "directory_path": path,
        "message": f"Directory {path} created",
    })


def delete_directory(fs: FileSystem, parameters: Dict[str, Any]) -> ToolResult:
    path = require_path(parameters, "directory_path")
    fs.rmdir(path)
    return ToolResult(success=True, payload={
        "directory_path": path,
        "message": f"Directory {path} deleted",
    })


def move_file(fs: FileSystem, parameters: Dict[str, Any]) -> ToolResult:
    source = require_path(parameters, "source_path")
    target = require_path(parameters, "target_path")
    ensure_directory(fs, target)
    fs.rename(source, target)
    return ToolResult(success=True, payload={
        "source_path": source,
        "target_path": target,
        "message": f"Moved {source} to {target}",
    })
