"""Read-catalog tools: directory listing, project tree, content search, project info, current file."""

import logging
import posixpath
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pathspec

from backend import FileSystem, FileStat, normalize_path
from config import app_config
from tools._common import (
    ToolResult, EditorState, file_extension, optional_int, optional_path, optional_text, require_text,
)
from tools.gitignore import SKIP_SEARCH_EXTENSIONS, is_ignored, load_gitignore, matches_pattern

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 50

_TYPE_HINTS = {"tex": "LaTeX", "bib": "Bibliography", "md": "Markdown"}


def _join(dir_path: str, name: str) -> str:
    return f"/{name}" if dir_path == "/" else f"{dir_path}/{name}"


def _walk(
    fs: FileSystem,
    dir_path: str,
    gi: Optional[pathspec.PathSpec],
    max_depth: int,
    depth: int = 0,
) -> Iterator[Tuple[str, str, FileStat, int]]:
    """Depth-first walk yielding (path, name, stat, depth). Unreadable entries are skipped."""
    if depth >= max_depth:
        return
    try:
        names = fs.readdir(dir_path)
    except OSError as e:
        logger.warning(f"Cannot read directory {dir_path}: {e}")
        return
    for name in names:
        full = _join(dir_path, name)
        try:
            st = fs.stat(full)
        except OSError as e:
            logger.warning(f"Cannot stat {full}: {e}")
            continue
        if is_ignored(full, st.is_directory, gi):
            continue
        yield full, name, st, depth
        if st.is_directory:
            yield from _walk(fs, full, gi, max_depth, depth + 1)


def list_files(fs: FileSystem, parameters: Dict[str, Any], **kw: Any) -> ToolResult:
    """List the direct entries of a directory (default: project root)."""
    directory = optional_path(parameters, "directory_path")
    gi = load_gitignore(fs)
    files: List[Dict[str, Any]] = []
    for name in fs.readdir(directory):
        full = _join(directory, name)
        st = fs.stat(full)
        if is_ignored(full, st.is_directory, gi):
            continue
        entry: Dict[str, Any] = {
            "name": name,
            "path": full,
            "type": "directory" if st.is_directory else "file",
            "size": st.size,
        }
        if not st.is_directory:
            entry["extension"] = file_extension(name)
        files.append(entry)
    return ToolResult(success=True, payload={"directory_path": directory, "files": files})


def get_file_structure(fs: FileSystem, parameters: Dict[str, Any], **kw: Any) -> ToolResult:
    """Render the whole project as an indented tree."""
    max_depth = optional_int(parameters, "max_depth", app_config.max_scan_depth)
    gi = load_gitignore(fs)
    lines = ["Project root/"]
    total = _render_tree(fs, "/", gi, max_depth, 0, "", lines)
    return ToolResult(success=True, payload={
        "structure": "\n".join(lines),
        "total_entries": total,
        "max_depth": max_depth,
    })


def _render_tree(fs: FileSystem, dir_path: str, gi: Optional[pathspec.PathSpec],
                 max_depth: int, depth: int, prefix: str, lines: List[str]) -> int:
    if depth >= max_depth:
        return 0
    try:
        names = fs.readdir(dir_path)
    except OSError as e:
        logger.warning(f"Cannot read directory {dir_path}: {e}")
        return 0

    visible: List[Tuple[str, str, FileStat]] = []
    for name in names:
        full = _join(dir_path, name)
        try:
            st = fs.stat(full)
        except OSError:
            continue
        if not is_ignored(full, st.is_directory, gi):
            visible.append((full, name, st))

    count = 0
    for i, (full, name, st) in enumerate(visible):
        last = i == len(visible) - 1
        connector = "└── " if last else "├── "
        count += 1
        if st.is_directory:
            lines.append(f"{prefix}{connector}{name}/")
            child_prefix = prefix + ("    " if last else "│   ")
            count += _render_tree(fs, full, gi, max_depth, depth + 1, child_prefix, lines)
        else:
            hint = _TYPE_HINTS.get(file_extension(name))
            lines.append(f"{prefix}{connector}{name}" + (f" ({hint})" if hint else ""))
    return count


def search_in_files(fs: FileSystem, parameters: Dict[str, Any], **kw: Any) -> ToolResult:
    """Case-insensitive substring search across project files."""
    query = require_text(parameters, "query")
    file_pattern = optional_text(parameters, "file_pattern") or None
    needle = query.lower()
    gi = load_gitignore(fs)

    results: List[Dict[str, Any]] = []
    files_searched = 0
    for path, name, st, _ in _walk(fs, "/", gi, app_config.max_scan_depth):
        if st.is_directory or posixpath.splitext(name)[1].lower() in SKIP_SEARCH_EXTENSIONS:
            continue
        if not matches_pattern(path, file_pattern):
            continue
        try:
            content = fs.read_file(path)
        except OSError as e:
            logger.warning(f"Search skipped {path}: {e}")
            continue
        files_searched += 1
        for line_number, line in enumerate(content.split("\n"), start=1):
            if needle in line.lower():
                results.append({
                    "file_path": path,
                    "line_number": line_number,
                    "line_content": line.strip(),
                })
                if len(results) >= MAX_SEARCH_RESULTS:
                    break
        if len(results) >= MAX_SEARCH_RESULTS:
            break

    return ToolResult(success=True, payload={
        "query": query,
        "file_pattern": file_pattern,
        "results": results,
        "total_matches": len(results),
        "files_searched": files_searched,
    })


def get_project_info(fs: FileSystem, parameters: Dict[str, Any],
                     editor: Optional[EditorState] = None, **kw: Any) -> ToolResult:
    """Project statistics: counts, total size, breakdown by extension."""
    gi = load_gitignore(fs)
    total_files = 0
    total_dirs = 0
    total_size = 0
    by_type: Dict[str, Dict[str, int]] = {}
    for _, name, st, _ in _walk(fs, "/", gi, app_config.max_scan_depth):
        if st.is_directory:
            total_dirs += 1
            continue
        total_files += 1
        total_size += st.size
        bucket = by_type.setdefault(file_extension(name) or "unknown", {"count": 0, "size": 0})
        bucket["count"] += 1
        bucket["size"] += st.size

    return ToolResult(success=True, payload={
        "total_files": total_files,
        "total_directories": total_dirs,
        "total_size": total_size,
        "files_by_type": by_type,
        "current_file": editor.current_file if editor else None,
    })


def get_current_file(fs: FileSystem, parameters: Dict[str, Any],
                     editor: Optional[EditorState] = None, **kw: Any) -> ToolResult:
    """Content of the file currently open in the editor."""
    if editor is None or not editor.current_file:
        return ToolResult(success=False, error="No file is currently open")
    path = normalize_path(editor.current_file)
    content = fs.read_file(path)
    return ToolResult(success=True, payload={
        "file_path": path,
        "content": content,
        "line_count": len(content.split("\n")),
        "size": len(content),
    })
