"""Catalog schema definitions (Bedrock/Anthropic Messages API) and dispatch maps."""

from typing import Any, Dict, List, Tuple

from operations import OperationKind
from tools.file_ops import (
    read_file, create_file, edit_file, delete_file,
    create_directory, delete_directory, move_file,
)
from tools.search_ops import (
    list_files, get_file_structure, search_in_files, get_project_info, get_current_file,
)


# Parameters each action cannot run without
REQUIRED_PARAMETERS: Dict[str, Tuple[str, ...]] = {
    "read_file": ("file_path",),
    "list_files": (),
    "get_file_structure": (),
    "search_in_files": ("query",),
    "get_project_info": (),
    "get_current_file": (),
    "create_file": ("file_path", "content"),
    "edit_file": ("file_path", "content"),
    "delete_file": ("file_path",),
    "create_directory": ("directory_path",),
    "delete_directory": ("directory_path",),
    "move_file": ("source_path", "target_path"),
}

# Map alternate action names planners tend to emit to canonical catalog names
TOOL_NAME_NORMALIZE = {
    "write_file": "create_file",
    "rename_file": "move_file",
    "list_directory": "list_files",
}

_PATH = {"type": "string", "description": "Absolute project path, e.g. /chapters/intro.tex"}
_CONTENT = {"type": "string", "description": "Full document text (LaTeX source, BibTeX, Markdown)"}


def _schema(properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    # --- read catalog ---
    {
        "name": "read_file",
        "description": "Read the full content of a file. Never re-read a file whose content is already listed as known.",
        "input_schema": _schema({"file_path": _PATH}, ["file_path"]),
    },
    {
        "name": "list_files",
        "description": "List the direct entries of a directory (non-recursive). Defaults to the project root.",
        "input_schema": _schema({"directory_path": _PATH}, []),
    },
    {
        "name": "get_file_structure",
        "description": "Show the whole project as a tree. Call at most once per task unless files changed.",
        "input_schema": _schema({}, []),
    },
    {
        "name": "search_in_files",
        "description": "Case-insensitive text search across project files. Returns at most 50 matching lines.",
        "input_schema": _schema({
            "query": {"type": "string", "description": "Text to look for"},
            "file_pattern": {"type": "string", "description": "Optional glob filter, e.g. *.tex or chapters/*.tex"},
        }, ["query"]),
    },
    {
        "name": "get_project_info",
        "description": "Project statistics: file counts, total size, files by type, currently open file.",
        "input_schema": _schema({}, []),
    },
    {
        "name": "get_current_file",
        "description": "Content of the file currently open in the editor.",
        "input_schema": _schema({}, []),
    },
    # --- write catalog ---
    {
        "name": "create_file",
        "description": "Create (or overwrite) a file. Missing parent directories are created.",
        "input_schema": _schema({"file_path": _PATH, "content": _CONTENT}, ["file_path", "content"]),
    },
    {
        "name": "edit_file",
        "description": "Replace the whole content of a file, or append to it.",
        "input_schema": _schema({
            "file_path": _PATH,
            "content": _CONTENT,
            "edit_type": {"type": "string", "enum": ["replace", "append"], "description": "Default: replace"},
        }, ["file_path", "content"]),
    },
    {
        "name": "delete_file",
        "description": "Delete a file.",
        "input_schema": _schema({"file_path": _PATH}, ["file_path"]),
    },
    {
        "name": "create_directory",
        "description": "Create a directory and any missing parents.",
        "input_schema": _schema({"directory_path": _PATH}, ["directory_path"]),
    },
    {
        "name": "delete_directory",
        "description": "Delete an empty directory.",
        "input_schema": _schema({"directory_path": _PATH}, ["directory_path"]),
    },
    {
        "name": "move_file",
        "description": "Move or rename a file or directory.",
        "input_schema": _schema({"source_path": _PATH, "target_path": _PATH}, ["source_path", "target_path"]),
    },
    # --- termination ---
    {
        "name": "complete",
        "description": "Finish the task. Use once the request is fully satisfied.",
        "input_schema": _schema({
            "message": {"type": "string", "description": "Summary of what was done, shown to the user"},
        }, ["message"]),
    },
]


READ_IMPLEMENTATIONS = {
    "read_file": read_file,
    "list_files": list_files,
    "get_file_structure": get_file_structure,
    "search_in_files": search_in_files,
    "get_project_info": get_project_info,
    "get_current_file": get_current_file,
}

WRITE_IMPLEMENTATIONS = {
    "create_file": create_file,
    "edit_file": edit_file,
    "delete_file": delete_file,
    "create_directory": create_directory,
    "delete_directory": delete_directory,
    "move_file": move_file,
}

# Dispatch table keyed by (kind, action)
DISPATCH_TABLE = {
    **{(OperationKind.READ, name): impl for name, impl in READ_IMPLEMENTATIONS.items()},
    **{(OperationKind.WRITE, name): impl for name, impl in WRITE_IMPLEMENTATIONS.items()},
}
