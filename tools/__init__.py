"""
Operation catalog and implementations for the LaTeX agent.
Each catalog action has an Anthropic-compatible schema and an implementation function.
Implementations work against the FileSystem abstraction in backend.py (local or in-memory).
"""

from tools._common import ToolResult, EditorState, MissingParameter  # noqa: F401
from tools.gitignore import (  # noqa: F401
    load_gitignore,
    is_ignored,
    matches_pattern,
    ALWAYS_SKIP_DIRS,
)
from tools.file_ops import (  # noqa: F401
    read_file,
    create_file,
    edit_file,
    delete_file,
    create_directory,
    delete_directory,
    move_file,
    ensure_directory,
)
from tools.search_ops import (  # noqa: F401
    list_files,
    get_file_structure,
    search_in_files,
    get_project_info,
    get_current_file,
)
from tools.schemas import (  # noqa: F401
    TOOL_DEFINITIONS,
    TOOL_NAME_NORMALIZE,
    REQUIRED_PARAMETERS,
    READ_IMPLEMENTATIONS,
    WRITE_IMPLEMENTATIONS,
    DISPATCH_TABLE,
)
from tools.dispatch import execute_operation, check_capability, ReadOnlyFileSystem  # noqa: F401
