""".gitignore-aware filtering helpers for directory walks over the virtual file system."""

import logging
import posixpath
from typing import Optional, Set

import pathspec

from backend import FileSystem

logger = logging.getLogger(__name__)

ALWAYS_SKIP_DIRS: Set[str] = {
    ".git", "node_modules", "__pycache__", "_minted", ".latex-master",
}

# LaTeX build artifacts: never worth searching
SKIP_SEARCH_EXTENSIONS: Set[str] = {
    ".aux", ".log", ".out", ".toc", ".lof", ".lot", ".bbl", ".blg",
    ".fls", ".fdb_latexmk", ".synctex", ".gz", ".pdf", ".dvi", ".xdv",
    ".png", ".jpg", ".jpeg", ".eps",
}


def load_gitignore(fs: FileSystem) -> Optional[pathspec.PathSpec]:
    """Load the project's /.gitignore as a PathSpec matcher, or None if absent.

    Not cached: the agent itself may edit .gitignore between turns.
    """
    try:
        content = fs.read_file("/.gitignore")
    except (FileNotFoundError, IsADirectoryError):
        return None
    except OSError as e:
        logger.debug(f"Failed to read .gitignore: {e}")
        return None
    return pathspec.PathSpec.from_lines("gitwildmatch", content.splitlines())


def is_ignored(path: str, is_dir: bool, gitignore_spec: Optional[pathspec.PathSpec]) -> bool:
    """Check if a virtual path should be skipped: hidden names, hardcoded dirs, .gitignore."""
    name = posixpath.basename(path)
    if name.startswith("."):
        return True
    if is_dir and name in ALWAYS_SKIP_DIRS:
        return True
    if gitignore_spec:
        rel_path = path.lstrip("/")
        check_path = rel_path + "/" if is_dir else rel_path
        if gitignore_spec.match_file(check_path):
            return True
    return False


def matches_pattern(path: str, pattern: Optional[str]) -> bool:
    """gitwildmatch test of a file path against a user-supplied pattern such as '*.tex'."""
    if not pattern or pattern in ("*", "**"):
        return True
    spec = pathspec.PathSpec.from_lines("gitwildmatch", [pattern])
    return spec.match_file(path.lstrip("/"))
