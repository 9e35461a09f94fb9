"""
File system collaborator for the operation executor.
Exposes the primitive surface the agent core calls (read/write/unlink/mkdir/rmdir/rename/stat/readdir)
over virtual absolute POSIX paths. Two implementations: a project directory on local disk
(default) and an in-memory tree.
"""

import logging
import os
import posixpath
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileStat:
    """Subset of stat() information the executor relies on."""
    is_directory: bool
    size: int = 0
    mtime: float = 0.0


def normalize_path(path: str) -> str:
    """Normalize a virtual path to an absolute POSIX path ('' and '.' mean the root)."""
    p = (path or "").strip().replace("\\", "/")
    if not p or p == ".":
        return "/"
    if not p.startswith("/"):
        p = "/" + p
    p = posixpath.normpath(p)
    # normpath keeps a leading '//' intact
    if p.startswith("//"):
        p = "/" + p.lstrip("/")
    return p


def parent_path(path: str) -> str:
    return posixpath.dirname(normalize_path(path)) or "/"


def is_ancestor(ancestor: str, path: str) -> bool:
    """True if `ancestor` is a strict ancestor directory of `path`."""
    a = normalize_path(ancestor)
    p = normalize_path(path)
    if a == p:
        return False
    if a == "/":
        return True
    return p.startswith(a + "/")


class FileSystem(ABC):
    """Abstract virtual file system. Paths are absolute POSIX paths rooted at the project."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read file content as text."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write content to a file. The parent directory must already exist."""

    @abstractmethod
    def unlink(self, path: str) -> None:
        """Delete a file."""

    @abstractmethod
    def mkdir(self, path: str) -> None:
        """Create a single directory. Raises FileExistsError if present, FileNotFoundError if the parent is missing."""

    @abstractmethod
    def rmdir(self, path: str) -> None:
        """Remove an empty directory."""

    @abstractmethod
    def rename(self, src: str, dst: str) -> None:
        """Move/rename a file or directory."""

    @abstractmethod
    def stat(self, path: str) -> FileStat:
        """Return stat information. Raises FileNotFoundError if missing."""

    @abstractmethod
    def readdir(self, path: str) -> List[str]:
        """List entry names in a directory."""

    def exists(self, path: str) -> bool:
        try:
            self.stat(path)
            return True
        except FileNotFoundError:
            return False


# ============================================================
# Local Backend
# ============================================================

class LocalFileSystem(FileSystem):
    """Virtual file system backed by a project directory on local disk."""

    def __init__(self, working_directory: str = "."):
        self._working_directory = os.path.abspath(working_directory)

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def resolve_path(self, path: str) -> str:
        """Map a virtual path onto the working directory."""
        virtual = normalize_path(path)
        full = os.path.normpath(os.path.join(self._working_directory, virtual.lstrip("/")))
        self._ensure_under_working(full)
        return full

    def _ensure_under_working(self, resolved: str) -> None:
        real = os.path.abspath(resolved)
        wd = self._working_directory
        if real != wd and not real.startswith(wd + os.sep):
            raise PermissionError(f"Path escapes working directory: {resolved!r}")

    def read_file(self, path: str) -> str:
        full = self.resolve_path(path)
        if os.path.isdir(full):
            raise IsADirectoryError(f"Is a directory: {path}")
        with open(full, "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        if not isinstance(content, str):
            raise TypeError(f"File content must be text, got {type(content).__name__}")
        full = self.resolve_path(path)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)

    def unlink(self, path: str) -> None:
        os.remove(self.resolve_path(path))

    def mkdir(self, path: str) -> None:
        os.mkdir(self.resolve_path(path))

    def rmdir(self, path: str) -> None:
        full = self.resolve_path(path)
        if full == self._working_directory:
            raise PermissionError("Refusing to remove the project root")
        os.rmdir(full)

    def rename(self, src: str, dst: str) -> None:
        os.rename(self.resolve_path(src), self.resolve_path(dst))

    def stat(self, path: str) -> FileStat:
        st = os.stat(self.resolve_path(path))
        is_dir = os.path.isdir(self.resolve_path(path))
        return FileStat(is_directory=is_dir, size=0 if is_dir else st.st_size, mtime=st.st_mtime)

    def readdir(self, path: str) -> List[str]:
        return sorted(os.listdir(self.resolve_path(path)))


# ============================================================
# In-memory Backend
# ============================================================

class MemoryFileSystem(FileSystem):
    """Virtual file system held entirely in memory. Directories are tracked explicitly."""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self._files: Dict[str, str] = {}
        self._mtimes: Dict[str, float] = {}
        self._dirs = {"/"}
        for path, content in (files or {}).items():
            self._seed(path, content)

    def _seed(self, path: str, content: str) -> None:
        p = normalize_path(path)
        d = parent_path(p)
        while d not in self._dirs:
            self._dirs.add(d)
            d = parent_path(d)
        self._files[p] = content
        self._mtimes[p] = time.time()

    def read_file(self, path: str) -> str:
        p = normalize_path(path)
        if p in self._dirs:
            raise IsADirectoryError(f"Is a directory: {path}")
        if p not in self._files:
            raise FileNotFoundError(f"No such file: {path}")
        return self._files[p]

    def write_file(self, path: str, content: str) -> None:
        if not isinstance(content, str):
            raise TypeError(f"File content must be text, got {type(content).__name__}")
        p = normalize_path(path)
        if p in self._dirs:
            raise IsADirectoryError(f"Is a directory: {path}")
        if parent_path(p) not in self._dirs:
            raise FileNotFoundError(f"Parent directory does not exist: {parent_path(p)}")
        self._files[p] = content
        self._mtimes[p] = time.time()

    def unlink(self, path: str) -> None:
        p = normalize_path(path)
        if p in self._dirs:
            raise IsADirectoryError(f"Is a directory: {path}")
        if p not in self._files:
            raise FileNotFoundError(f"No such file: {path}")
        del self._files[p]
        self._mtimes.pop(p, None)

    def mkdir(self, path: str) -> None:
        p = normalize_path(path)
        if p in self._dirs or p in self._files:
            raise FileExistsError(f"File exists: {path}")
        if parent_path(p) not in self._dirs:
            raise FileNotFoundError(f"Parent directory does not exist: {parent_path(p)}")
        self._dirs.add(p)

    def rmdir(self, path: str) -> None:
        p = normalize_path(path)
        if p == "/":
            raise PermissionError("Refusing to remove the project root")
        if p not in self._dirs:
            raise FileNotFoundError(f"No such directory: {path}")
        if self.readdir(p):
            raise OSError(f"Directory not empty: {path}")
        self._dirs.discard(p)

    def rename(self, src: str, dst: str) -> None:
        s = normalize_path(src)
        d = normalize_path(dst)
        if parent_path(d) not in self._dirs:
            raise FileNotFoundError(f"Parent directory does not exist: {parent_path(d)}")
        if s in self._files:
            if d in self._dirs:
                raise IsADirectoryError(f"Is a directory: {dst}")
            self._files[d] = self._files.pop(s)
            self._mtimes[d] = self._mtimes.pop(s, time.time())
            return
        if s not in self._dirs or s == "/":
            raise FileNotFoundError(f"No such file or directory: {src}")
        if d in self._files:
            raise NotADirectoryError(f"Not a directory: {dst}")
        if is_ancestor(s, d):
            raise OSError(f"Cannot move a directory into itself: {src} -> {dst}")
        if d != s and d in self._dirs and self.readdir(d):
            raise OSError(f"Directory not empty: {dst}")
        # Re-root every file and directory under the moved tree
        for old in [f for f in self._files if is_ancestor(s, f)]:
            new = d + old[len(s):]
            self._files[new] = self._files.pop(old)
            self._mtimes[new] = self._mtimes.pop(old, time.time())
        for old in [x for x in self._dirs if x == s or is_ancestor(s, x)]:
            self._dirs.discard(old)
            self._dirs.add(d + old[len(s):])

    def stat(self, path: str) -> FileStat:
        p = normalize_path(path)
        if p in self._dirs:
            return FileStat(is_directory=True)
        if p in self._files:
            return FileStat(is_directory=False, size=len(self._files[p]), mtime=self._mtimes.get(p, 0.0))
        raise FileNotFoundError(f"No such file or directory: {path}")

    def readdir(self, path: str) -> List[str]:
        p = normalize_path(path)
        if p not in self._dirs:
            if p in self._files:
                raise NotADirectoryError(f"Not a directory: {path}")
            raise FileNotFoundError(f"No such directory: {path}")
        names = set()
        for entry in list(self._files) + list(self._dirs):
            if entry != p and parent_path(entry) == p:
                names.add(posixpath.basename(entry))
        return sorted(names)
