"""
Working-tree change detection.

Changed files are classified as new, modified or deleted. Inside a git work
tree the classification comes from ``git status --porcelain``; elsewhere a
hash snapshot of the project (``file-hashes.json`` in the data directory) is
compared against the files on disk and then refreshed.

Paths matching the project's ``.taskignore`` patterns (or the defaults when
there is no such file) are left out of both sources.
"""

import hashlib
import json
import os
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

import structlog

from tasktracker.core import git
from tasktracker.storage.store import Store

logger = structlog.get_logger(__name__)

SNAPSHOT_FILE_NAME = "file-hashes.json"
IGNORE_FILE_NAME = ".taskignore"

DEFAULT_IGNORE_PATTERNS = [
    "node_modules/**",
    ".git/**",
    "dist/**",
    "build/**",
    "coverage/**",
    ".cache/**",
    ".next/**",
    ".venv/**",
    "__pycache__/**",
    "**/*.log",
    "**/*.lock",
    "**/*.map",
    "**/*.pyc",
]

# Files above this size are hashed by size and mtime only.
MAX_HASHED_FILE_BYTES = 5 * 1024 * 1024


class ChangeKind(str, Enum):
    """How a file differs from the last known state."""
    NEW = "new"
    MODIFIED = "modified"
    DELETED = "deleted"


class FileChange(NamedTuple):
    kind: ChangeKind
    path: str


# Porcelain status letter -> change kind. Untracked (?) and added files are new.
_STATUS_KINDS: Dict[str, ChangeKind] = {
    "?": ChangeKind.NEW,
    "A": ChangeKind.NEW,
    "D": ChangeKind.DELETED,
}


def kind_for_status(status: str) -> ChangeKind:
    return _STATUS_KINDS.get(status, ChangeKind.MODIFIED)


# ============================================================================
# IGNORE PATTERNS
# ============================================================================

def load_ignore_patterns(root: Path) -> List[str]:
    """Patterns from ``<root>/.taskignore``, else the defaults."""
    path = Path(root) / IGNORE_FILE_NAME
    if not path.is_file():
        return list(DEFAULT_IGNORE_PATTERNS)
    patterns = []
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def is_ignored(path: str, patterns: Sequence[str]) -> bool:
    """
    Match a project-relative POSIX path against ignore patterns.

    ``dir/**`` ignores a directory and everything below it, ``**/glob``
    matches at any depth, other globs match the whole path and plain
    entries match the path or a directory prefix.
    """
    for pattern in patterns:
        if pattern.endswith("/**"):
            prefix = pattern[:-3].rstrip("/")
            if path == prefix or path.startswith(prefix + "/"):
                return True
        elif pattern.startswith("**/"):
            tail = pattern[3:]
            if fnmatchcase(path, tail) or fnmatchcase(path, "*/" + tail):
                return True
        elif any(char in pattern for char in "*?["):
            if fnmatchcase(path, pattern):
                return True
        else:
            plain = pattern.rstrip("/")
            if path == plain or path.startswith(plain + "/"):
                return True
    return False


# ============================================================================
# DETECTION
# ============================================================================

class ChangeDetector:
    """
    Finds changed files under a project root.

    Args:
        store: Store owning the data directory (snapshot location)
        root: Project root to inspect
        use_git: Ask git first; False forces the hash snapshot
    """

    def __init__(self, store: Store, root: Path, use_git: bool = True):
        self.store = store
        self.root = Path(root)
        self.use_git = use_git

    @property
    def snapshot_path(self) -> Path:
        return self.store.data_dir / SNAPSHOT_FILE_NAME

    def detect(self, use_git: bool = True) -> Tuple[str, List[FileChange]]:
        """
        Return ``(source, changes)`` where source is ``git`` or ``snapshot``.

        Git is consulted only when both the detector and the call allow it.
        """
        patterns = self._patterns()
        entries = git.status_entries(self.root) if self.use_git and use_git else None
        if entries is not None:
            changes = [
                FileChange(kind_for_status(status), path)
                for status, path in entries
                if not is_ignored(path, patterns)
            ]
            logger.debug("Changes read from git", count=len(changes))
            return "git", changes

        changes = self._diff_snapshot(patterns)
        logger.debug("Changes read from hash snapshot", count=len(changes))
        return "snapshot", changes

    def _patterns(self) -> List[str]:
        patterns = load_ignore_patterns(self.root) + [".git/**"]
        try:
            data_dir = self.store.data_dir.resolve().relative_to(self.root.resolve())
        except ValueError:
            return patterns
        # The tracker's own documents never count as project changes.
        patterns.append(f"{data_dir.as_posix()}/**")
        return patterns

    # ---------------------------------------------------------------- snapshot

    def scan(self, patterns: Sequence[str]) -> Dict[str, str]:
        """Hash every non-ignored file under the root."""
        hashes: Dict[str, str] = {}
        for directory, dirnames, filenames in os.walk(self.root):
            base = Path(directory).relative_to(self.root)
            dirnames[:] = sorted(
                name for name in dirnames
                if not is_ignored((base / name).as_posix(), patterns)
            )
            for name in sorted(filenames):
                relative = (base / name).as_posix()
                if is_ignored(relative, patterns):
                    continue
                digest = self._hash_file(Path(directory) / name)
                if digest is not None:
                    hashes[relative] = digest
        return hashes

    def _hash_file(self, path: Path) -> Optional[str]:
        try:
            stat = path.stat()
            if stat.st_size > MAX_HASHED_FILE_BYTES:
                return f"size:{stat.st_size}:mtime:{stat.st_mtime_ns}"
            return hashlib.sha256(path.read_bytes()).hexdigest()
        except OSError as e:
            logger.debug("Skipping unreadable file", path=str(path), error=str(e))
            return None

    def load_snapshot(self) -> Dict[str, str]:
        """Previous hashes; an absent or unreadable snapshot is empty."""
        path = self.snapshot_path
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable file snapshot", path=str(path), error=str(e))
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed file snapshot", path=str(path))
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def _diff_snapshot(self, patterns: Sequence[str]) -> List[FileChange]:
        previous = self.load_snapshot()
        current = self.scan(patterns)

        changes = []
        for path, digest in current.items():
            if path not in previous:
                changes.append(FileChange(ChangeKind.NEW, path))
            elif previous[path] != digest:
                changes.append(FileChange(ChangeKind.MODIFIED, path))
        for path in sorted(previous):
            if path not in current and not is_ignored(path, patterns):
                changes.append(FileChange(ChangeKind.DELETED, path))

        # Reads of an uninitialized workspace leave no trace on disk.
        if self.store.data_dir.exists():
            document = json.dumps(dict(sorted(current.items())), indent=2, ensure_ascii=False) + "\n"
            self.store.atomic_write_text(self.snapshot_path, document)
        return changes


__all__ = [
    "ChangeDetector",
    "ChangeKind",
    "FileChange",
    "DEFAULT_IGNORE_PATTERNS",
    "is_ignored",
    "kind_for_status",
    "load_ignore_patterns",
]
