"""
Git probing for task provenance and change detection.

Every helper degrades to "no information" outside a repository or when git
is not installed; callers treat git data as optional.
"""

import os
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

GIT_TIMEOUT_SECONDS = 5.0


def _run_git(root: Path, *args: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(root),
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("git unavailable", args=args, error=str(e))
        return None

    if result.returncode != 0:
        logger.debug("git command failed", args=args, returncode=result.returncode, stderr=result.stderr.strip())
        return None
    return result.stdout


def current_branch(root: Path) -> Optional[str]:
    output = _run_git(root, "rev-parse", "--abbrev-ref", "HEAD")
    if not output:
        return None
    branch = output.strip()
    return None if branch in ("", "HEAD") else branch


def current_user(root: Path) -> str:
    """git ``user.name``, else the login name from the environment."""
    output = _run_git(root, "config", "user.name")
    if output and output.strip():
        return output.strip()
    return os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"


def parse_porcelain(output: str) -> List[Tuple[str, str]]:
    """
    Extract ``(status, path)`` pairs from ``git status --porcelain`` output.

    The status is the index letter, or the work-tree letter when the index
    column is blank (``?`` for untracked files). Renames (``R  old -> new``)
    report the new path.
    """
    entries: List[Tuple[str, str]] = []
    seen = set()
    for line in output.splitlines():
        if len(line) < 4:
            continue
        status = line[0] if line[0] != " " else line[1]
        path = line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        path = path.strip().strip('"')
        if path and path not in seen:
            seen.add(path)
            entries.append((status, path))
    return entries


def status_entries(root: Path) -> Optional[List[Tuple[str, str]]]:
    """Uncommitted changes as ``(status, path)``, or None outside a git work tree."""
    output = _run_git(root, "status", "--porcelain")
    if output is None:
        return None
    return parse_porcelain(output)
