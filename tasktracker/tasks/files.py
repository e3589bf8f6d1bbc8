"""
Related-file path handling.

Paths stored on tasks and journal entries are relative to the project root,
in POSIX form, without a leading ``./``.
"""

from pathlib import PurePosixPath, PureWindowsPath
from typing import Iterable, List

from tasktracker.core.exceptions import ValidationError


def normalize_path(raw: str, field: str = "file") -> str:
    """
    Normalize a project-relative path.

    Args:
        raw: Path as typed by the user or reported by git
        field: Field name reported on failure

    Returns:
        POSIX-form relative path

    Raises:
        ValidationError: If the path is empty, absolute or escapes the project
    """
    value = (raw or "").strip()
    if not value:
        raise ValidationError("File path cannot be empty", field=field, value=raw)

    if PureWindowsPath(value).drive or value.startswith(("/", "\\")):
        raise ValidationError(f"File path must be relative to the project: {value}", field=field, value=raw)

    parts: List[str] = []
    for part in value.replace("\\", "/").split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            raise ValidationError(f"File path cannot contain '..': {value}", field=field, value=raw)
        parts.append(part)

    if not parts:
        raise ValidationError(f"Invalid file path: {value}", field=field, value=raw)
    return str(PurePosixPath(*parts))


def normalize_paths(raw_paths: Iterable[str], field: str = "files") -> List[str]:
    """Normalize and de-duplicate, keeping first-seen order."""
    normalized: List[str] = []
    for raw in raw_paths:
        path = normalize_path(raw, field=field)
        if path not in normalized:
            normalized.append(path)
    return normalized


def paths_match(changed: str, related: str) -> bool:
    """
    True if two normalized paths name the same file.

    Either path may be a suffix of the other on a ``/`` boundary, so
    ``login.js`` matches ``src/login.js`` but ``gin.js`` does not.
    """
    if changed == related:
        return True
    return changed.endswith("/" + related) or related.endswith("/" + changed)
