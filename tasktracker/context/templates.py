"""
Fixed rendering templates for context documents.

Every function here is pure: the same records and options always render to
the same text. Nothing reads the wall clock.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from tasktracker.context.models import Verbosity
from tasktracker.journal.models import JournalEntry
from tasktracker.tasks.models import ArchivedTask, Task

NORMAL_DESCRIPTION_CHARS = 300
BRIEF_ENTRY_CHARS = 100
NORMAL_ENTRY_CHARS = 300


def format_date(value: datetime, date_format: str = "locale") -> str:
    if date_format == "iso":
        return value.isoformat(timespec="seconds")
    if date_format == "short":
        return value.strftime("%Y-%m-%d")
    return value.strftime("%Y-%m-%d %H:%M UTC")


def clip(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def truncation_marker(omitted_tasks: int, omitted_entries: int) -> str:
    parts = []
    if omitted_tasks:
        parts.append(f"{omitted_tasks} task{'s' if omitted_tasks != 1 else ''}")
    if omitted_entries:
        parts.append(f"{omitted_entries} journal entr{'ies' if omitted_entries != 1 else 'y'}")
    if not parts:
        return "[... truncated ...]"
    return f"[... truncated: {' and '.join(parts)} omitted ...]"


# ============================================================================
# MARKDOWN
# ============================================================================

def render_header(project_name: str, scope: str, verbosity: Verbosity) -> str:
    return "\n".join([
        f"# {project_name or 'Project'} - Development Context",
        "",
        f"Scope: {scope}",
        f"Verbosity: {verbosity.value}",
    ])


def _classification(task: Task) -> str:
    return (
        f"- Status: {task.status} | Category: {task.category} | "
        f"Priority: {task.priority or '-'} | Effort: {task.effort or '-'}"
    )


def render_task(task: Task, verbosity: Verbosity, date_format: str) -> str:
    """Render one task block."""
    if verbosity == Verbosity.BRIEF:
        line = f"- #{task.id} [{task.status}] {task.title}"
        if task.priority:
            line += f" ({task.priority})"
        return line

    lines = [f"### #{task.id} {task.title}", _classification(task)]

    if verbosity == Verbosity.FULL:
        lines.append(
            f"- Created: {format_date(task.created_at, date_format)} | "
            f"Updated: {format_date(task.updated_at, date_format)}"
        )
        provenance = []
        if task.author:
            provenance.append(f"Author: {task.author}")
        if task.branch:
            provenance.append(f"Branch: {task.branch}")
        if provenance:
            lines.append("- " + " | ".join(provenance))
    else:
        lines.append(f"- Updated: {format_date(task.updated_at, date_format)}")

    if isinstance(task, ArchivedTask):
        archived = f"- Archived: {format_date(task.archived_at, date_format)}"
        if task.archive_reason:
            archived += f" ({task.archive_reason})"
        lines.append(archived)

    if task.related_files:
        lines.append(f"- Files: {', '.join(task.related_files)}")

    if verbosity == Verbosity.NORMAL:
        if task.comments:
            lines.append(f"- Comments: {len(task.comments)}")
        if task.description:
            lines.extend(["", clip(task.description, NORMAL_DESCRIPTION_CHARS)])
        return "\n".join(lines)

    if task.description:
        lines.extend(["", task.description.strip()])
    if task.comments:
        lines.extend(["", "Comments:"])
        for comment in task.comments:
            lines.append(f"- {format_date(comment.timestamp, date_format)} {comment.author}: {comment.text}")
    return "\n".join(lines)


def render_entry(entry: JournalEntry, verbosity: Verbosity, date_format: str) -> str:
    """Render one journal entry block."""
    if verbosity == Verbosity.BRIEF:
        first_line = (entry.text.strip().splitlines() or [""])[0]
        return f"- [{entry.type.value}] {clip(first_line, BRIEF_ENTRY_CHARS)}"

    stamp = format_date(entry.timestamp, date_format)
    if verbosity == Verbosity.NORMAL:
        line = f"- {stamp} [{entry.type.value}]"
        if entry.related_task_id is not None:
            line += f" (task #{entry.related_task_id})"
        line += f" {clip(entry.text, NORMAL_ENTRY_CHARS)}"
        if entry.tags:
            line += " " + " ".join(f"#{tag}" for tag in entry.tags)
        return line

    lines = [f"### {stamp} [{entry.type.value}] entry #{entry.id}", entry.text.strip()]
    if entry.related_task_id is not None:
        lines.append(f"- Task: #{entry.related_task_id}")
    if entry.tags:
        lines.append(f"- Tags: {', '.join(entry.tags)}")
    if entry.files:
        lines.append(f"- Files: {', '.join(entry.files)}")
    return "\n".join(lines)


def section_heading(title: str) -> str:
    return f"## {title}\n\n"


def section_separator(verbosity: Verbosity) -> str:
    return "\n" if verbosity == Verbosity.BRIEF else "\n\n"


def render_section(title: str, blocks: List[str], verbosity: Verbosity) -> str:
    return section_heading(title) + section_separator(verbosity).join(blocks)


# ============================================================================
# JSON
# ============================================================================

def task_payload(task: Task, verbosity: Verbosity, date_format: str) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": task.id,
        "title": task.title,
        "status": task.status,
        "priority": task.priority,
    }
    if verbosity == Verbosity.BRIEF:
        return payload

    payload.update(
        category=task.category,
        effort=task.effort,
        relatedFiles=list(task.related_files),
        updatedAt=format_date(task.updated_at, date_format),
    )
    if isinstance(task, ArchivedTask):
        payload["archivedAt"] = format_date(task.archived_at, date_format)
        payload["archiveReason"] = task.archive_reason

    if verbosity == Verbosity.NORMAL:
        payload["description"] = clip(task.description, NORMAL_DESCRIPTION_CHARS) if task.description else None
        payload["commentCount"] = len(task.comments)
        return payload

    payload.update(
        description=task.description,
        createdAt=format_date(task.created_at, date_format),
        author=task.author,
        branch=task.branch,
        comments=[
            {
                "author": comment.author,
                "timestamp": format_date(comment.timestamp, date_format),
                "text": comment.text,
            }
            for comment in task.comments
        ],
    )
    return payload


def entry_payload(entry: JournalEntry, verbosity: Verbosity, date_format: str) -> Dict[str, Any]:
    if verbosity == Verbosity.BRIEF:
        return {"type": entry.type.value, "text": clip(entry.text, BRIEF_ENTRY_CHARS)}

    payload: Dict[str, Any] = {
        "id": entry.id,
        "type": entry.type.value,
        "timestamp": format_date(entry.timestamp, date_format),
        "relatedTaskId": entry.related_task_id,
        "tags": list(entry.tags),
    }
    if verbosity == Verbosity.NORMAL:
        payload["text"] = clip(entry.text, NORMAL_ENTRY_CHARS)
        return payload

    payload.update(text=entry.text, files=list(entry.files))
    return payload


def header_payload(project_name: str, scope: Dict[str, Any], verbosity: Verbosity) -> Dict[str, Any]:
    return {"project": project_name or "Project", "scope": scope, "verbosity": verbosity.value}


def marker_payload(omitted_tasks: int, omitted_entries: int, content_cut: bool = False) -> Optional[Dict[str, Any]]:
    if not (omitted_tasks or omitted_entries or content_cut):
        return None
    marker: Dict[str, Any] = {"omittedTasks": omitted_tasks, "omittedJournalEntries": omitted_entries}
    if content_cut:
        marker["contentCut"] = True
    return marker
