"""
Task records and the engines that create, query and archive them.
"""

from tasktracker.tasks.models import (
    ArchiveCollection,
    ArchivedTask,
    Comment,
    Task,
    TaskCollection,
    TaskDraft,
)

__all__ = [
    "Task",
    "Comment",
    "ArchivedTask",
    "TaskCollection",
    "ArchiveCollection",
    "TaskDraft",
]
