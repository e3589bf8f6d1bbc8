"""
Archive partition management.

Moving a task between partitions touches two documents and there is no
multi-document commit, so the write order is fixed:

- archive: archives document first, then tasks document
- restore: tasks document first, then archives document

A crash between the two writes leaves the task in both partitions, never in
neither. ``Store.reconcile`` resolves that on the next start, keeping the
archived copy.
"""

from datetime import timedelta
from typing import List, Optional

import structlog

from tasktracker.core.exceptions import ConflictError, NotFoundError
from tasktracker.storage.store import DocumentKind, Store
from tasktracker.tasks.engine import Clock
from tasktracker.tasks.models import ArchiveCollection, ArchivedTask, Task, TaskCollection, utcnow

logger = structlog.get_logger(__name__)


class ArchiveManager:
    """Archive, restore and list archived tasks."""

    def __init__(self, store: Store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or utcnow

    def archive(self, task_id: int, reason: Optional[str] = None) -> ArchivedTask:
        """
        Move an active task into the archive partition.

        Args:
            task_id: Active task id
            reason: Optional free-form reason

        Returns:
            The archived record, keeping the original id

        Raises:
            NotFoundError: If no active task has the id
        """
        with self.store.lock():
            tasks: TaskCollection = self.store.load(DocumentKind.TASKS)
            archives: ArchiveCollection = self.store.load(DocumentKind.ARCHIVES)

            index = tasks.index_of(task_id)
            if index < 0:
                raise NotFoundError(f"Task #{task_id} not found", entity_type="task", entity_id=task_id)

            task = tasks.tasks[index]
            archived = ArchivedTask.from_task(task, archived_at=self.clock(), reason=(reason or "").strip() or None)

            # A leftover copy from an interrupted archive is replaced.
            archives.archived = [item for item in archives.archived if item.id != task_id]
            archives.archived.append(archived)
            self.store.save(DocumentKind.ARCHIVES, archives)

            del tasks.tasks[index]
            self.store.save(DocumentKind.TASKS, tasks)

        logger.info("Task archived", task_id=task_id, reason=archived.archive_reason)
        return archived

    def restore(self, task_id: int) -> Task:
        """
        Move an archived task back to the active partition.

        Raises:
            NotFoundError: If no archived task has the id
            ConflictError: If an active task already has the id
        """
        with self.store.lock():
            tasks: TaskCollection = self.store.load(DocumentKind.TASKS)
            archives: ArchiveCollection = self.store.load(DocumentKind.ARCHIVES)

            index = archives.index_of(task_id)
            if index < 0:
                raise NotFoundError(
                    f"Archived task #{task_id} not found", entity_type="archived_task", entity_id=task_id
                )
            if tasks.find(task_id) is not None:
                raise ConflictError(f"An active task already has id #{task_id}", entity_id=task_id)

            archived = archives.archived[index]
            now = self.clock()
            if now <= archived.updated_at:
                now = archived.updated_at + timedelta(microseconds=1)
            task = archived.to_task().model_copy(update={"updated_at": now})

            tasks.tasks.append(task)
            tasks.tasks.sort(key=lambda item: item.id)
            self.store.save(DocumentKind.TASKS, tasks)

            del archives.archived[index]
            self.store.save(DocumentKind.ARCHIVES, archives)

        logger.info("Task restored", task_id=task_id)
        return task

    def list(self) -> List[ArchivedTask]:
        """Archived tasks, newest-archived first (ties: higher id first)."""
        archives: ArchiveCollection = self.store.load(DocumentKind.ARCHIVES)
        return sorted(archives.archived, key=lambda item: (item.archived_at, item.id), reverse=True)
