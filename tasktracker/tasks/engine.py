"""
Task Lifecycle Engine - create and mutate tasks

Every operation is a single load-mutate-save cycle on the active partition:

- Vocabulary fields (status, category, priority, effort) are checked against
  the project configuration on every write
- Related files are normalized and kept duplicate-free
- Comments are append-only
- ``updatedAt`` moves forward on every successful update

Validation always completes before anything is written, so a failing call
leaves the store untouched.
"""

import os
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import structlog

from tasktracker.core.config import VOCABULARIES, ProjectConfig
from tasktracker.core.exceptions import InvalidValueError, NotFoundError, ValidationError
from tasktracker.storage.store import DocumentKind, Store
from tasktracker.tasks.files import normalize_path, normalize_paths
from tasktracker.tasks.identity import IdentityAllocator
from tasktracker.tasks.models import Comment, Task, TaskCollection, TaskDraft, utcnow

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000
MAX_COMMENT_LENGTH = 2000

UPDATABLE_FIELDS = (
    "status",
    "category",
    "priority",
    "effort",
    "title",
    "description",
    "comment",
    "add-file",
    "remove-file",
)

FIELD_ALIASES: Dict[str, str] = {
    "desc": "description",
    "addfile": "add-file",
    "add_file": "add-file",
    "removefile": "remove-file",
    "remove_file": "remove-file",
}


def canonical_field(field: str) -> str:
    """Resolve an update field name or alias, rejecting unknown fields."""
    name = (field or "").strip().lower()
    name = FIELD_ALIASES.get(name, name)
    if name not in UPDATABLE_FIELDS:
        raise ValidationError(
            f"Unknown field '{field}'. Valid fields: {', '.join(UPDATABLE_FIELDS)}",
            field="field",
            value=field,
        )
    return name


class LifecycleEngine:
    """
    Creates and updates tasks in the active partition.

    The project configuration is read once per invocation and passed in; the
    engine never reloads it.
    """

    def __init__(
        self,
        store: Store,
        config: ProjectConfig,
        clock: Optional[Clock] = None,
        author: Optional[str] = None,
    ):
        self.store = store
        self.config = config
        self.clock = clock or utcnow
        self.author = author
        self.allocator = IdentityAllocator()

    # ============================================================================
    # READ
    # ============================================================================

    def get(self, task_id: int) -> Task:
        """Return an active task or raise NotFoundError."""
        task = self.store.load(DocumentKind.TASKS).find(task_id)
        if task is None:
            raise NotFoundError(f"Task #{task_id} not found", entity_type="task", entity_id=task_id)
        return task

    def find_any(self, task_id: int) -> Task:
        """Active task, else archived task, else NotFoundError."""
        task = self.store.load(DocumentKind.TASKS).find(task_id)
        if task is None:
            task = self.store.load(DocumentKind.ARCHIVES).find(task_id)
        if task is None:
            raise NotFoundError(f"Task #{task_id} not found", entity_type="task", entity_id=task_id)
        return task

    # ============================================================================
    # CREATE
    # ============================================================================

    def create(self, draft: TaskDraft) -> Task:
        """
        Create a task.

        Args:
            draft: Supplied fields; unset vocabulary fields get configured defaults

        Returns:
            The persisted task with its allocated id

        Raises:
            ValidationError: Missing or oversized title/description, bad file path
            InvalidValueError: Vocabulary value not configured
        """
        title = self._validate_title(draft.title)
        description = self._validate_description(draft.description)
        values = {
            name: self._vocabulary_value(name, getattr(draft, name))
            for name in VOCABULARIES
        }
        related_files = normalize_paths(draft.related_files)

        with self.store.lock():
            tasks: TaskCollection = self.store.load(DocumentKind.TASKS)
            archives = self.store.load(DocumentKind.ARCHIVES)
            task_id = self.allocator.next_id(tasks, archives)
            now = self.clock()

            task = Task(
                id=task_id,
                title=title,
                description=description,
                related_files=related_files,
                created_at=now,
                updated_at=now,
                author=draft.author or self.author,
                branch=draft.branch,
                **values,
            )
            tasks.tasks.append(task)
            tasks.next_hint = task_id + 1
            self.store.save(DocumentKind.TASKS, tasks)

        logger.info("Task created", task_id=task.id, status=task.status, category=task.category)
        return task

    # ============================================================================
    # UPDATE
    # ============================================================================

    def update(self, task_id: int, field: str, value: Optional[str]) -> Task:
        """
        Apply a single field mutation.

        Args:
            task_id: Active task to update
            field: One of UPDATABLE_FIELDS or an alias
            value: New value, comment text or file path

        Returns:
            The updated task

        Raises:
            ValidationError: Unknown field or bad value
            NotFoundError: No active task with that id
            InvalidValueError: Vocabulary value not configured
        """
        name = canonical_field(field)
        new_value = self._validate_change(name, value)

        with self.store.lock():
            tasks: TaskCollection = self.store.load(DocumentKind.TASKS)
            index = tasks.index_of(task_id)
            if index < 0:
                raise NotFoundError(f"Task #{task_id} not found", entity_type="task", entity_id=task_id)

            task = tasks.tasks[index]
            updated = task.model_copy(update=self._apply(task, name, new_value))
            tasks.tasks[index] = updated
            self.store.save(DocumentKind.TASKS, tasks)

        logger.info("Task updated", task_id=task_id, field=name)
        return updated

    def _validate_change(self, name: str, value: Optional[str]) -> object:
        if name in VOCABULARIES:
            if value is None or not str(value).strip():
                raise ValidationError(f"A value is required for {name}", field=name, value=value)
            return self._vocabulary_value(name, value)
        if name == "title":
            return self._validate_title(value)
        if name == "description":
            return self._validate_description(value)
        if name == "comment":
            return self._validate_comment(value)
        return normalize_path(value or "", field=name)

    def _apply(self, task: Task, name: str, value: object) -> Dict[str, object]:
        changes: Dict[str, object] = {"updated_at": self._touch(task.updated_at)}
        if name == "comment":
            comment = Comment(author=self._comment_author(), timestamp=changes["updated_at"], text=value)
            changes["comments"] = [*task.comments, comment]
        elif name == "add-file":
            files = list(task.related_files)
            if value not in files:
                files.append(value)
            changes["related_files"] = files
        elif name == "remove-file":
            changes["related_files"] = [path for path in task.related_files if path != value]
        else:
            changes[name] = value
        return changes

    def _touch(self, previous: datetime) -> datetime:
        # updatedAt is strictly increasing per task, even with a coarse clock.
        now = self.clock()
        if now <= previous:
            return previous + timedelta(microseconds=1)
        return now

    def _comment_author(self) -> str:
        return self.author or os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"

    # ============================================================================
    # VALIDATION HELPERS
    # ============================================================================

    def _vocabulary_value(self, name: str, value: Optional[str]) -> str:
        if value is None or not str(value).strip():
            return self.config.default_for(name)
        normalized = str(value).strip().lower()
        allowed = self.config.vocabulary(name)
        if normalized not in allowed:
            raise InvalidValueError(name, value, allowed)
        return normalized

    def _validate_title(self, title: Optional[str]) -> str:
        value = (title or "").strip()
        if not value:
            raise ValidationError("Task title is required", field="title", value=title)
        if len(value) > MAX_TITLE_LENGTH:
            raise ValidationError(
                f"Task title must be at most {MAX_TITLE_LENGTH} characters", field="title", value=value
            )
        return value

    def _validate_description(self, description: Optional[str]) -> Optional[str]:
        value = (description or "").strip()
        if len(value) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters",
                field="description",
                value=value,
            )
        return value or None

    def _validate_comment(self, text: Optional[str]) -> str:
        value = (text or "").strip()
        if not value:
            raise ValidationError("Comment text is required", field="comment", value=text)
        if len(value) > MAX_COMMENT_LENGTH:
            raise ValidationError(
                f"Comment must be at most {MAX_COMMENT_LENGTH} characters", field="comment", value=value
            )
        return value


__all__ = ["LifecycleEngine", "UPDATABLE_FIELDS", "FIELD_ALIASES", "canonical_field"]
