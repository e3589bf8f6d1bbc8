"""
Task Management Models for TaskTracker

Pydantic models for the task store:
- Task: a development task with vocabulary-controlled fields
- Comment: append-only note attached to a task
- ArchivedTask: a task moved to the archive partition
- TaskCollection / ArchiveCollection: the persisted documents
- TaskDraft: input for task creation

Field names are snake_case in Python and camelCase on disk. Records written
by older releases (``created``, ``lastUpdated``, ``createdBy``,
``archived: {date, reason}``) are migrated when they are loaded.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


def _unique(values: List[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class Comment(_Record):
    """Append-only comment on a task."""

    author: str = Field(default="unknown", description="Comment author")
    timestamp: UtcDatetime = Field(default_factory=utcnow, description="When the comment was written")
    text: str = Field(..., description="Comment body")

    @model_validator(mode="before")
    @classmethod
    def migrate_legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict) and "date" in data and "timestamp" not in data:
            data = dict(data)
            data["timestamp"] = data.pop("date")
        return data


class Task(_Record):
    """
    A development task.

    ``status``, ``category``, ``priority`` and ``effort`` are plain strings:
    their legal values come from the project configuration and are checked
    by the lifecycle engine when a task is written.
    """

    # Core Identity
    id: int = Field(..., ge=1, frozen=True, description="Unique task identifier")
    title: str = Field(..., min_length=1, description="Task title")
    description: Optional[str] = Field(None, description="Detailed task description")

    # Classification
    status: str = Field(default="todo", description="Current lifecycle status")
    category: str = Field(default="feature", description="Task category")
    priority: Optional[str] = Field(None, description="Priority level")
    effort: Optional[str] = Field(None, description="Effort estimation")

    # File associations and notes
    related_files: List[str] = Field(default_factory=list, description="Files associated with the task")
    comments: List[Comment] = Field(default_factory=list, description="Append-only comments")

    # Timestamps
    created_at: UtcDatetime = Field(..., description="Creation timestamp")
    updated_at: UtcDatetime = Field(..., description="Last mutation timestamp")

    # Provenance
    author: Optional[str] = Field(None, description="Who created the task")
    branch: Optional[str] = Field(None, description="Branch the task was created on")

    @model_validator(mode="before")
    @classmethod
    def migrate_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for old, alias, attr in (
            ("created", "createdAt", "created_at"),
            ("lastUpdated", "updatedAt", "updated_at"),
            ("createdBy", "author", "author"),
        ):
            if old in data and alias not in data and attr not in data:
                data[alias] = data.pop(old)
        if "updatedAt" not in data and "updated_at" not in data:
            created = data.get("createdAt", data.get("created_at"))
            if created is not None:
                data["updatedAt"] = created
        return data

    @field_validator("related_files")
    @classmethod
    def dedupe_related_files(cls, v: List[str]) -> List[str]:
        return _unique(v)

    def search_text(self) -> str:
        """Lower-cased text searched by keyword queries."""
        parts = [self.title, self.description or ""]
        parts.extend(comment.text for comment in self.comments)
        return "\n".join(parts).lower()

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ArchivedTask(Task):
    """A task living in the archive partition."""

    archived_at: UtcDatetime = Field(..., description="When the task was archived")
    archive_reason: Optional[str] = Field(None, description="Why the task was archived")

    @model_validator(mode="before")
    @classmethod
    def migrate_archive_stamp(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("archived"), dict):
            data = dict(data)
            stamp = data.pop("archived")
            data.setdefault("archivedAt", stamp.get("date"))
            data.setdefault("archiveReason", stamp.get("reason"))
        return data

    @classmethod
    def from_task(cls, task: Task, archived_at: datetime, reason: Optional[str] = None) -> "ArchivedTask":
        payload = task.model_dump(by_alias=False)
        payload.update(archived_at=archived_at, archive_reason=reason)
        return cls.model_validate(payload)

    def to_task(self) -> Task:
        """Strip the archive stamps, keeping the original id."""
        payload = self.model_dump(by_alias=False, exclude={"archived_at", "archive_reason"})
        return Task.model_validate(payload)


class TaskCollection(_Record):
    """Active tasks document (``tasks.json``)."""

    tasks: List[Task] = Field(default_factory=list)
    next_hint: Optional[int] = Field(None, description="Informational: id the next task will get")

    @model_validator(mode="before")
    @classmethod
    def drop_legacy_counter(cls, data: Any) -> Any:
        # Older stores kept a "lastId" counter; ids are always derived from the records.
        if isinstance(data, dict) and "lastId" in data:
            data = dict(data)
            data.pop("lastId")
        return data

    def find(self, task_id: int) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def index_of(self, task_id: int) -> int:
        for index, task in enumerate(self.tasks):
            if task.id == task_id:
                return index
        return -1

    def ids(self) -> List[int]:
        return [task.id for task in self.tasks]

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ArchiveCollection(_Record):
    """Archived tasks document (``archives.json``)."""

    archived: List[ArchivedTask] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def migrate_legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict) and "archives" in data and "archived" not in data:
            data = dict(data)
            data["archived"] = data.pop("archives")
        return data

    def find(self, task_id: int) -> Optional[ArchivedTask]:
        for task in self.archived:
            if task.id == task_id:
                return task
        return None

    def index_of(self, task_id: int) -> int:
        for index, task in enumerate(self.archived):
            if task.id == task_id:
                return index
        return -1

    def ids(self) -> List[int]:
        return [task.id for task in self.archived]

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TaskDraft(BaseModel):
    """Fields supplied when creating a task; unset values get configured defaults."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    effort: Optional[str] = None
    related_files: List[str] = Field(default_factory=list)
    author: Optional[str] = None
    branch: Optional[str] = None
