"""
Journal Models

Append-only development journal: progress notes, decisions, blockers,
learnings and commit summaries captured for humans and AI assistants.
"""

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator, model_validator
from pydantic.alias_generators import to_camel

from tasktracker.tasks.models import UtcDatetime, utcnow


class EntryType(str, Enum):
    """Kinds of journal entries."""
    PROGRESS = "progress"
    DECISION = "decision"
    BLOCKER = "blocker"
    LEARNING = "learning"
    GIT_COMMIT = "git-commit"


# Types written by older journals.
_LEGACY_TYPES = {"idea": "learning", "context": "progress"}


class JournalEntry(BaseModel):
    """
    A single journal entry. Immutable once written.

    ``related_task_id`` is a weak reference: the task may since have been
    archived or may never have existed.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow")

    id: int = Field(..., ge=1, description="Unique entry identifier")
    type: EntryType = Field(default=EntryType.PROGRESS, description="Entry kind")
    text: str = Field(..., min_length=1, description="Free-form content")
    tags: List[str] = Field(default_factory=list, description="Tags for search and grouping")
    files: List[str] = Field(default_factory=list, description="Files the entry talks about")
    timestamp: UtcDatetime = Field(default_factory=utcnow, description="Creation time")
    related_task_id: Optional[int] = Field(None, description="Task the entry refers to")

    @model_validator(mode="before")
    @classmethod
    def migrate_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "content" in data and "text" not in data:
            data["text"] = data.pop("content")
        if "taskId" in data and "relatedTaskId" not in data:
            data["relatedTaskId"] = data.pop("taskId")
        if data.get("type") in _LEGACY_TYPES:
            data["type"] = _LEGACY_TYPES[data["type"]]
        return data

    @field_validator("tags", "files")
    @classmethod
    def dedupe(cls, v: List[str]) -> List[str]:
        unique: List[str] = []
        for item in v:
            item = item.strip()
            if item and item not in unique:
                unique.append(item)
        return unique

    def matches(self, query: str) -> bool:
        """Case-insensitive match over text, tags, type and files."""
        needle = query.lower()
        if needle in self.text.lower() or needle in self.type.value:
            return True
        return any(needle in tag.lower() for tag in self.tags) or any(
            needle in path.lower() for path in self.files
        )


class JournalLog(RootModel[List[JournalEntry]]):
    """Journal document (``journal.json``): entries in append order."""

    root: List[JournalEntry] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def unwrap_legacy_document(cls, data: Any) -> Any:
        # Older journals were stored as {"entries": [...]}.
        if isinstance(data, dict) and "entries" in data:
            return data["entries"]
        return data

    @property
    def entries(self) -> List[JournalEntry]:
        return self.root

    def ids(self) -> List[int]:
        return [entry.id for entry in self.root]

    def find(self, entry_id: int) -> Optional[JournalEntry]:
        for entry in self.root:
            if entry.id == entry_id:
                return entry
        return None

    def to_document(self) -> List[Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
