"""
Development journal service.

Entries are appended and never edited. Listing and search return newest
entries first.
"""

from typing import List, Optional, Sequence, Union

import structlog

from tasktracker.core.exceptions import InvalidValueError, ValidationError
from tasktracker.journal.models import EntryType, JournalEntry, JournalLog
from tasktracker.storage.store import DocumentKind, Store
from tasktracker.tasks.engine import Clock
from tasktracker.tasks.files import normalize_paths
from tasktracker.tasks.identity import next_id
from tasktracker.tasks.models import ArchivedTask, Task, utcnow

logger = structlog.get_logger(__name__)

MAX_ENTRY_LENGTH = 5000


def parse_entry_type(value: Union[str, EntryType, None]) -> EntryType:
    if isinstance(value, EntryType):
        return value
    if value is None or not str(value).strip():
        return EntryType.PROGRESS
    try:
        return EntryType(str(value).strip().lower())
    except ValueError:
        raise InvalidValueError("type", value, [kind.value for kind in EntryType]) from None


def newest_first(entries: Sequence[JournalEntry]) -> List[JournalEntry]:
    return sorted(entries, key=lambda entry: (entry.timestamp, entry.id), reverse=True)


class JournalService:
    """Append, list and search journal entries."""

    def __init__(self, store: Store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or utcnow

    def add(
        self,
        text: str,
        entry_type: Union[str, EntryType, None] = None,
        tags: Optional[List[str]] = None,
        related_task_id: Optional[int] = None,
        files: Optional[List[str]] = None,
    ) -> JournalEntry:
        """
        Append an entry.

        Args:
            text: Entry body
            entry_type: progress, decision, blocker, learning or git-commit
            tags: Free-form tags
            related_task_id: Task the entry refers to; not required to exist
            files: Project-relative paths the entry mentions

        Returns:
            The persisted entry

        Raises:
            ValidationError: Empty or oversized text, bad file path
            InvalidValueError: Unknown entry type
        """
        body = (text or "").strip()
        if not body:
            raise ValidationError("Journal entry text is required", field="text", value=text)
        if len(body) > MAX_ENTRY_LENGTH:
            raise ValidationError(
                f"Journal entry must be at most {MAX_ENTRY_LENGTH} characters", field="text", value=body
            )
        kind = parse_entry_type(entry_type)
        paths = normalize_paths(files or [])

        with self.store.lock():
            journal: JournalLog = self.store.load(DocumentKind.JOURNAL)
            entry = JournalEntry(
                id=next_id(journal.ids()),
                type=kind,
                text=body,
                tags=[tag.lower() for tag in tags or []],
                files=paths,
                timestamp=self.clock(),
                related_task_id=related_task_id,
            )
            journal.root.append(entry)
            self.store.save(DocumentKind.JOURNAL, journal)

        if related_task_id is not None and self.related_task(entry) is None:
            logger.debug("Journal entry references unknown task", entry_id=entry.id, task_id=related_task_id)
        logger.info("Journal entry added", entry_id=entry.id, type=kind.value)
        return entry

    def list(
        self,
        entry_type: Union[str, EntryType, None] = None,
        tag: Optional[str] = None,
        task_id: Optional[int] = None,
        query: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[JournalEntry]:
        """Entries matching every supplied filter, newest first."""
        if limit is not None and limit < 1:
            raise ValidationError("limit must be at least 1", field="limit", value=limit)
        kind = parse_entry_type(entry_type) if entry_type else None
        wanted_tag = tag.strip().lower() if tag else None

        journal: JournalLog = self.store.load(DocumentKind.JOURNAL)
        entries = [
            entry for entry in journal.entries
            if (kind is None or entry.type == kind)
            and (wanted_tag is None or wanted_tag in (t.lower() for t in entry.tags))
            and (task_id is None or entry.related_task_id == task_id)
            and (not query or entry.matches(query.strip()))
        ]
        entries = newest_first(entries)
        return entries[:limit] if limit else entries

    def search(self, query: str, limit: Optional[int] = None) -> List[JournalEntry]:
        """Case-insensitive search over text, tags, type and files."""
        needle = (query or "").strip()
        if not needle:
            raise ValidationError("Search query cannot be empty", field="query", value=query)
        return self.list(query=needle, limit=limit)

    def related_task(self, entry: JournalEntry) -> Optional[Union[Task, ArchivedTask]]:
        """Weak lookup of the entry's task; None if it no longer exists."""
        if entry.related_task_id is None:
            return None
        task = self.store.load(DocumentKind.TASKS).find(entry.related_task_id)
        if task is None:
            task = self.store.load(DocumentKind.ARCHIVES).find(entry.related_task_id)
        return task
