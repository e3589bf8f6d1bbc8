"""
Task Query Engine - filtered, ordered, paginated reads

Read-only: nothing in this module writes to the store.

Filters combine conjunctively; every filter left unset matches everything.
Pagination is 1-indexed. With zero matches ``page_count`` is 0, and any page
past the last one comes back empty rather than failing.
"""

import math
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tasktracker.core.config import ProjectConfig
from tasktracker.core.exceptions import ValidationError
from tasktracker.journal.models import EntryType, JournalLog
from tasktracker.storage.store import DocumentKind, Store
from tasktracker.tasks.changes import ChangeKind, FileChange
from tasktracker.tasks.files import normalize_path, paths_match
from tasktracker.tasks.models import Task, TaskCollection

logger = structlog.get_logger(__name__)


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SortMode(str, Enum):
    """Result orderings."""
    ID = "id"
    PRIORITY = "priority"
    UPDATED = "updated"
    CREATED = "created"


class TaskFilter(_Payload):
    """Optional predicates; unset ones match everything."""

    status: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    author: Optional[str] = None
    branch: Optional[str] = None
    keyword: Optional[str] = Field(None, description="Substring of title, description or comments")
    file: Optional[str] = Field(None, description="Path that must be in relatedFiles")

    def is_empty(self) -> bool:
        return all(value in (None, "") for value in self.model_dump().values())


class Pagination(_Payload):
    page: int = 1
    page_size: Optional[int] = Field(None, description="Absent: one page with every match")


class QueryResult(_Payload):
    items: List[Task] = Field(default_factory=list)
    total_count: int = 0
    page_count: int = 0
    page: int = 1
    page_size: Optional[int] = None


class Stats(_Payload):
    """Aggregate counts; vocabulary keys are always present."""

    total_active: int = 0
    total_archived: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)
    journal_total: int = 0
    journal_by_type: Dict[str, int] = Field(default_factory=dict)


class TaskChange(_Payload):
    task_id: int
    title: str
    status: str
    files: List[str] = Field(default_factory=list, description="Changed files related to the task")


class ChangesReport(_Payload):
    source: str = Field("explicit", description="explicit, git or snapshot")
    changed_files: List[str] = Field(default_factory=list)
    new_files: List[str] = Field(default_factory=list)
    modified_files: List[str] = Field(default_factory=list)
    deleted_files: List[str] = Field(default_factory=list)
    tasks: List[TaskChange] = Field(default_factory=list)
    unmatched_files: List[str] = Field(default_factory=list)


def _counts(values: Iterable[Optional[str]], vocabulary: List[str]) -> Dict[str, int]:
    counts = {key: 0 for key in vocabulary}
    extras: Dict[str, int] = {}
    for value in values:
        if value is None:
            continue
        if value in counts:
            counts[value] += 1
        else:
            extras[value] = extras.get(value, 0) + 1
    for key in sorted(extras):
        counts[key] = extras[key]
    return counts


class QueryEngine:
    """Answers filtered, paginated reads over the active partition."""

    def __init__(self, store: Store, config: ProjectConfig):
        self.store = store
        self.config = config

    # ============================================================================
    # QUERY
    # ============================================================================

    def query(
        self,
        filters: Optional[TaskFilter] = None,
        pagination: Optional[Pagination] = None,
        sort: SortMode = SortMode.ID,
    ) -> QueryResult:
        """
        Filter, order and paginate active tasks.

        Args:
            filters: Conjunctive predicates
            pagination: Page selection; default is a single page of everything
            sort: Ordering mode

        Returns:
            QueryResult with the page items and totals

        Raises:
            ValidationError: page or page_size below 1, or an invalid file path
        """
        filters = filters or TaskFilter()
        pagination = pagination or Pagination()
        self._validate_pagination(pagination)

        tasks: TaskCollection = self.store.load(DocumentKind.TASKS)
        matching = self.filter(tasks.tasks, filters)
        ordered = self.sort(matching, SortMode(sort))

        total = len(ordered)
        if pagination.page_size is None:
            page_count = 1 if total else 0
            items = ordered if pagination.page == 1 else []
        else:
            page_count = math.ceil(total / pagination.page_size)
            start = (pagination.page - 1) * pagination.page_size
            items = ordered[start:start + pagination.page_size]

        logger.debug("Query executed", total=total, page=pagination.page, page_count=page_count)
        return QueryResult(
            items=items,
            total_count=total,
            page_count=page_count,
            page=pagination.page,
            page_size=pagination.page_size,
        )

    def filter(self, tasks: Iterable[Task], filters: TaskFilter) -> List[Task]:
        """Tasks satisfying every supplied predicate."""
        equality: Dict[str, str] = {}
        for name in ("status", "category", "priority", "author", "branch"):
            value = getattr(filters, name)
            if value:
                equality[name] = value.strip().lower()
        keyword = (filters.keyword or "").lower()
        file = normalize_path(filters.file, field="file") if filters.file else None

        matching = []
        for task in tasks:
            if any((getattr(task, name) or "").lower() != value for name, value in equality.items()):
                continue
            if keyword and keyword not in task.search_text():
                continue
            if file and file not in task.related_files:
                continue
            matching.append(task)
        return matching

    def sort(self, tasks: List[Task], mode: SortMode) -> List[Task]:
        """Stable ordering; every mode breaks ties by id."""
        if mode == SortMode.PRIORITY:
            rank = {value: index for index, value in enumerate(self.config.priorities)}
            fallback = len(rank)
            return sorted(tasks, key=lambda task: (rank.get(task.priority, fallback), task.id))
        if mode == SortMode.UPDATED:
            return sorted(tasks, key=lambda task: (-task.updated_at.timestamp(), task.id))
        if mode == SortMode.CREATED:
            return sorted(tasks, key=lambda task: (task.created_at, task.id))
        return sorted(tasks, key=lambda task: task.id)

    def _validate_pagination(self, pagination: Pagination) -> None:
        if pagination.page < 1:
            raise ValidationError("page must be at least 1", field="page", value=pagination.page)
        if pagination.page_size is not None and pagination.page_size < 1:
            raise ValidationError("pageSize must be at least 1", field="pageSize", value=pagination.page_size)

    # ============================================================================
    # AGGREGATES
    # ============================================================================

    def stats(self) -> Stats:
        """Counts by status, category and priority plus journal totals."""
        tasks: TaskCollection = self.store.load(DocumentKind.TASKS)
        archives = self.store.load(DocumentKind.ARCHIVES)
        journal: JournalLog = self.store.load(DocumentKind.JOURNAL)

        return Stats(
            total_active=len(tasks.tasks),
            total_archived=len(archives.archived),
            by_status=_counts((task.status for task in tasks.tasks), self.config.statuses),
            by_category=_counts((task.category for task in tasks.tasks), self.config.categories),
            by_priority=_counts((task.priority for task in tasks.tasks), self.config.priorities),
            journal_total=len(journal.entries),
            journal_by_type=_counts(
                (entry.type.value for entry in journal.entries), [kind.value for kind in EntryType]
            ),
        )

    def changes(self, files: Iterable[Union[str, FileChange]], source: str = "explicit") -> ChangesReport:
        """
        Match changed files against task file associations.

        Args:
            files: Changed paths, or FileChange pairs from a ChangeDetector;
                plain paths count as modified
            source: Where the change set came from

        Returns:
            Active tasks touched by the change set (id order), the changed
            files grouped by kind and the files no task relates to
        """
        report = ChangesReport(source=source)
        by_kind = {
            ChangeKind.NEW: report.new_files,
            ChangeKind.MODIFIED: report.modified_files,
            ChangeKind.DELETED: report.deleted_files,
        }
        for item in files:
            change = item if isinstance(item, FileChange) else FileChange(ChangeKind.MODIFIED, item)
            path = normalize_path(change.path, field="files")
            if path not in report.changed_files:
                report.changed_files.append(path)
                by_kind[ChangeKind(change.kind)].append(path)
        changed = report.changed_files
        tasks: TaskCollection = self.store.load(DocumentKind.TASKS)

        matched = set()
        for task in sorted(tasks.tasks, key=lambda item: item.id):
            hits = [
                path for path in changed
                if any(paths_match(path, related) for related in task.related_files)
            ]
            if hits:
                matched.update(hits)
                report.tasks.append(TaskChange(task_id=task.id, title=task.title, status=task.status, files=hits))

        report.unmatched_files = [path for path in changed if path not in matched]
        return report
