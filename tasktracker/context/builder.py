"""
Context Builder - size-bounded project summaries for AI assistants

Assembly runs in four steps:
1. Resolve the working set (scoped task or file, else open and recent tasks)
2. Render every task and journal entry with a fixed template
3. Concatenate: header, tasks by id ascending, journal newest first
4. Enforce the budget by evicting the least relevant blocks and appending a
   truncation marker

Output depends only on the request and the store contents, so identical
requests against an unchanged store return byte-identical documents. That
is what makes the fingerprint cache safe.
"""

import hashlib
import json
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

import structlog

from tasktracker.context import templates
from tasktracker.context.cache import ContextCache
from tasktracker.context.models import (
    JOURNAL_LIMITS,
    ContextFormat,
    ContextRequest,
    ContextResult,
    Verbosity,
)
from tasktracker.core.config import ProjectConfig
from tasktracker.core.exceptions import NotFoundError
from tasktracker.journal.models import JournalEntry, JournalLog
from tasktracker.journal.service import newest_first
from tasktracker.storage.store import DocumentKind, Store
from tasktracker.tasks.files import normalize_path, paths_match
from tasktracker.tasks.models import ArchiveCollection, Task, TaskCollection

logger = structlog.get_logger(__name__)

DONE_STATUS = "done"
NO_TASKS_SECTION = "## Tasks\n\n_No tasks in scope._"

# (characters, lines). Lines are newline-terminated; every rendered
# document ends with a newline.
Size = Tuple[int, int]


def _size(text: str) -> Size:
    return len(text), text.count("\n")


def _dump(document: Any) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


@dataclass
class WorkingSet:
    """Records selected for a context document."""
    tasks: List[Task] = field(default_factory=list)
    entries: List[JournalEntry] = field(default_factory=list)
    pinned_task_id: Optional[int] = None
    scope_label: str = ""
    scope: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _Assembly:
    tasks: List[Task]
    entries: List[JournalEntry]
    omitted_tasks: int = 0
    omitted_entries: int = 0
    content_cut: bool = False

    @property
    def truncated(self) -> bool:
        return bool(self.omitted_tasks or self.omitted_entries or self.content_cut)


class ContextBuilder:
    """
    Builds deterministic, budget-bounded context documents.

    Rendered documents are cached under a fingerprint of the request and the
    store state marker; a hit returns the stored document unchanged.
    """

    def __init__(self, store: Store, config: ProjectConfig, cache: Optional[ContextCache] = None):
        self.store = store
        self.config = config
        self.cache = cache

    # ============================================================================
    # PUBLIC API
    # ============================================================================

    def build(self, request: ContextRequest) -> ContextResult:
        """
        Build (or fetch from cache) a context document.

        Args:
            request: Scope, verbosity, format and budget

        Returns:
            ContextResult whose content never exceeds the budget

        Raises:
            NotFoundError: If the scoped task exists in neither partition
            ValidationError: If the scoped file path is invalid
        """
        fingerprint = self.fingerprint(request)
        if self.cache is not None:
            cached = self.cache.get(fingerprint)
            if cached is not None:
                return cached

        working_set = self.select(request)
        content, assembly = self._assemble(working_set, request)

        result = ContextResult(
            content=content,
            fingerprint=fingerprint,
            format=request.format,
            truncated=assembly.truncated,
            omitted_tasks=assembly.omitted_tasks,
            omitted_entries=assembly.omitted_entries,
            task_ids=[task.id for task in assembly.tasks],
            entry_ids=[entry.id for entry in assembly.entries],
        )

        logger.info(
            "Context built",
            scope=working_set.scope_label,
            chars=len(content),
            tasks=len(result.task_ids),
            entries=len(result.entry_ids),
            truncated=result.truncated,
        )

        if self.cache is not None:
            self.cache.put(result)
        return result

    def fingerprint(self, request: ContextRequest) -> str:
        """sha256 over the request parameters and the store state marker."""
        payload = dict(request.fingerprint_fields())
        payload["state"] = self.store.state_marker()
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    # ============================================================================
    # WORKING SET
    # ============================================================================

    def select(self, request: ContextRequest) -> WorkingSet:
        """Resolve the tasks and journal entries relevant to the request."""
        tasks: TaskCollection = self.store.load(DocumentKind.TASKS)
        journal: JournalLog = self.store.load(DocumentKind.JOURNAL)

        if request.task_id is not None:
            working_set = self._select_task(request.task_id, tasks, journal)
        elif request.file:
            working_set = self._select_file(normalize_path(request.file), tasks, journal)
        else:
            working_set = self._select_recent(request.recent_days, tasks, journal)

        working_set.tasks.sort(key=lambda task: task.id)
        limit = JOURNAL_LIMITS[request.verbosity]
        working_set.entries = newest_first(working_set.entries)[:limit]
        return working_set

    def _select_task(self, task_id: int, tasks: TaskCollection, journal: JournalLog) -> WorkingSet:
        task = tasks.find(task_id)
        if task is None:
            archives: ArchiveCollection = self.store.load(DocumentKind.ARCHIVES)
            task = archives.find(task_id)
        if task is None:
            raise NotFoundError(f"Task #{task_id} not found", entity_type="task", entity_id=task_id)

        entries = [
            entry for entry in journal.entries
            if entry.related_task_id == task_id
            or any(paths_match(path, related) for path in entry.files for related in task.related_files)
        ]
        return WorkingSet(
            tasks=[task],
            entries=entries,
            pinned_task_id=task_id,
            scope_label=f"task #{task_id}",
            scope={"type": "task", "taskId": task_id},
        )

    def _select_file(self, path: str, tasks: TaskCollection, journal: JournalLog) -> WorkingSet:
        related = [
            task for task in tasks.tasks
            if any(paths_match(path, candidate) for candidate in task.related_files)
        ]
        related_ids = {task.id for task in related}
        entries = [
            entry for entry in journal.entries
            if entry.related_task_id in related_ids
            or any(paths_match(path, candidate) for candidate in entry.files)
        ]
        return WorkingSet(
            tasks=related,
            entries=entries,
            scope_label=f"file {path}",
            scope={"type": "file", "file": path},
        )

    def _select_recent(self, days: int, tasks: TaskCollection, journal: JournalLog) -> WorkingSet:
        anchor = self._newest_timestamp(tasks, journal)
        if anchor is None:
            return WorkingSet(
                scope_label=f"open and recent tasks (last {days} days)",
                scope={"type": "recent", "recentDays": days, "until": None},
            )

        cutoff = anchor - timedelta(days=days)
        selected = [
            task for task in tasks.tasks
            if task.status != DONE_STATUS or task.updated_at >= cutoff
        ]
        entries = [entry for entry in journal.entries if entry.timestamp >= cutoff]
        until = anchor.strftime("%Y-%m-%d")
        return WorkingSet(
            tasks=selected,
            entries=entries,
            scope_label=f"open and recent tasks (last {days} days up to {until})",
            scope={"type": "recent", "recentDays": days, "until": until},
        )

    @staticmethod
    def _newest_timestamp(tasks: TaskCollection, journal: JournalLog) -> Optional[datetime]:
        stamps = [task.updated_at for task in tasks.tasks]
        stamps.extend(entry.timestamp for entry in journal.entries)
        return max(stamps) if stamps else None

    # ============================================================================
    # ASSEMBLY WITH BUDGET
    # ============================================================================

    def _assemble(self, working_set: WorkingSet, request: ContextRequest) -> Tuple[str, _Assembly]:
        """
        Render within budget.

        Eviction order: journal entries oldest first, then tasks least
        recently updated first. The scoped task is never evicted; if it alone
        exceeds the budget its rendering is cut instead.

        Blocks are rendered once up front; an eviction step only adjusts the
        layout's running size totals.
        """
        layout = self._layout(working_set, request)
        assembly = _Assembly(tasks=list(working_set.tasks), entries=list(working_set.entries))

        evictable_tasks = sorted(
            (task for task in working_set.tasks if task.id != working_set.pinned_task_id),
            key=lambda task: (task.updated_at, task.id),
        )
        eviction_queue: Deque[Tuple[str, Any]] = deque(("entry", entry) for entry in reversed(assembly.entries))
        eviction_queue.extend(("task", task) for task in evictable_tasks)

        evicted: Dict[str, Set[int]] = {"task": set(), "entry": set()}
        while eviction_queue and not self._size_fits(layout.measure(assembly), request):
            kind, record = eviction_queue.popleft()
            layout.drop(kind, record.id)
            evicted[kind].add(record.id)
            if kind == "entry":
                assembly.omitted_entries += 1
            else:
                assembly.omitted_tasks += 1

        assembly.tasks = [task for task in assembly.tasks if task.id not in evicted["task"]]
        assembly.entries = [entry for entry in assembly.entries if entry.id not in evicted["entry"]]

        content = layout.render(assembly)
        if not self._fits(content, request):
            assembly.content_cut = True
            content = self._cut(working_set, assembly, request, layout)
        return content, assembly

    def _layout(self, working_set: WorkingSet, request: ContextRequest) -> "_Layout":
        if request.format == ContextFormat.JSON:
            return _JsonLayout(self, working_set, request.verbosity)
        return _MarkdownLayout(self, working_set, request.verbosity)

    def _fits(self, content: str, request: ContextRequest) -> bool:
        return self._size_fits(_size(content), request)

    @staticmethod
    def _size_fits(size: Size, request: ContextRequest) -> bool:
        chars, lines = size
        if chars > request.budget_chars:
            return False
        if request.budget_lines is not None and lines > request.budget_lines:
            return False
        return True

    def _task_verbosity(self, task: Task, working_set: WorkingSet, verbosity: Verbosity) -> Verbosity:
        # The scoped task always shows at least its files and classification.
        if task.id == working_set.pinned_task_id and verbosity == Verbosity.BRIEF:
            return Verbosity.NORMAL
        return verbosity

    # --------------------------------------------------------------- last resort

    def _cut(self, working_set: WorkingSet, assembly: _Assembly, request: ContextRequest, layout: "_Layout") -> str:
        """Shrink pinned content that does not fit even after eviction."""
        if request.format == ContextFormat.JSON:
            return self._cut_json(working_set, assembly, request)

        marker = templates.truncation_marker(assembly.omitted_tasks, assembly.omitted_entries)
        body = layout.body(assembly)
        room = request.budget_chars - len(marker) - 2
        cut = body[:room]
        if request.budget_lines is not None:
            cut = "\n".join(cut.split("\n")[: request.budget_lines - 1])
        return cut.rstrip() + "\n" + marker + "\n"

    def _cut_json(self, working_set: WorkingSet, assembly: _Assembly, request: ContextRequest) -> str:
        # JSON must stay parseable, so shrink fields instead of cutting text.
        date_format = self.config.date_format
        document = templates.header_payload(self.config.project_name, working_set.scope, Verbosity.BRIEF)
        document["tasks"] = [templates.task_payload(task, Verbosity.BRIEF, date_format) for task in assembly.tasks]
        document["journal"] = [
            templates.entry_payload(entry, Verbosity.BRIEF, date_format) for entry in assembly.entries
        ]
        marker = templates.marker_payload(assembly.omitted_tasks, assembly.omitted_entries, content_cut=True)
        document["truncated"] = marker
        content = _dump(document)
        if self._fits(content, request):
            return content

        document["project"] = templates.clip(document["project"], 40)
        if "file" in document["scope"]:
            document["scope"]["file"] = templates.clip(document["scope"]["file"], 60)
        for payload in document["tasks"]:
            payload["title"] = templates.clip(payload["title"], 40)
        content = _dump(document)
        if self._fits(content, request):
            return content

        return _dump({"truncated": marker})


# ============================================================================
# LAYOUTS
# ============================================================================

class _Blocks:
    """Rendered blocks of one kind, keyed by record id, with running size totals."""

    def __init__(self, rendered: Dict[int, str], sizes: Dict[int, Size]):
        self.rendered = rendered
        self.sizes = sizes
        self.count = len(rendered)
        self.chars = sum(chars for chars, _ in sizes.values())
        self.lines = sum(lines for _, lines in sizes.values())

    def drop(self, key: int) -> None:
        chars, lines = self.sizes[key]
        self.count -= 1
        self.chars -= chars
        self.lines -= lines

    def joined(self, separator: str) -> Size:
        """Size of the remaining blocks joined by ``separator``."""
        gaps = max(self.count - 1, 0)
        sep_chars, sep_lines = _size(separator)
        return self.chars + sep_chars * gaps, self.lines + sep_lines * gaps


class _Layout:
    """
    A document format over blocks rendered once per build.

    ``measure`` reports the exact size ``render`` would produce for the
    blocks not yet dropped, without rendering them again.
    """

    blocks: Dict[str, _Blocks]

    def drop(self, kind: str, key: int) -> None:
        self.blocks[kind].drop(key)

    def measure(self, assembly: _Assembly) -> Size:
        raise NotImplementedError

    def render(self, assembly: _Assembly) -> str:
        raise NotImplementedError


class _MarkdownLayout(_Layout):

    def __init__(self, builder: ContextBuilder, working_set: WorkingSet, verbosity: Verbosity):
        date_format = builder.config.date_format
        self.verbosity = verbosity
        self.separator = templates.section_separator(verbosity)
        self.header = templates.render_header(builder.config.project_name, working_set.scope_label, verbosity)
        tasks = {
            task.id: templates.render_task(task, builder._task_verbosity(task, working_set, verbosity), date_format)
            for task in working_set.tasks
        }
        entries = {entry.id: templates.render_entry(entry, verbosity, date_format) for entry in working_set.entries}
        self.blocks = {
            "task": _Blocks(tasks, {key: _size(text) for key, text in tasks.items()}),
            "entry": _Blocks(entries, {key: _size(text) for key, text in entries.items()}),
        }

    def measure(self, assembly: _Assembly) -> Size:
        sections = [_size(self.header)]
        for kind, title in (("task", "Tasks"), ("entry", "Journal")):
            blocks = self.blocks[kind]
            if blocks.count:
                head_chars, head_lines = _size(templates.section_heading(title))
                chars, lines = blocks.joined(self.separator)
                sections.append((head_chars + chars, head_lines + lines))
            elif kind == "task" and not assembly.omitted_tasks:
                sections.append(_size(NO_TASKS_SECTION))
        if assembly.omitted_tasks or assembly.omitted_entries:
            sections.append(_size(templates.truncation_marker(assembly.omitted_tasks, assembly.omitted_entries)))

        gap_chars, gap_lines = _size("\n\n")
        gaps = len(sections) - 1
        # Trailing newline.
        chars = sum(size[0] for size in sections) + gap_chars * gaps + 1
        lines = sum(size[1] for size in sections) + gap_lines * gaps + 1
        return chars, lines

    def body(self, assembly: _Assembly) -> str:
        sections = [self.header]
        if assembly.tasks:
            blocks = [self.blocks["task"].rendered[task.id] for task in assembly.tasks]
            sections.append(templates.render_section("Tasks", blocks, self.verbosity))
        elif not assembly.omitted_tasks:
            sections.append(NO_TASKS_SECTION)

        if assembly.entries:
            blocks = [self.blocks["entry"].rendered[entry.id] for entry in assembly.entries]
            sections.append(templates.render_section("Journal", blocks, self.verbosity))

        return "\n\n".join(sections)

    def render(self, assembly: _Assembly) -> str:
        body = self.body(assembly)
        if assembly.omitted_tasks or assembly.omitted_entries:
            body += "\n\n" + templates.truncation_marker(assembly.omitted_tasks, assembly.omitted_entries)
        return body + "\n"


# Framing json.dumps(indent=2) puts around a non-empty list held by a
# top-level key; its items sit two levels deep.
_LIST_OPEN = "[\n    "
_LIST_CLOSE = "\n  ]"
_ITEM_SEPARATOR = ",\n    "
_ITEM_INDENT = "    "


class _JsonLayout(_Layout):

    def __init__(self, builder: ContextBuilder, working_set: WorkingSet, verbosity: Verbosity):
        date_format = builder.config.date_format
        self.head = templates.header_payload(builder.config.project_name, working_set.scope, verbosity)
        self.payloads: Dict[str, Dict[int, Dict[str, Any]]] = {
            "task": {
                task.id: templates.task_payload(task, builder._task_verbosity(task, working_set, verbosity), date_format)
                for task in working_set.tasks
            },
            "entry": {
                entry.id: templates.entry_payload(entry, verbosity, date_format) for entry in working_set.entries
            },
        }
        self.blocks = {}
        for kind, payloads in self.payloads.items():
            rendered = {key: json.dumps(payload, indent=2, ensure_ascii=False) for key, payload in payloads.items()}
            self.blocks[kind] = _Blocks(rendered, {key: self._nested_size(text) for key, text in rendered.items()})

    @staticmethod
    def _nested_size(text: str) -> Size:
        # Nested two levels down, every line after the first gains the indent.
        chars, lines = _size(text)
        return chars + len(_ITEM_INDENT) * lines, lines

    def document(self, assembly: _Assembly, with_items: bool = True) -> Dict[str, Any]:
        document = dict(self.head)
        document["tasks"] = [self.payloads["task"][task.id] for task in assembly.tasks] if with_items else []
        document["journal"] = [self.payloads["entry"][entry.id] for entry in assembly.entries] if with_items else []
        marker = templates.marker_payload(assembly.omitted_tasks, assembly.omitted_entries)
        if marker is not None:
            document["truncated"] = marker
        return document

    def measure(self, assembly: _Assembly) -> Size:
        chars, lines = _size(_dump(self.document(assembly, with_items=False)))
        empty_chars, empty_lines = _size("[]")
        frame_chars, frame_lines = _size(_LIST_OPEN + _LIST_CLOSE)
        for blocks in self.blocks.values():
            if blocks.count:
                item_chars, item_lines = blocks.joined(_ITEM_SEPARATOR)
                chars += item_chars + frame_chars - empty_chars
                lines += item_lines + frame_lines - empty_lines
        return chars, lines

    def render(self, assembly: _Assembly) -> str:
        return _dump(self.document(assembly))
