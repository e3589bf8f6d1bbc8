"""
Command intents and dispatch.

Every operation the tracker supports is a typed command model tagged by
``op``. ``parse_command`` turns a raw payload into the matching variant
(pydantic discriminated union); ``CommandDispatcher`` routes it through a
lookup table keyed by the tag and converts domain errors into a
``CommandResult`` carrying the error kind and exit code. Nothing here
terminates the process.
"""

from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Tuple, Union, get_args

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from tasktracker.context.builder import ContextBuilder
from tasktracker.context.models import ContextFormat, ContextRequest, Verbosity
from tasktracker.core.exceptions import TaskTrackerError, ValidationError
from tasktracker.service import TrackerService
from tasktracker.tasks.models import ArchivedTask, TaskDraft
from tasktracker.tasks.query import Pagination, SortMode, TaskFilter

logger = structlog.get_logger(__name__)


class _Command(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class InitProject(_Command):
    op: Literal["init"] = "init"
    project_name: str = ""
    force: bool = False


class CreateTask(_Command):
    op: Literal["create"] = "create"
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    effort: Optional[str] = None
    files: List[str] = Field(default_factory=list)
    author: Optional[str] = None
    branch: Optional[str] = None


class QueryTasks(_Command):
    op: Literal["query"] = "query"
    status: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    author: Optional[str] = None
    branch: Optional[str] = None
    keyword: Optional[str] = None
    file: Optional[str] = None
    sort: SortMode = SortMode.ID
    page: int = 1
    page_size: Optional[int] = None


class ViewTask(_Command):
    op: Literal["view"] = "view"
    task_id: int


class UpdateField(_Command):
    op: Literal["update"] = "update"
    task_id: int
    field: str
    value: Optional[str] = None


class ArchiveTask(_Command):
    op: Literal["archive"] = "archive"
    task_id: int
    reason: Optional[str] = None


class RestoreTask(_Command):
    op: Literal["restore"] = "restore"
    task_id: int


class ListArchives(_Command):
    op: Literal["archives"] = "archives"


class ShowStats(_Command):
    op: Literal["stats"] = "stats"


class BuildContext(_Command):
    op: Literal["context"] = "context"
    task_id: Optional[int] = None
    file: Optional[str] = None
    verbosity: Verbosity = Verbosity.NORMAL
    format: ContextFormat = ContextFormat.MARKDOWN
    budget_chars: Optional[int] = None
    budget_lines: Optional[int] = None
    recent_days: Optional[int] = None
    use_cache: bool = True


class DetectChanges(_Command):
    op: Literal["changes"] = "changes"
    files: Optional[List[str]] = Field(None, description="Changed paths; absent: detect them")
    use_git: bool = Field(True, description="False forces the hash snapshot")


class AddJournalEntry(_Command):
    op: Literal["journal-add"] = "journal-add"
    text: str
    type: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    task_id: Optional[int] = None
    files: List[str] = Field(default_factory=list)


class ListJournal(_Command):
    op: Literal["journal-list"] = "journal-list"
    type: Optional[str] = None
    tag: Optional[str] = None
    task_id: Optional[int] = None
    query: Optional[str] = None
    limit: Optional[int] = None


class ConfigureProject(_Command):
    op: Literal["config"] = "config"
    action: Literal["show", "add", "remove", "set"] = "show"
    key: Optional[str] = Field(None, description="Vocabulary name (add/remove) or option name (set)")
    value: Optional[str] = None


class RunBatch(_Command):
    op: Literal["batch"] = "batch"
    operations: List[Dict[str, Any]] = Field(default_factory=list, description="Command payloads, run in order")
    fail_fast: bool = False


Command = Annotated[
    Union[
        InitProject,
        CreateTask,
        QueryTasks,
        ViewTask,
        UpdateField,
        ArchiveTask,
        RestoreTask,
        ListArchives,
        ShowStats,
        BuildContext,
        DetectChanges,
        AddJournalEntry,
        ListJournal,
        ConfigureProject,
        RunBatch,
    ],
    Field(discriminator="op"),
]

_COMMAND_ADAPTER: TypeAdapter = TypeAdapter(Command)


def validation_error_from_pydantic(error: PydanticValidationError) -> ValidationError:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or None
    message = first["msg"] if location is None else f"{location}: {first['msg']}"
    return ValidationError(message, field=location, value=first.get("input"))


def parse_command(payload: Dict[str, Any]) -> Command:
    """
    Parse a raw payload (e.g. decoded JSON) into a command variant.

    Raises:
        ValidationError: Unknown ``op`` or invalid parameters
    """
    try:
        return _COMMAND_ADAPTER.validate_python(payload)
    except PydanticValidationError as e:
        raise validation_error_from_pydantic(e) from e


class ErrorInfo(BaseModel):
    kind: str
    message: str
    error_code: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class CommandResult(BaseModel):
    """Outcome of one command; ``data`` holds the domain object."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    op: str
    ok: bool = True
    data: Any = None
    message: Optional[str] = None
    error: Optional[ErrorInfo] = None
    exit_code: int = 0

    @classmethod
    def failure(cls, op: str, error: TaskTrackerError) -> "CommandResult":
        return cls(
            op=op,
            ok=False,
            message=error.message,
            error=ErrorInfo.model_validate(error.to_dict()),
            exit_code=error.exit_code,
        )

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready representation."""
        payload: Dict[str, Any] = {"ok": self.ok, "op": self.op, "exitCode": self.exit_code}
        if self.message:
            payload["message"] = self.message
        if self.ok:
            payload["data"] = jsonable(self.data)
        else:
            payload["error"] = self.error.model_dump(mode="json")
        return payload


class BatchReport(BaseModel):
    """Per-operation results of a batch, in submission order."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    results: List[CommandResult] = Field(default_factory=list)
    skipped: int = 0

    @property
    def total(self) -> int:
        return len(self.results) + self.skipped

    @property
    def successful(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.successful

    def to_document(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [result.to_payload() for result in self.results],
        }


def jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        if hasattr(value, "to_document"):
            return value.to_document()
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, dict):
        return {key: jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(item) for item in value]
    return value


Handler = Callable[[Any], Tuple[Any, Optional[str]]]


class CommandDispatcher:
    """
    Routes commands to the engines of a TrackerService.

    The handler table covers every command variant; a missing entry is a
    programming error caught at construction.
    """

    def __init__(self, service: TrackerService):
        self.service = service
        self._handlers: Dict[str, Handler] = {
            "init": self._init,
            "create": self._create,
            "query": self._query,
            "view": self._view,
            "update": self._update,
            "archive": self._archive,
            "restore": self._restore,
            "archives": self._archives,
            "stats": self._stats,
            "context": self._context,
            "changes": self._changes,
            "journal-add": self._journal_add,
            "journal-list": self._journal_list,
            "config": self._config,
            "batch": self._batch,
        }
        missing = set(_command_ops()) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for commands: {sorted(missing)}")

    def dispatch(self, command: Union[Command, Dict[str, Any]]) -> CommandResult:
        """Run a command; domain errors come back as failed results."""
        op = command.get("op", "?") if isinstance(command, dict) else command.op
        try:
            if isinstance(command, dict):
                command = parse_command(command)
            data, message = self._handlers[command.op](command)
        except PydanticValidationError as e:
            return self._fail(op, validation_error_from_pydantic(e))
        except TaskTrackerError as e:
            return self._fail(op, e)
        return CommandResult(op=op, data=data, message=message)

    def _fail(self, op: str, error: TaskTrackerError) -> CommandResult:
        logger.debug("Command failed", op=op, kind=error.kind, error=error.message)
        return CommandResult.failure(op, error)

    # ============================================================================
    # HANDLERS
    # ============================================================================

    def _init(self, command: InitProject):
        name = command.project_name or self.service.root.resolve().name
        config, created = self.service.config_manager.init(name, force=command.force)
        data = {"created": created, "dataDir": str(self.service.store.data_dir), "config": config}
        if created:
            return data, f"Initialized TaskTracker in {self.service.store.data_dir}"
        return data, f"TaskTracker already initialized in {self.service.store.data_dir}"

    def _create(self, command: CreateTask):
        draft = TaskDraft(
            title=command.title,
            description=command.description,
            status=command.status,
            category=command.category,
            priority=command.priority,
            effort=command.effort,
            related_files=command.files,
            author=command.author,
            branch=command.branch or self.service.current_branch(),
        )
        task = self.service.lifecycle.create(draft)
        return task, f"Created task #{task.id}: {task.title}"

    def _query(self, command: QueryTasks):
        filters = TaskFilter(
            status=command.status,
            category=command.category,
            priority=command.priority,
            author=command.author,
            branch=command.branch,
            keyword=command.keyword,
            file=command.file,
        )
        pagination = Pagination(page=command.page, page_size=command.page_size)
        result = self.service.query.query(filters, pagination, sort=command.sort)
        return result, None

    def _view(self, command: ViewTask):
        task = self.service.lifecycle.find_any(command.task_id)
        entries = self.service.journal.list(task_id=command.task_id)
        data = {"task": task, "archived": isinstance(task, ArchivedTask), "journal": entries}
        return data, None

    def _update(self, command: UpdateField):
        task = self.service.lifecycle.update(command.task_id, command.field, command.value)
        return task, f"Updated task #{task.id}"

    def _archive(self, command: ArchiveTask):
        archived = self.service.archive.archive(command.task_id, command.reason)
        return archived, f"Archived task #{archived.id}"

    def _restore(self, command: RestoreTask):
        task = self.service.archive.restore(command.task_id)
        return task, f"Restored task #{task.id}"

    def _archives(self, command: ListArchives):
        return self.service.archive.list(), None

    def _stats(self, command: ShowStats):
        return self.service.query.stats(), None

    def _context(self, command: BuildContext):
        defaults = self.service.settings.context
        request = ContextRequest(
            task_id=command.task_id,
            file=command.file,
            verbosity=command.verbosity,
            format=command.format,
            budget_chars=command.budget_chars or defaults.budget_chars,
            budget_lines=command.budget_lines,
            recent_days=command.recent_days or defaults.recent_days,
        )
        builder = self.service.context
        if not command.use_cache:
            builder = ContextBuilder(self.service.store, self.service.config)
        return builder.build(request), None

    def _changes(self, command: DetectChanges):
        if command.files is not None:
            return self.service.query.changes(command.files), None
        source, detected = self.service.detector.detect(use_git=command.use_git)
        return self.service.query.changes(detected, source=source), None

    def _journal_add(self, command: AddJournalEntry):
        entry = self.service.journal.add(
            command.text,
            entry_type=command.type,
            tags=command.tags,
            related_task_id=command.task_id,
            files=command.files,
        )
        return entry, f"Added journal entry #{entry.id}"

    def _journal_list(self, command: ListJournal):
        entries = self.service.journal.list(
            entry_type=command.type,
            tag=command.tag,
            task_id=command.task_id,
            query=command.query,
            limit=command.limit,
        )
        return entries, None

    def _config(self, command: ConfigureProject):
        manager = self.service.config_manager
        if command.action == "show":
            return manager.load(), None
        if not command.key:
            raise ValidationError(f"'config {command.action}' needs a key", field="key")
        if command.action == "set":
            return manager.set_option(command.key, command.value), f"Set {command.key}"
        if command.value is None or not command.value.strip():
            raise ValidationError(f"'config {command.action}' needs a value", field="value")
        if command.action == "add":
            return manager.add_value(command.key, command.value), f"Added '{command.value}' to {command.key}"
        return manager.remove_value(command.key, command.value), f"Removed '{command.value}' from {command.key}"

    def _batch(self, command: RunBatch):
        if not command.operations:
            raise ValidationError("Batch has no operations", field="operations")

        report = BatchReport()
        for index, payload in enumerate(command.operations):
            if payload.get("op") == "batch":
                error = ValidationError("Batches cannot be nested", field=f"operations.{index}.op", value="batch")
                result = self._fail("batch", error)
            else:
                result = self.dispatch(payload)
            report.results.append(result)
            if command.fail_fast and not result.ok:
                report.skipped = len(command.operations) - index - 1
                break

        logger.info(
            "Batch finished",
            total=report.total,
            successful=report.successful,
            failed=report.failed,
            skipped=report.skipped,
        )
        return report, f"Batch: {report.successful} of {report.total} operations succeeded"


def _command_ops() -> List[str]:
    variants = get_args(get_args(Command)[0])
    return [variant.model_fields["op"].default for variant in variants]


__all__ = [
    "BatchReport",
    "Command",
    "CommandDispatcher",
    "CommandResult",
    "ErrorInfo",
    "parse_command",
]
