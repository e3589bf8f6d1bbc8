"""
TaskTracker command-line interface.

A thin typer front end: each command builds a typed command intent, hands
it to the dispatcher and renders the CommandResult with rich (or as JSON
with ``--json``). Exit codes come from the error kind.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from tasktracker import __version__
from tasktracker.commands import (
    AddJournalEntry,
    ArchiveTask,
    BuildContext,
    CommandDispatcher,
    CommandResult,
    ConfigureProject,
    CreateTask,
    DetectChanges,
    InitProject,
    ListArchives,
    ListJournal,
    QueryTasks,
    RestoreTask,
    RunBatch,
    ShowStats,
    UpdateField,
    ViewTask,
)
from tasktracker.context.models import ContextFormat, ContextResult, Verbosity
from tasktracker.core.config import LoggingConfig
from tasktracker.core.exceptions import NotFoundError, TaskTrackerError, ValidationError
from tasktracker.core.logging import setup_logging
from tasktracker.service import TrackerService, load_settings
from tasktracker.tasks.query import SortMode

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(help="TaskTracker - local task and journal tracking for development projects", no_args_is_help=True)
journal_app = typer.Typer(help="Development journal", no_args_is_help=True)
config_app = typer.Typer(help="Project configuration", no_args_is_help=True)
app.add_typer(journal_app, name="journal")
app.add_typer(config_app, name="config")

STATUS_STYLES = {
    "todo": "white",
    "in-progress": "yellow",
    "review": "cyan",
    "done": "green",
    "blocked": "red",
}


@dataclass
class CliState:
    root: Path
    json_output: bool = False
    debug: bool = False


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tasktracker {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Print results as JSON"),
    debug: bool = typer.Option(False, "--debug", help="Debug logging and tracebacks on errors"),
    root: Path = typer.Option(Path("."), "--root", "-C", help="Project root directory"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
) -> None:
    """Track tasks, file associations and a development journal."""
    ctx.obj = CliState(root=root, json_output=json_output, debug=debug)


# ============================================================================
# EXECUTION AND RENDERING
# ============================================================================

def _run(ctx: typer.Context, command: Any, render: Optional[Callable[[CommandResult], None]] = None) -> None:
    state: CliState = ctx.obj
    try:
        settings = load_settings()
        if state.debug:
            settings.debug = True
            settings.logging = LoggingConfig(level="DEBUG", format=settings.logging.format)
        setup_logging(settings.logging)

        service = TrackerService(state.root, settings)
        service.open()
        result = CommandDispatcher(service).dispatch(command)
    except TaskTrackerError as e:
        if state.debug:
            err_console.print_exception()
        result = CommandResult.failure(command.op, e)
    except Exception as e:
        if state.debug:
            raise
        err_console.print(f"Error \\[{type(e).__name__}]: {escape(str(e))}", style="red")
        raise typer.Exit(1) from e

    _emit(state, result, render)


def _emit(state: CliState, result: CommandResult, render: Optional[Callable[[CommandResult], None]] = None) -> None:
    if state.json_output:
        typer.echo(json.dumps(result.to_payload(), indent=2, ensure_ascii=False))
    elif not result.ok:
        err_console.print(f"Error \\[{result.error.kind}]: {escape(result.error.message)}", style="red")
    elif render is not None:
        render(result)
    elif result.message:
        console.print(f"✅ {escape(result.message)}", style="green")

    if not result.ok:
        raise typer.Exit(result.exit_code)


def _status(value: str) -> str:
    return f"[{STATUS_STYLES.get(value, 'white')}]{escape(value)}[/]"


def _task_table(tasks: List[Any], title: Optional[str] = None, archived: bool = False) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("ID", justify="right", style="bold")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Category")
    table.add_column("Title")
    table.add_column("Archived" if archived else "Files", justify="right")
    for task in tasks:
        last = task.archived_at.strftime("%Y-%m-%d") if archived else str(len(task.related_files))
        table.add_row(
            str(task.id),
            _status(task.status),
            escape(task.priority or "-"),
            escape(task.category),
            escape(task.title),
            last,
        )
    return table


def _render_task_result(result: CommandResult) -> None:
    console.print(f"✅ {escape(result.message)}", style="green")
    task = result.data
    console.print(f"   [{task.status}] {task.title}", markup=False, highlight=False)


def _render_query(result: CommandResult) -> None:
    page = result.data
    if not page.items:
        console.print("No tasks found.", style="yellow")
        return
    console.print(_task_table(page.items))
    console.print(
        f"Page {page.page}/{page.page_count} ({page.total_count} task{'s' if page.total_count != 1 else ''})",
        style="dim",
    )


def _render_view(result: CommandResult) -> None:
    data: Dict[str, Any] = result.data
    task = data["task"]
    lines = [
        f"[bold]Status:[/] {_status(task.status)}   [bold]Category:[/] {escape(task.category)}",
        f"[bold]Priority:[/] {escape(task.priority or '-')}   [bold]Effort:[/] {escape(task.effort or '-')}",
        f"[bold]Created:[/] {task.created_at:%Y-%m-%d %H:%M}   [bold]Updated:[/] {task.updated_at:%Y-%m-%d %H:%M}",
    ]
    if task.author or task.branch:
        lines.append(f"[bold]Author:[/] {escape(task.author or '-')}   [bold]Branch:[/] {escape(task.branch or '-')}")
    if data["archived"]:
        reason = f" ({escape(task.archive_reason)})" if task.archive_reason else ""
        lines.append(f"[bold]Archived:[/] {task.archived_at:%Y-%m-%d %H:%M}{reason}")
    if task.related_files:
        lines.append("[bold]Files:[/] " + ", ".join(escape(path) for path in task.related_files))
    if task.description:
        lines.extend(["", escape(task.description)])
    if task.comments:
        lines.extend(["", "[bold]Comments:[/]"])
        for comment in task.comments:
            lines.append(f"  {comment.timestamp:%Y-%m-%d %H:%M} {escape(comment.author)}: {escape(comment.text)}")
    if data["journal"]:
        lines.extend(["", "[bold]Journal:[/]"])
        for entry in data["journal"]:
            lines.append(f"  {entry.timestamp:%Y-%m-%d} \\[{entry.type.value}] {escape(entry.text)}")
    console.print(Panel("\n".join(lines), title=f"#{task.id} {escape(task.title)}", expand=False))


def _render_archives(result: CommandResult) -> None:
    if not result.data:
        console.print("No archived tasks.", style="yellow")
        return
    console.print(_task_table(result.data, title="Archived tasks", archived=True))


def _render_stats(result: CommandResult) -> None:
    stats = result.data
    console.print(f"[bold]Active:[/] {stats.total_active}   [bold]Archived:[/] {stats.total_archived}")
    for title, counts in (
        ("By status", stats.by_status),
        ("By category", stats.by_category),
        ("By priority", stats.by_priority),
        ("Journal entries", stats.journal_by_type),
    ):
        table = Table(title=title)
        table.add_column("Value")
        table.add_column("Count", justify="right")
        for key, count in counts.items():
            table.add_row(escape(key), str(count))
        console.print(table)


def _render_context(result: CommandResult) -> None:
    context: ContextResult = result.data
    typer.echo(context.content, nl=False)


def _render_changes(result: CommandResult) -> None:
    report = result.data
    if not report.changed_files:
        console.print(f"No changed files ({report.source}).", style="yellow")
        return
    console.print(f"[bold]Changed files[/] ({escape(report.source)}):")
    for marker, paths in (("+", report.new_files), ("~", report.modified_files), ("-", report.deleted_files)):
        for path in paths:
            console.print(f"  {marker} {escape(path)}")
    if report.tasks:
        table = Table(title="Tasks affected by changes")
        table.add_column("ID", justify="right", style="bold")
        table.add_column("Status")
        table.add_column("Title")
        table.add_column("Changed files")
        for change in report.tasks:
            table.add_row(
                str(change.task_id),
                _status(change.status),
                escape(change.title),
                "\n".join(escape(path) for path in change.files),
            )
        console.print(table)
    if report.unmatched_files:
        console.print("[bold]Files not linked to any task:[/]")
        for path in report.unmatched_files:
            console.print(f"  {escape(path)}")


def _render_batch(result: CommandResult) -> None:
    report = result.data
    table = Table(title="Batch results")
    table.add_column("#", justify="right", style="bold")
    table.add_column("Operation")
    table.add_column("Result")
    for index, item in enumerate(report.results, start=1):
        if item.ok:
            outcome = f"[green]ok[/] {escape(item.message or '')}"
        else:
            outcome = f"[red]{escape(item.error.kind)}[/] {escape(item.error.message)}"
        table.add_row(str(index), escape(item.op), outcome)
    console.print(table)
    summary = f"{report.successful} succeeded, {report.failed} failed"
    if report.skipped:
        summary += f", {report.skipped} skipped"
    console.print(summary, style="green" if not report.failed else "yellow")


def _render_journal(result: CommandResult) -> None:
    if not result.data:
        console.print("No journal entries.", style="yellow")
        return
    table = Table(title="Journal")
    table.add_column("ID", justify="right", style="bold")
    table.add_column("Date")
    table.add_column("Type")
    table.add_column("Task", justify="right")
    table.add_column("Text")
    for entry in result.data:
        table.add_row(
            str(entry.id),
            f"{entry.timestamp:%Y-%m-%d %H:%M}",
            entry.type.value,
            f"#{entry.related_task_id}" if entry.related_task_id else "",
            escape(entry.text),
        )
    console.print(table)


def _render_config(result: CommandResult) -> None:
    if result.message:
        console.print(f"✅ {escape(result.message)}", style="green")
    document = result.data.to_document()
    table = Table(title="Project configuration")
    table.add_column("Option", style="bold")
    table.add_column("Value")
    for key, value in document.items():
        shown = ", ".join(value) if isinstance(value, list) else ("-" if value is None else str(value))
        table.add_row(key, escape(shown))
    console.print(table)


# ============================================================================
# TASK COMMANDS
# ============================================================================

@app.command()
def init(
    ctx: typer.Context,
    name: str = typer.Option("", "--name", "-n", help="Project name (default: directory name)"),
    force: bool = typer.Option(False, "--force", help="Reset the configuration to defaults"),
) -> None:
    """Initialize TaskTracker in the project directory."""
    _run(ctx, InitProject(project_name=name, force=force))


@app.command()
def add(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Task description"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Task category"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Initial status"),
    priority: Optional[str] = typer.Option(None, "--priority", "-p", help="Priority level"),
    effort: Optional[str] = typer.Option(None, "--effort", "-e", help="Effort estimation"),
    files: Optional[List[str]] = typer.Option(None, "--file", "-f", help="Related file (repeatable)"),
) -> None:
    """Create a task."""
    command = CreateTask(
        title=title,
        description=description,
        category=category,
        status=status,
        priority=priority,
        effort=effort,
        files=files or [],
    )
    _run(ctx, command, _render_task_result)


@app.command()
def quick(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title"),
    category: Optional[str] = typer.Argument(None, help="Task category"),
) -> None:
    """Create a task from a title and optional category."""
    _run(ctx, CreateTask(title=title, category=category), _render_task_result)


@app.command("list")
def list_tasks(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Filter by category"),
    priority: Optional[str] = typer.Option(None, "--priority", "-p", help="Filter by priority"),
    author: Optional[str] = typer.Option(None, "--author", help="Filter by author"),
    branch: Optional[str] = typer.Option(None, "--branch", help="Filter by branch"),
    keyword: Optional[str] = typer.Option(None, "--keyword", "-k", help="Search title, description and comments"),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Tasks related to a file"),
    sort: SortMode = typer.Option(SortMode.ID, "--sort", help="Ordering"),
    page: int = typer.Option(1, "--page", help="Page number (1-indexed)"),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="Tasks per page"),
) -> None:
    """List active tasks."""
    command = QueryTasks(
        status=status,
        category=category,
        priority=priority,
        author=author,
        branch=branch,
        keyword=keyword,
        file=file,
        sort=sort,
        page=page,
        page_size=page_size,
    )
    _run(ctx, command, _render_query)


@app.command()
def view(ctx: typer.Context, task_id: int = typer.Argument(..., help="Task id")) -> None:
    """Show a task with its comments and journal entries."""
    _run(ctx, ViewTask(task_id=task_id), _render_view)


@app.command()
def update(
    ctx: typer.Context,
    task_id: int = typer.Argument(..., help="Task id"),
    field: str = typer.Argument(..., help="status, category, priority, effort, title, description, comment, add-file, remove-file"),
    value: Optional[List[str]] = typer.Argument(None, help="New value"),
) -> None:
    """Update a single task field."""
    text = " ".join(value) if value else None
    _run(ctx, UpdateField(task_id=task_id, field=field, value=text), _render_task_result)


@app.command()
def archive(
    ctx: typer.Context,
    task_id: int = typer.Argument(..., help="Task id"),
    reason: Optional[List[str]] = typer.Argument(None, help="Why the task is archived"),
) -> None:
    """Move a task to the archive."""
    _run(ctx, ArchiveTask(task_id=task_id, reason=" ".join(reason) if reason else None))


@app.command()
def restore(ctx: typer.Context, task_id: int = typer.Argument(..., help="Task id")) -> None:
    """Restore an archived task."""
    _run(ctx, RestoreTask(task_id=task_id))


@app.command()
def archives(ctx: typer.Context) -> None:
    """List archived tasks, newest first."""
    _run(ctx, ListArchives(), _render_archives)


@app.command()
def stats(ctx: typer.Context) -> None:
    """Show task and journal statistics."""
    _run(ctx, ShowStats(), _render_stats)


@app.command()
def context(
    ctx: typer.Context,
    task_id: Optional[int] = typer.Option(None, "--task", "-t", help="Scope to a task"),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Scope to a file"),
    verbosity: Verbosity = typer.Option(Verbosity.NORMAL, "--verbosity", "-v", help="Detail level"),
    output_format: ContextFormat = typer.Option(ContextFormat.MARKDOWN, "--format", help="Output format"),
    budget: Optional[int] = typer.Option(None, "--budget", "-b", help="Maximum characters"),
    lines: Optional[int] = typer.Option(None, "--lines", help="Maximum lines"),
    days: Optional[int] = typer.Option(None, "--days", help="Recent window in days"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Ignore cached documents"),
) -> None:
    """Build a size-bounded context document for AI assistants."""
    command = BuildContext(
        task_id=task_id,
        file=file,
        verbosity=verbosity,
        format=output_format,
        budget_chars=budget,
        budget_lines=lines,
        recent_days=days,
        use_cache=not no_cache,
    )
    _run(ctx, command, _render_context)


app.command("ai-context", help="Alias of 'context'.")(context)


@app.command()
def changes(
    ctx: typer.Context,
    files: Optional[List[str]] = typer.Argument(None, help="Changed files (default: git status or hash snapshot)"),
    no_git: bool = typer.Option(False, "--no-git", help="Compare against the hash snapshot instead of git"),
) -> None:
    """Show tasks related to changed files."""
    _run(ctx, DetectChanges(files=files or None, use_git=not no_git), _render_changes)


def _load_operations(source: str) -> List[Dict[str, Any]]:
    """Operations from inline JSON or a JSON file: a list or ``{"operations": [...]}``."""
    text = source
    if not source.lstrip().startswith(("{", "[")):
        path = Path(source)
        if not path.is_file():
            raise NotFoundError(f"Batch file not found: {source}", entity_type="file", entity_id=source)
        text = path.read_text(encoding="utf-8")
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Batch input is not valid JSON: {e}", field="operations") from e
    if isinstance(document, dict):
        document = document.get("operations")
    if not isinstance(document, list) or not all(isinstance(item, dict) for item in document):
        raise ValidationError("Batch input must be a list of command objects", field="operations")
    return document


@app.command()
def batch(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="JSON file, or inline JSON, holding the operations"),
    fail_fast: bool = typer.Option(False, "--fail-fast", help="Stop at the first failed operation"),
) -> None:
    """Run several commands in order and report each outcome."""
    try:
        operations = _load_operations(source)
    except TaskTrackerError as e:
        _emit(ctx.obj, CommandResult.failure("batch", e))
        return
    _run(ctx, RunBatch(operations=operations, fail_fast=fail_fast), _render_batch)


# ============================================================================
# JOURNAL COMMANDS
# ============================================================================

@journal_app.command("add")
def journal_add(
    ctx: typer.Context,
    text: List[str] = typer.Argument(..., help="Entry text"),
    entry_type: str = typer.Option("progress", "--type", "-t", help="progress, decision, blocker, learning, git-commit"),
    tags: Optional[List[str]] = typer.Option(None, "--tag", help="Tag (repeatable)"),
    task_id: Optional[int] = typer.Option(None, "--task", help="Related task id"),
    files: Optional[List[str]] = typer.Option(None, "--file", "-f", help="Related file (repeatable)"),
) -> None:
    """Add a journal entry."""
    command = AddJournalEntry(
        text=" ".join(text),
        type=entry_type,
        tags=tags or [],
        task_id=task_id,
        files=files or [],
    )
    _run(ctx, command)


@journal_app.command("list")
def journal_list(
    ctx: typer.Context,
    entry_type: Optional[str] = typer.Option(None, "--type", "-t", help="Filter by type"),
    tag: Optional[str] = typer.Option(None, "--tag", help="Filter by tag"),
    task_id: Optional[int] = typer.Option(None, "--task", help="Filter by task"),
    query: Optional[str] = typer.Option(None, "--search", "-q", help="Keyword search"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum entries"),
) -> None:
    """List journal entries, newest first."""
    command = ListJournal(type=entry_type, tag=tag, task_id=task_id, query=query, limit=limit)
    _run(ctx, command, _render_journal)


# ============================================================================
# CONFIG COMMANDS
# ============================================================================

@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the project configuration."""
    _run(ctx, ConfigureProject(action="show"), _render_config)


@config_app.command("add")
def config_add(
    ctx: typer.Context,
    vocabulary: str = typer.Argument(..., help="status, category, priority or effort"),
    value: str = typer.Argument(..., help="Value to add"),
) -> None:
    """Add a value to a vocabulary."""
    _run(ctx, ConfigureProject(action="add", key=vocabulary, value=value), _render_config)


@config_app.command("remove")
def config_remove(
    ctx: typer.Context,
    vocabulary: str = typer.Argument(..., help="status, category, priority or effort"),
    value: str = typer.Argument(..., help="Value to remove"),
) -> None:
    """Remove a value from a vocabulary."""
    _run(ctx, ConfigureProject(action="remove", key=vocabulary, value=value), _render_config)


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="projectName, displayWidth, defaultView, dateFormat or default*"),
    value: str = typer.Argument(..., help="New value ('none' clears a default)"),
) -> None:
    """Set a configuration option."""
    _run(ctx, ConfigureProject(action="set", key=key, value=value), _render_config)


if __name__ == "__main__":
    app()
