"""End-to-end CLI runs through typer's test runner."""

import json

import pytest
from typer.testing import CliRunner

from tasktracker import __version__
from tasktracker.cli import app


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, tmp_path, monkeypatch):
    """Run the CLI against an isolated project root."""
    monkeypatch.delenv("TASKTRACKER_DATA_DIR", raising=False)
    monkeypatch.setenv("TASKTRACKER_CONTEXT_CACHE_ENABLED", "false")

    def _invoke(*args: str):
        return runner.invoke(app, ["--root", str(tmp_path), *args])

    return _invoke


@pytest.fixture
def initialized(invoke):
    result = invoke("init", "--name", "demo")
    assert result.exit_code == 0, result.output
    return invoke


class TestBasics:

    def test_version(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_init(self, invoke, tmp_path):
        result = invoke("init", "--name", "demo")

        assert result.exit_code == 0
        assert "Initialized TaskTracker" in result.output
        assert (tmp_path / ".tasktracker" / "config.json").exists()

    def test_init_twice(self, initialized):
        result = initialized("init")
        assert result.exit_code == 0
        assert "already initialized" in result.output


class TestTaskCommands:

    def test_add_list_update_archive(self, initialized, tmp_path):
        result = initialized("add", "Fix login bug", "--category", "bugfix", "--file", "src/login.js")
        assert result.exit_code == 0, result.output
        assert "Created task #1" in result.output

        result = initialized("list")
        assert result.exit_code == 0
        assert "Fix login bug" in result.output
        assert "Page 1/1 (1 task)" in result.output

        result = initialized("update", "1", "status", "in-progress")
        assert result.exit_code == 0
        assert "[in-progress] Fix login bug" in result.output

        result = initialized("update", "1", "comment", "Root", "cause", "found")
        assert result.exit_code == 0

        result = initialized("archive", "1", "fixed")
        assert result.exit_code == 0
        assert "Archived task #1" in result.output

        stored = json.loads((tmp_path / ".tasktracker" / "archives.json").read_text(encoding="utf-8"))
        assert stored["archived"][0]["archiveReason"] == "fixed"
        assert stored["archived"][0]["comments"][0]["text"] == "Root cause found"

    def test_quick(self, initialized):
        result = initialized("quick", "Tidy imports", "chore")
        assert result.exit_code == 0
        assert "[todo] Tidy imports" in result.output

    def test_view_missing_task(self, initialized):
        result = initialized("view", "9")

        assert result.exit_code == 3
        assert "NotFoundError" in result.output

    def test_invalid_value(self, initialized):
        result = initialized("add", "Task", "--category", "research")

        assert result.exit_code == 4
        assert "InvalidValueError" in result.output

    def test_restore_missing(self, initialized):
        assert initialized("restore", "5").exit_code == 3

    def test_stats(self, initialized):
        initialized("add", "Task")
        result = initialized("stats")

        assert result.exit_code == 0
        assert "Active: 1" in result.output


class TestJsonOutput:

    def test_create_payload(self, initialized):
        result = initialized("--json", "add", "Task", "--priority", "p1-high")

        payload = json.loads(result.output)
        assert payload["ok"] is True
        assert payload["op"] == "create"
        assert payload["data"]["priority"] == "p1-high"

    def test_error_payload(self, initialized):
        result = initialized("--json", "update", "3", "status", "done")

        payload = json.loads(result.output)
        assert result.exit_code == 3
        assert payload["ok"] is False
        assert payload["error"]["kind"] == "NotFoundError"


class TestContextAndJournal:

    def test_context_markdown(self, initialized):
        initialized("add", "Write docs")
        initialized("journal", "add", "Decided", "on", "mkdocs", "--type", "decision")

        result = initialized("context", "--verbosity", "full")

        assert result.exit_code == 0
        assert result.output.startswith("# demo - Development Context")
        assert "Decided on mkdocs" in result.output

    def test_context_budget(self, initialized):
        for n in range(20):
            initialized("add", f"Task {n}", "--description", "padding " * 20)

        result = initialized("ai-context", "--budget", "400")

        assert result.exit_code == 0
        assert len(result.output) <= 400
        assert "truncated" in result.output

    def test_journal_list(self, initialized):
        initialized("journal", "add", "Flaky", "CI", "--type", "blocker", "--tag", "ci")
        result = initialized("journal", "list", "--tag", "ci")

        assert result.exit_code == 0
        assert "Flaky CI" in result.output

    def test_changes_with_explicit_files(self, initialized):
        initialized("add", "Login", "--file", "src/login.js")
        result = initialized("changes", "src/login.js", "notes.txt")

        assert result.exit_code == 0
        assert "Login" in result.output
        assert "notes.txt" in result.output


class TestConfigCommands:

    def test_add_and_show(self, initialized):
        result = initialized("config", "add", "category", "spike")
        assert result.exit_code == 0
        assert "spike" in result.output

        assert initialized("add", "Explore", "--category", "spike").exit_code == 0

    def test_remove_last_value(self, initialized):
        for value in ("1-trivial", "2-small", "3-medium", "5-large"):
            assert initialized("config", "remove", "effort", value).exit_code == 0

        result = initialized("config", "remove", "effort", "8-xlarge")
        assert result.exit_code == 2

    def test_set_invalid_default(self, initialized):
        assert initialized("config", "set", "defaultStatus", "shipped").exit_code == 4


class TestBatchCommand:

    def test_inline_operations(self, initialized):
        operations = json.dumps([{"op": "create", "title": "One"}, {"op": "create", "title": "Two"}])

        result = initialized("batch", operations)

        assert result.exit_code == 0, result.output
        assert "2 succeeded, 0 failed" in result.output

    def test_operations_file(self, initialized, tmp_path):
        path = tmp_path / "ops.json"
        path.write_text(json.dumps({"operations": [{"op": "create", "title": "One"}, {"op": "view", "taskId": 9}]}))

        result = initialized("--json", "batch", str(path), "--fail-fast")

        payload = json.loads(result.output)
        assert result.exit_code == 0
        assert payload["data"]["failed"] == 1
        assert payload["data"]["skipped"] == 0

    def test_missing_file(self, initialized):
        result = initialized("batch", "no-such-ops.json")
        assert result.exit_code == 3

    def test_malformed_json(self, initialized):
        result = initialized("--json", "batch", "[{oops")

        assert result.exit_code == 2
        assert json.loads(result.output)["error"]["kind"] == "ValidationError"
