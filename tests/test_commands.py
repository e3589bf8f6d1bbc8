"""Command parsing, dispatch and error mapping."""

import json

import pytest

from tasktracker.commands import CommandDispatcher, CreateTask, UpdateField, parse_command
from tasktracker.core.exceptions import ValidationError
from tasktracker.storage.store import DocumentKind


@pytest.fixture
def dispatcher(service):
    return CommandDispatcher(service)


class TestParseCommand:

    def test_variant_selected_by_op(self):
        command = parse_command({"op": "update", "taskId": 3, "field": "status", "value": "done"})

        assert isinstance(command, UpdateField)
        assert command.task_id == 3

    def test_snake_case_accepted(self):
        command = parse_command({"op": "create", "title": "x", "files": ["a.py"]})
        assert isinstance(command, CreateTask)

    def test_unknown_op(self):
        with pytest.raises(ValidationError):
            parse_command({"op": "explode"})

    def test_unknown_parameter(self):
        with pytest.raises(ValidationError):
            parse_command({"op": "stats", "verbose": True})

    def test_missing_required_parameter(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_command({"op": "view"})
        assert exc_info.value.exit_code == 2


class TestDispatch:

    def test_create_and_view(self, dispatcher):
        created = dispatcher.dispatch({"op": "create", "title": "Fix login bug", "category": "bugfix"})
        assert created.ok
        assert created.message == "Created task #1: Fix login bug"

        dispatcher.dispatch({"op": "journal-add", "text": "Found the cause", "taskId": 1})
        viewed = dispatcher.dispatch({"op": "view", "taskId": 1})

        assert viewed.data["task"].title == "Fix login bug"
        assert viewed.data["archived"] is False
        assert [entry.text for entry in viewed.data["journal"]] == ["Found the cause"]

    def test_view_archived_task(self, dispatcher):
        dispatcher.dispatch({"op": "create", "title": "Old"})
        dispatcher.dispatch({"op": "archive", "taskId": 1, "reason": "done"})

        result = dispatcher.dispatch({"op": "view", "taskId": 1})

        assert result.ok
        assert result.data["archived"] is True

    def test_query_result(self, dispatcher):
        for title in ("a", "b", "c"):
            dispatcher.dispatch({"op": "create", "title": title})

        result = dispatcher.dispatch({"op": "query", "page": 2, "pageSize": 2})

        assert [task.title for task in result.data.items] == ["c"]
        assert result.data.page_count == 2

    def test_init_is_idempotent(self, dispatcher):
        result = dispatcher.dispatch({"op": "init"})
        assert result.ok
        assert result.data["created"] is False

    def test_config_actions(self, dispatcher):
        assert dispatcher.dispatch({"op": "config", "action": "add", "key": "category", "value": "spike"}).ok
        shown = dispatcher.dispatch({"op": "config"})
        assert "spike" in shown.data.categories

        missing_value = dispatcher.dispatch({"op": "config", "action": "add", "key": "category"})
        assert missing_value.exit_code == 2

    def test_changes_with_explicit_files(self, dispatcher):
        dispatcher.dispatch({"op": "create", "title": "Login", "files": ["src/login.js"]})

        result = dispatcher.dispatch({"op": "changes", "files": ["src/login.js"]})

        assert [change.task_id for change in result.data.tasks] == [1]

    def test_changes_without_git_use_snapshot(self, dispatcher, service):
        dispatcher.dispatch({"op": "create", "title": "Login", "files": ["src/login.js"]})
        (service.root / "src").mkdir()
        (service.root / "src" / "login.js").write_text("login()", encoding="utf-8")

        result = dispatcher.dispatch({"op": "changes"})

        assert result.ok
        assert result.data.source == "snapshot"
        assert result.data.new_files == ["src/login.js"]
        assert [change.task_id for change in result.data.tasks] == [1]

    def test_context_without_cache(self, dispatcher):
        dispatcher.dispatch({"op": "create", "title": "Task"})

        first = dispatcher.dispatch({"op": "context", "useCache": False})
        second = dispatcher.dispatch({"op": "context", "useCache": False})

        assert first.data.cached is False
        assert second.data.cached is False
        assert first.data.content == second.data.content


class TestErrorMapping:

    @pytest.mark.parametrize("payload, kind, exit_code", [
        ({"op": "create", "title": ""}, "ValidationError", 2),
        ({"op": "view", "taskId": 42}, "NotFoundError", 3),
        ({"op": "create", "title": "x", "status": "shipped"}, "InvalidValueError", 4),
        ({"op": "restore", "taskId": 1}, "NotFoundError", 3),
        ({"op": "context", "taskId": 1, "file": "a.py"}, "ValidationError", 2),
        ({"op": "journal-list", "type": "rant"}, "InvalidValueError", 4),
        ({"op": "nope"}, "ValidationError", 2),
    ])
    def test_error_kinds(self, dispatcher, payload, kind, exit_code):
        result = dispatcher.dispatch(payload)

        assert result.ok is False
        assert result.error.kind == kind
        assert result.exit_code == exit_code

    def test_corrupt_store(self, dispatcher, service):
        service.store.path_for(DocumentKind.TASKS).write_text("{oops", encoding="utf-8")

        result = dispatcher.dispatch({"op": "query"})

        assert result.error.kind == "CorruptStoreError"
        assert result.exit_code == 5

    def test_undecodable_store(self, dispatcher, service):
        service.store.path_for(DocumentKind.TASKS).write_bytes(b'{"tasks": [{"title": "\xe9"}]}')

        result = dispatcher.dispatch({"op": "query"})

        assert result.error.kind == "CorruptStoreError"
        assert result.exit_code == 5

    def test_conflict(self, dispatcher, service):
        dispatcher.dispatch({"op": "create", "title": "Task"})
        active = service.store.load(DocumentKind.TASKS)
        dispatcher.dispatch({"op": "archive", "taskId": 1})
        service.store.save(DocumentKind.TASKS, active)

        result = dispatcher.dispatch({"op": "restore", "taskId": 1})

        assert result.error.kind == "ConflictError"
        assert result.exit_code == 6


class TestPayload:

    def test_success_payload_is_json_serializable(self, dispatcher):
        result = dispatcher.dispatch({"op": "create", "title": "Task", "files": ["a.py"]})

        payload = result.to_payload()
        encoded = json.loads(json.dumps(payload))

        assert encoded["ok"] is True
        assert encoded["exitCode"] == 0
        assert encoded["data"]["relatedFiles"] == ["a.py"]

    def test_failure_payload(self, dispatcher):
        payload = dispatcher.dispatch({"op": "view", "taskId": 9}).to_payload()

        assert payload["ok"] is False
        assert payload["exitCode"] == 3
        assert payload["error"]["kind"] == "NotFoundError"
        assert "data" not in payload
        assert payload["error"]["error_code"] == "NOT_FOUND"
        assert payload["error"]["context"] == {"entity_type": "task", "entity_id": 9}
        json.dumps(payload)

    @pytest.mark.parametrize("payload", [
        {"op": "stats"},
        {"op": "archives"},
        {"op": "journal-list"},
        {"op": "config"},
        {"op": "context", "format": "json"},
        {"op": "init"},
    ])
    def test_read_payloads_serialize(self, dispatcher, payload):
        dispatcher.dispatch({"op": "create", "title": "Task"})
        json.dumps(dispatcher.dispatch(payload).to_payload())


class TestBatch:

    def test_operations_run_in_order(self, dispatcher, service):
        result = dispatcher.dispatch({
            "op": "batch",
            "operations": [
                {"op": "create", "title": "First"},
                {"op": "create", "title": "Second", "files": ["src/a.py"]},
                {"op": "update", "taskId": 1, "field": "status", "value": "done"},
            ],
        })

        assert result.ok
        assert result.exit_code == 0
        assert [item.op for item in result.data.results] == ["create", "create", "update"]
        assert result.message == "Batch: 3 of 3 operations succeeded"
        assert service.lifecycle.find_any(1).status == "done"

    def test_failures_are_reported_per_operation(self, dispatcher):
        result = dispatcher.dispatch({
            "op": "batch",
            "operations": [
                {"op": "view", "taskId": 7},
                {"op": "create", "title": "Still runs"},
                {"op": "explode"},
            ],
        })
        report = result.data

        assert result.ok
        assert [item.exit_code for item in report.results] == [3, 0, 2]
        assert (report.successful, report.failed, report.skipped) == (1, 2, 0)
        assert result.message == "Batch: 1 of 3 operations succeeded"

    def test_fail_fast_skips_the_rest(self, dispatcher, service):
        result = dispatcher.dispatch({
            "op": "batch",
            "failFast": True,
            "operations": [
                {"op": "create", "title": "Kept"},
                {"op": "restore", "taskId": 5},
                {"op": "create", "title": "Never created"},
            ],
        })

        assert len(result.data.results) == 2
        assert result.data.skipped == 1
        assert result.data.total == 3
        assert [task.title for task in service.query.query().items] == ["Kept"]

    def test_nested_batch_rejected(self, dispatcher):
        result = dispatcher.dispatch({
            "op": "batch",
            "operations": [{"op": "batch", "operations": [{"op": "stats"}]}, {"op": "stats"}],
        })

        nested, stats = result.data.results
        assert nested.error.kind == "ValidationError"
        assert nested.error.context["field"] == "operations.0.op"
        assert stats.ok

    def test_empty_batch_rejected(self, dispatcher):
        result = dispatcher.dispatch({"op": "batch", "operations": []})

        assert result.ok is False
        assert result.exit_code == 2

    def test_payload_is_json_serializable(self, dispatcher):
        payload = dispatcher.dispatch({
            "op": "batch",
            "operations": [{"op": "create", "title": "Task"}, {"op": "view", "taskId": 99}],
        }).to_payload()

        encoded = json.loads(json.dumps(payload))
        assert encoded["data"]["successful"] == 1
        assert encoded["data"]["failed"] == 1
        assert encoded["data"]["results"][0]["data"]["title"] == "Task"
        assert encoded["data"]["results"][1]["error"]["kind"] == "NotFoundError"
