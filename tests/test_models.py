"""Record models: legacy migration, serialization and immutability."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from tasktracker.journal.models import EntryType, JournalEntry, JournalLog
from tasktracker.tasks.models import ArchiveCollection, ArchivedTask, Task, TaskCollection


class TestTaskModel:
    """Task records as stored in tasks.json."""

    def test_legacy_keys_are_migrated(self):
        task = Task.model_validate({
            "id": 1,
            "title": "Old task",
            "created": "2023-05-01T10:00:00Z",
            "lastUpdated": "2023-05-02T10:00:00Z",
            "createdBy": "alice",
            "comments": [{"author": "bob", "date": "2023-05-01T11:00:00Z", "text": "hi"}],
        })

        assert task.created_at == datetime(2023, 5, 1, 10, tzinfo=timezone.utc)
        assert task.updated_at == datetime(2023, 5, 2, 10, tzinfo=timezone.utc)
        assert task.author == "alice"
        assert task.comments[0].timestamp == datetime(2023, 5, 1, 11, tzinfo=timezone.utc)

    def test_missing_updated_at_falls_back_to_created_at(self):
        task = Task.model_validate({"id": 3, "title": "x", "createdAt": "2024-01-01T00:00:00Z"})
        assert task.updated_at == task.created_at

    def test_naive_timestamps_are_treated_as_utc(self):
        task = Task.model_validate({"id": 1, "title": "x", "createdAt": "2024-01-01T08:00:00"})
        assert task.created_at.tzinfo is not None
        assert task.created_at.utcoffset().total_seconds() == 0

    def test_document_uses_camel_case_and_keeps_unknown_keys(self):
        task = Task.model_validate({
            "id": 1,
            "title": "x",
            "createdAt": "2024-01-01T00:00:00Z",
            "relatedFiles": ["a.py", "a.py", "b.py"],
            "futureField": {"kept": True},
        })

        document = task.to_document()
        assert document["relatedFiles"] == ["a.py", "b.py"]
        assert "createdAt" in document and "updatedAt" in document
        assert document["futureField"] == {"kept": True}
        assert "description" not in document

    def test_id_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            Task.model_validate({"id": 0, "title": "x", "createdAt": "2024-01-01T00:00:00Z"})


class TestArchivedTask:

    def test_legacy_archive_stamp(self):
        archived = ArchivedTask.model_validate({
            "id": 2,
            "title": "Gone",
            "createdAt": "2024-01-01T00:00:00Z",
            "archived": {"date": "2024-02-01T00:00:00Z", "reason": "obsolete"},
        })

        assert archived.archived_at == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert archived.archive_reason == "obsolete"

    def test_round_trip_through_archive_keeps_fields(self):
        task = Task.model_validate({
            "id": 5,
            "title": "Keep me",
            "createdAt": "2024-01-01T00:00:00Z",
            "relatedFiles": ["src/a.py"],
            "comments": [{"author": "a", "timestamp": "2024-01-01T01:00:00Z", "text": "note"}],
        })

        archived = ArchivedTask.from_task(task, archived_at=datetime(2024, 3, 1, tzinfo=timezone.utc), reason="done")
        restored = archived.to_task()

        assert type(restored) is Task
        assert restored == task


class TestCollections:

    def test_legacy_counter_is_dropped(self):
        collection = TaskCollection.model_validate({"tasks": [], "lastId": 41})
        assert "lastId" not in collection.to_document()

    def test_legacy_archive_key(self):
        collection = ArchiveCollection.model_validate({
            "archives": [{"id": 1, "title": "x", "createdAt": "2024-01-01T00:00:00Z",
                          "archivedAt": "2024-01-02T00:00:00Z"}]
        })
        assert collection.ids() == [1]

    def test_find_and_index(self):
        collection = TaskCollection.model_validate({
            "tasks": [
                {"id": 4, "title": "a", "createdAt": "2024-01-01T00:00:00Z"},
                {"id": 7, "title": "b", "createdAt": "2024-01-01T00:00:00Z"},
            ]
        })
        assert collection.find(7).title == "b"
        assert collection.find(8) is None
        assert collection.index_of(4) == 0
        assert collection.index_of(9) == -1


class TestJournalModels:

    def test_entries_are_immutable(self):
        entry = JournalEntry(id=1, text="Decided to use JSON", type=EntryType.DECISION)
        with pytest.raises(PydanticValidationError):
            entry.text = "changed"

    def test_legacy_journal_document(self):
        log = JournalLog.model_validate({
            "entries": [
                {"id": 1, "content": "Idea", "type": "idea", "taskId": 3, "timestamp": "2024-01-01T00:00:00Z"},
                {"id": 2, "text": "Context", "type": "context", "timestamp": "2024-01-02T00:00:00Z"},
            ]
        })

        first, second = log.entries
        assert first.text == "Idea"
        assert first.type == EntryType.LEARNING
        assert first.related_task_id == 3
        assert second.type == EntryType.PROGRESS

    def test_document_is_a_plain_list(self):
        log = JournalLog([JournalEntry(id=1, text="x", tags=["a", "a"], timestamp="2024-01-01T00:00:00Z")])
        document = log.to_document()

        assert isinstance(document, list)
        assert document[0]["tags"] == ["a"]
        assert "relatedTaskId" not in document[0]

    def test_matches_text_tags_type_and_files(self):
        entry = JournalEntry(id=1, text="Refactored parser", type="blocker", tags=["Perf"], files=["src/p.py"])
        assert entry.matches("PARSER")
        assert entry.matches("perf")
        assert entry.matches("blocker")
        assert entry.matches("p.py")
        assert not entry.matches("database")
