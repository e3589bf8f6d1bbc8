"""Archive partition: archive, restore, listing and write ordering."""

from datetime import datetime, timedelta, timezone

import pytest

from tasktracker.core.exceptions import ConflictError, NotFoundError
from tasktracker.storage.store import DocumentKind, Store
from tasktracker.tasks.models import Task


class TestArchive:

    def test_archive_moves_task(self, service, make_task):
        task = make_task("Ship it", related_files=["src/app.py"])

        archived = service.archive.archive(task.id, "  released  ")

        assert archived.id == task.id
        assert archived.archive_reason == "released"
        assert archived.updated_at == task.updated_at
        assert archived.archived_at > task.created_at
        assert service.store.load(DocumentKind.TASKS).find(task.id) is None
        assert service.store.load(DocumentKind.ARCHIVES).find(task.id) is not None

    def test_blank_reason_is_dropped(self, service, make_task):
        task = make_task("Task")
        assert service.archive.archive(task.id, "   ").archive_reason is None

    def test_archive_missing_task(self, service):
        with pytest.raises(NotFoundError):
            service.archive.archive(7)

    def test_archive_writes_archives_before_tasks(self, service, make_task, monkeypatch):
        task = make_task("Task")
        saved = []
        original_save = Store.save

        def recording_save(self, kind, collection):
            saved.append(DocumentKind(kind))
            original_save(self, kind, collection)

        monkeypatch.setattr(Store, "save", recording_save)
        service.archive.archive(task.id)

        assert saved == [DocumentKind.ARCHIVES, DocumentKind.TASKS]

    def test_archive_replaces_leftover_copy(self, service, make_task):
        task = make_task("Task")
        service.archive.archive(task.id, "first")
        # Simulate an interrupted restore: task back in the active partition.
        service.store.save(DocumentKind.TASKS, service.store.load(DocumentKind.TASKS).model_copy(
            update={"tasks": [task]}
        ))

        service.archive.archive(task.id, "second")

        archives = service.store.load(DocumentKind.ARCHIVES)
        assert archives.ids() == [task.id]
        assert archives.find(task.id).archive_reason == "second"


class TestRestore:

    def test_restore_round_trip(self, service, make_task):
        task = make_task("Keep", description="Body", priority="p1-high", related_files=["a.py"])
        service.lifecycle.update(task.id, "comment", "note")
        before = service.lifecycle.get(task.id)

        service.archive.archive(task.id, "parked")
        restored = service.archive.restore(task.id)

        assert type(restored) is Task
        assert restored.model_dump(exclude={"updated_at"}) == before.model_dump(exclude={"updated_at"})
        assert restored.updated_at > before.updated_at

    def test_restore_keeps_active_tasks_sorted(self, service, make_task):
        for n in range(3):
            make_task(f"Task {n}")
        service.archive.archive(2)

        service.archive.restore(2)

        assert service.store.load(DocumentKind.TASKS).ids() == [1, 2, 3]

    def test_restore_missing(self, service):
        with pytest.raises(NotFoundError):
            service.archive.restore(1)

    def test_restore_conflict(self, service, make_task):
        task = make_task("Task")
        service.archive.archive(task.id)
        service.store.save(DocumentKind.TASKS, service.store.load(DocumentKind.TASKS).model_copy(
            update={"tasks": [task]}
        ))

        with pytest.raises(ConflictError) as exc_info:
            service.archive.restore(task.id)

        assert exc_info.value.exit_code == 6

    def test_restore_writes_tasks_before_archives(self, service, make_task, monkeypatch):
        task = make_task("Task")
        service.archive.archive(task.id)
        saved = []
        original_save = Store.save

        def recording_save(self, kind, collection):
            saved.append(DocumentKind(kind))
            original_save(self, kind, collection)

        monkeypatch.setattr(Store, "save", recording_save)
        service.archive.restore(task.id)

        assert saved == [DocumentKind.TASKS, DocumentKind.ARCHIVES]


class TestListArchives:

    def test_newest_archived_first(self, service, make_task):
        for n in range(3):
            make_task(f"Task {n}")
        service.archive.archive(2)
        service.archive.archive(1)
        service.archive.archive(3)

        assert [task.id for task in service.archive.list()] == [3, 1, 2]

    def test_ties_broken_by_id(self, service, make_task, clock):
        make_task("One")
        make_task("Two")
        clock.step = timedelta(0)
        clock.now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        service.archive.archive(1)
        service.archive.archive(2)

        assert [task.id for task in service.archive.list()] == [2, 1]

    def test_empty(self, service):
        assert service.archive.list() == []
