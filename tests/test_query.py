"""Query engine: filtering, ordering, pagination, stats and change detection."""

import pytest

from tasktracker.core.exceptions import ValidationError
from tasktracker.tasks.changes import ChangeKind, FileChange
from tasktracker.tasks.query import Pagination, QueryEngine, SortMode, TaskFilter


@pytest.fixture
def populated(service, make_task):
    """Five tasks with a spread of statuses, categories and priorities."""
    make_task("Fix login bug", category="bugfix", priority="p0-critical", related_files=["src/login.js"])
    make_task("Add dark mode", priority="p3-low", related_files=["src/theme.css"])
    make_task("Refactor parser", category="refactor", status="in-progress", priority="p1-high")
    make_task("Write guide", category="docs", description="User guide for login flow")
    make_task("Flaky test", category="test", status="blocked", priority="p0-critical")
    service.lifecycle.update(2, "comment", "Waiting on design tokens")
    return service


def _ids(result):
    return [task.id for task in result.items]


class TestFilters:

    def test_no_filters_returns_everything(self, populated):
        result = populated.query.query()
        assert _ids(result) == [1, 2, 3, 4, 5]
        assert result.total_count == 5
        assert result.page_count == 1

    def test_equality_filters_are_case_insensitive(self, populated):
        assert _ids(populated.query.query(TaskFilter(category="BUGFIX"))) == [1]
        assert _ids(populated.query.query(TaskFilter(priority="p0-critical"))) == [1, 5]

    def test_filters_combine(self, populated):
        result = populated.query.query(TaskFilter(priority="p0-critical", status="blocked"))
        assert _ids(result) == [5]

    def test_keyword_searches_title_description_and_comments(self, populated):
        assert _ids(populated.query.query(TaskFilter(keyword="LOGIN"))) == [1, 4]
        assert _ids(populated.query.query(TaskFilter(keyword="design tokens"))) == [2]

    def test_file_filter_normalizes_path(self, populated):
        assert _ids(populated.query.query(TaskFilter(file="./src/login.js"))) == [1]

    def test_author_filter(self, populated):
        assert len(populated.query.query(TaskFilter(author="Tester")).items) == 5
        assert populated.query.query(TaskFilter(author="someone")).items == []

    def test_archived_tasks_are_excluded(self, populated):
        populated.archive.archive(1)
        assert 1 not in _ids(populated.query.query())

    def test_is_empty(self):
        assert TaskFilter().is_empty()
        assert not TaskFilter(status="todo").is_empty()


class TestPagination:

    @pytest.mark.parametrize("page, expected", [(1, [1, 2]), (2, [3, 4]), (3, [5]), (4, [])])
    def test_pages(self, populated, page, expected):
        result = populated.query.query(pagination=Pagination(page=page, page_size=2))

        assert _ids(result) == expected
        assert result.total_count == 5
        assert result.page_count == 3

    def test_exact_multiple(self, populated):
        result = populated.query.query(pagination=Pagination(page=1, page_size=5))
        assert result.page_count == 1

    def test_no_matches(self, populated):
        result = populated.query.query(TaskFilter(status="review"), Pagination(page=1, page_size=10))
        assert result.items == []
        assert result.total_count == 0
        assert result.page_count == 0

    def test_empty_store(self, service):
        result = service.query.query()
        assert result.total_count == 0
        assert result.page_count == 0

    def test_unpaged_second_page_is_empty(self, populated):
        assert populated.query.query(pagination=Pagination(page=2)).items == []

    @pytest.mark.parametrize("pagination", [Pagination(page=0), Pagination(page=1, page_size=0)])
    def test_invalid_pagination(self, populated, pagination):
        with pytest.raises(ValidationError):
            populated.query.query(pagination=pagination)


class TestSort:

    def test_priority_order_follows_vocabulary(self, populated):
        result = populated.query.query(sort=SortMode.PRIORITY)
        assert _ids(result) == [1, 5, 3, 4, 2]

    def test_updated_newest_first(self, populated):
        populated.lifecycle.update(3, "status", "review")
        result = populated.query.query(sort=SortMode.UPDATED)
        assert _ids(result)[:2] == [3, 2]

    def test_created_oldest_first(self, populated):
        assert _ids(populated.query.query(sort="created")) == [1, 2, 3, 4, 5]


class TestStats:

    def test_counts_are_zero_filled(self, populated):
        populated.archive.archive(4)
        populated.journal.add("Kickoff", entry_type="decision")

        stats = populated.query.stats()

        assert stats.total_active == 4
        assert stats.total_archived == 1
        assert stats.by_status == {"todo": 2, "in-progress": 1, "review": 0, "done": 0, "blocked": 1}
        assert stats.by_category["docs"] == 0
        assert stats.by_category["chore"] == 0
        assert stats.by_priority["p0-critical"] == 2
        assert stats.journal_total == 1
        assert stats.journal_by_type["decision"] == 1
        assert stats.journal_by_type["blocker"] == 0

    def test_values_removed_from_vocabulary_still_counted(self, populated):
        populated.config_manager.remove_value("status", "blocked")

        stats = QueryEngine(populated.store, populated.config_manager.load()).stats()

        assert "blocked" in stats.by_status
        assert list(stats.by_status)[-1] == "blocked"

    def test_camel_case_payload(self, populated):
        payload = populated.query.stats().model_dump(by_alias=True)
        assert "totalActive" in payload
        assert "byStatus" in payload


class TestChanges:

    def test_changed_files_matched_to_tasks(self, populated):
        report = populated.query.changes(["src/login.js", "README.md"])

        assert [change.task_id for change in report.tasks] == [1]
        assert report.tasks[0].files == ["src/login.js"]
        assert report.unmatched_files == ["README.md"]

    def test_suffix_match_on_path_boundary(self, populated):
        report = populated.query.changes(["web/src/theme.css", "gin.js"])

        assert [change.task_id for change in report.tasks] == [2]
        assert report.unmatched_files == ["gin.js"]

    def test_no_changes(self, populated):
        report = populated.query.changes([])
        assert report.tasks == []
        assert report.unmatched_files == []

    def test_changes_grouped_by_kind(self, populated):
        report = populated.query.changes(
            [
                FileChange(ChangeKind.NEW, "docs/guide.md"),
                FileChange(ChangeKind.DELETED, "./src/login.js"),
                "src/theme.css",
            ],
            source="git",
        )

        assert report.source == "git"
        assert report.new_files == ["docs/guide.md"]
        assert report.modified_files == ["src/theme.css"]
        assert report.deleted_files == ["src/login.js"]
        assert report.changed_files == ["docs/guide.md", "src/login.js", "src/theme.css"]
        assert [change.task_id for change in report.tasks] == [1, 2]
