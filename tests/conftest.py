"""Shared fixtures: isolated workspaces and a deterministic clock."""

from datetime import datetime, timedelta, timezone

import pytest
import structlog

from tasktracker.core.config import TrackerSettings
from tasktracker.service import TrackerService
from tasktracker.storage.store import Store
from tasktracker.tasks.models import TaskDraft


class FakeClock:
    """Returns strictly increasing UTC datetimes, one step per call."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc),
                 step: timedelta = timedelta(minutes=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.now
        self.now += self.step
        return value

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture(autouse=True)
def reset_logging():
    """CLI runs configure structlog against a captured stream; undo that after each test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / ".tasktracker"


@pytest.fixture
def store(data_dir):
    return Store(data_dir)


@pytest.fixture
def settings(data_dir):
    return TrackerSettings(data_dir=data_dir, _env_file=None)


@pytest.fixture
def service(tmp_path, settings, clock):
    service = TrackerService(tmp_path, settings, clock=clock, author="tester", detect_git=False)
    service.config_manager.init("demo")
    return service


@pytest.fixture
def make_task(service):
    """Create a task through the lifecycle engine."""

    def _make(title: str = "Task", **fields):
        return service.lifecycle.create(TaskDraft(title=title, **fields))

    return _make
