"""
TrackerService - per-invocation wiring

Builds the object graph for one working directory:

    TrackerSettings -> Store -> ProjectConfig -> engines

The project configuration is loaded once, on first use, and shared
read-only by every engine for the rest of the invocation.
"""

from datetime import datetime
from functools import cached_property
from pathlib import Path
from typing import Callable, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from tasktracker.context.builder import ContextBuilder
from tasktracker.context.cache import ContextCache
from tasktracker.core import git
from tasktracker.core.config import ProjectConfig, TrackerSettings
from tasktracker.core.exceptions import ConfigurationError
from tasktracker.core.project import ConfigManager
from tasktracker.journal.service import JournalService
from tasktracker.storage.store import Store
from tasktracker.tasks.archive import ArchiveManager
from tasktracker.tasks.changes import ChangeDetector
from tasktracker.tasks.engine import LifecycleEngine
from tasktracker.tasks.query import QueryEngine

logger = structlog.get_logger(__name__)


def load_settings(**overrides) -> TrackerSettings:
    """Build settings from the environment, raising ConfigurationError on bad values."""
    try:
        return TrackerSettings(**overrides)
    except PydanticValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(part) for part in first["loc"])
        raise ConfigurationError(f"Invalid setting {key}: {first['msg']}", config_key=key) from e


class TrackerService:
    """
    Entry point for one working directory.

    Engines are created lazily so that commands touching only one document
    never read the others.
    """

    def __init__(
        self,
        root: Path,
        settings: Optional[TrackerSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        author: Optional[str] = None,
        detect_git: bool = True,
    ):
        self.root = Path(root)
        self.settings = settings or load_settings()
        self.clock = clock
        self.detect_git = detect_git
        self._author = author
        self.store = Store(self.settings.resolve_data_dir(self.root), lock_enabled=self.settings.lock_enabled)

    def open(self) -> List[int]:
        """Repair partition duplicates left by an interrupted archive or restore."""
        return self.store.reconcile()

    # ============================================================================
    # SHARED STATE
    # ============================================================================

    @cached_property
    def config(self) -> ProjectConfig:
        return self.config_manager.load()

    @property
    def author(self) -> Optional[str]:
        if self._author is None and self.detect_git:
            self._author = git.current_user(self.root)
        return self._author

    def current_branch(self) -> Optional[str]:
        return git.current_branch(self.root) if self.detect_git else None

    @cached_property
    def detector(self) -> ChangeDetector:
        return ChangeDetector(self.store, self.root, use_git=self.detect_git)

    # ============================================================================
    # ENGINES
    # ============================================================================

    @cached_property
    def config_manager(self) -> ConfigManager:
        return ConfigManager(self.store)

    @cached_property
    def lifecycle(self) -> LifecycleEngine:
        return LifecycleEngine(self.store, self.config, clock=self.clock, author=self.author)

    @cached_property
    def archive(self) -> ArchiveManager:
        return ArchiveManager(self.store, clock=self.clock)

    @cached_property
    def query(self) -> QueryEngine:
        return QueryEngine(self.store, self.config)

    @cached_property
    def journal(self) -> JournalService:
        return JournalService(self.store, clock=self.clock)

    @cached_property
    def context(self) -> ContextBuilder:
        settings = self.settings.context
        cache = ContextCache(self.store, persist=settings.cache_enabled, max_entries=settings.cache_size)
        return ContextBuilder(self.store, self.config, cache=cache)
