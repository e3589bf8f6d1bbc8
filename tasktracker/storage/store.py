"""
File-backed document store for TaskTracker.

Owns the on-disk representation of the four documents kept in the data
directory:

- ``tasks.json``     active tasks      -> TaskCollection
- ``archives.json``  archived tasks    -> ArchiveCollection
- ``journal.json``   journal entries   -> JournalLog
- ``config.json``    project settings  -> ProjectConfig

Writes are atomic (temp file in the same directory, fsync, rename), so a
crash never leaves a half-written document visible. Reads of a missing
document return an empty collection; reads of a malformed one raise
CorruptStoreError and never fall back to an empty collection.
"""

import hashlib
import json
import os
import tempfile
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Type

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from tasktracker.core.config import ProjectConfig
from tasktracker.core.exceptions import CorruptStoreError
from tasktracker.journal.models import JournalLog
from tasktracker.tasks.models import ArchiveCollection, TaskCollection

logger = structlog.get_logger(__name__)

LOCK_FILE_NAME = ".lock"


class DocumentKind(str, Enum):
    """Documents managed by the store."""
    TASKS = "tasks"
    ARCHIVES = "archives"
    JOURNAL = "journal"
    CONFIG = "config"


_DOCUMENTS: Dict[DocumentKind, tuple] = {
    DocumentKind.TASKS: ("tasks.json", TaskCollection),
    DocumentKind.ARCHIVES: ("archives.json", ArchiveCollection),
    DocumentKind.JOURNAL: ("journal.json", JournalLog),
    DocumentKind.CONFIG: ("config.json", ProjectConfig),
}


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)


class Store:
    """
    Durable, atomic load/save of the tracker documents.

    No cross-process arbitration is guaranteed: two concurrent writers race
    and the last rename wins. ``lock()`` narrows that window with an
    advisory ``flock`` when enabled.
    """

    def __init__(self, data_dir: Path, lock_enabled: bool = True):
        """
        Initialize the store.

        Args:
            data_dir: Directory holding the documents
            lock_enabled: Whether ``lock()`` takes an advisory file lock
        """
        self.data_dir = Path(data_dir)
        self.lock_enabled = lock_enabled
        self._lock_depth = 0

    # ============================================================================
    # PATHS
    # ============================================================================

    def path_for(self, kind: DocumentKind) -> Path:
        filename, _ = _DOCUMENTS[DocumentKind(kind)]
        return self.data_dir / filename

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "cache"

    def is_initialized(self) -> bool:
        """True once ``init`` has written the configuration document."""
        return self.path_for(DocumentKind.CONFIG).exists()

    def ensure_data_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    # ============================================================================
    # LOAD / SAVE
    # ============================================================================

    def load(self, kind: DocumentKind) -> Any:
        """
        Load a document.

        Args:
            kind: Which document to read

        Returns:
            The parsed collection; an empty one if the file does not exist

        Raises:
            CorruptStoreError: If the file is not valid JSON or does not match
                the document schema
        """
        kind = DocumentKind(kind)
        path = self.path_for(kind)
        _, model = _DOCUMENTS[kind]

        if not path.exists():
            return model()

        raw = path.read_bytes()
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error("Store document is not valid UTF-8 JSON", kind=kind.value, path=str(path), error=str(e))
            raise CorruptStoreError(
                f"Cannot parse {path.name}: {e}", path=str(path), detail=str(e)
            ) from e

        return self._validate(kind, model, path, data)

    def save(self, kind: DocumentKind, collection: BaseModel) -> None:
        """Serialize ``collection`` and atomically replace the document."""
        kind = DocumentKind(kind)
        path = self.path_for(kind)
        document = collection.to_document()
        atomic_write_text(path, json.dumps(document, indent=2, ensure_ascii=False) + "\n")
        logger.debug("Document saved", kind=kind.value, path=str(path))

    def _validate(self, kind: DocumentKind, model: Type[BaseModel], path: Path, data: Any) -> Any:
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            detail = str(e)
            logger.error("Store document failed validation", kind=kind.value, path=str(path), errors=e.error_count())
            raise CorruptStoreError(
                f"Invalid {kind.value} document {path.name}: {e.error_count()} validation error(s)",
                path=str(path),
                detail=detail,
            ) from e

    def atomic_write_text(self, path: Path, content: str) -> None:
        """Atomic write for derived artifacts kept next to the documents."""
        atomic_write_text(path, content)

    # ============================================================================
    # STATE MARKER
    # ============================================================================

    def state_marker(self) -> str:
        """
        Digest of the raw bytes of every document.

        Any successful ``save`` that changes content changes the marker, which
        makes it usable as the last-modified component of cache keys.
        """
        digest = hashlib.sha256()
        for kind in DocumentKind:
            path = self.path_for(kind)
            digest.update(kind.value.encode("utf-8"))
            digest.update(b"\0")
            if path.exists():
                digest.update(path.read_bytes())
            else:
                digest.update(b"<absent>")
            digest.update(b"\0")
        return digest.hexdigest()

    # ============================================================================
    # LOCKING
    # ============================================================================

    @contextmanager
    def lock(self) -> Iterator[None]:
        """
        Hold an exclusive advisory lock for a load-mutate-save cycle.

        Re-entrant within one store instance. Without ``fcntl`` (Windows) the
        cycle runs unlocked.
        """
        if not self.lock_enabled or self._lock_depth > 0:
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
            return

        self.ensure_data_dir()
        handle = (self.data_dir / LOCK_FILE_NAME).open("a+", encoding="utf-8")
        try:
            try:
                import fcntl
            except ModuleNotFoundError:
                fcntl = None
                logger.warning("Advisory locking unavailable on this platform", data_dir=str(self.data_dir))
            if fcntl is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
                if fcntl is not None:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    # ============================================================================
    # RECONCILIATION
    # ============================================================================

    def reconcile(self) -> List[int]:
        """
        Repair a task present in both partitions.

        Archiving writes the archive document before the active one, and
        restoring writes the active one first; a crash between the two
        writes leaves the task in both. The archive copy wins.

        Returns:
            Ids dropped from the active partition
        """
        if not self.path_for(DocumentKind.TASKS).exists() or not self.path_for(DocumentKind.ARCHIVES).exists():
            return []

        with self.lock():
            tasks: TaskCollection = self.load(DocumentKind.TASKS)
            archives: ArchiveCollection = self.load(DocumentKind.ARCHIVES)
            duplicated = sorted(set(tasks.ids()) & set(archives.ids()))
            if not duplicated:
                return []

            tasks.tasks = [task for task in tasks.tasks if task.id not in duplicated]
            self.save(DocumentKind.TASKS, tasks)

        logger.warning("Reconciled tasks present in both partitions", task_ids=duplicated)
        return duplicated
