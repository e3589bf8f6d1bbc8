"""
Fingerprint-keyed cache of rendered context documents.

Entries never need invalidating: the fingerprint includes the store's state
marker, so any mutation produces a new key and old entries simply stop being
hit. The on-disk cache is pruned to the newest ``max_entries`` files.
"""

import json
from pathlib import Path
from typing import Dict, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from tasktracker.context.models import ContextResult
from tasktracker.storage.store import Store

logger = structlog.get_logger(__name__)


class ContextCache:
    """In-process dictionary in front of JSON files under ``<data dir>/cache``."""

    def __init__(self, store: Store, persist: bool = True, max_entries: int = 20):
        self.store = store
        self.persist = persist
        self.max_entries = max_entries
        self._memory: Dict[str, ContextResult] = {}

    @property
    def directory(self) -> Path:
        return self.store.cache_dir

    def _path(self, fingerprint: str) -> Path:
        return self.directory / f"{fingerprint}.json"

    def get(self, fingerprint: str) -> Optional[ContextResult]:
        """Return a cached result marked ``cached=True``, or None."""
        result = self._memory.get(fingerprint)
        if result is None and self.persist:
            result = self._read(fingerprint)
            if result is not None:
                self._memory[fingerprint] = result
        if result is None:
            return None
        logger.debug("Context cache hit", fingerprint=fingerprint[:12])
        return result.model_copy(update={"cached": True})

    def put(self, result: ContextResult) -> None:
        stored = result.model_copy(update={"cached": False})
        self._memory[result.fingerprint] = stored
        # Reads of an uninitialized workspace leave no trace on disk.
        if not self.persist or not self.store.data_dir.exists():
            return

        document = stored.model_dump(mode="json", by_alias=True)
        self.store.atomic_write_text(self._path(result.fingerprint), json.dumps(document, ensure_ascii=False))
        self.prune()

    def prune(self) -> int:
        """Delete all but the newest ``max_entries`` cache files."""
        if not self.directory.exists():
            return 0
        files = sorted(self.directory.glob("*.json"), key=lambda path: path.stat().st_mtime, reverse=True)
        removed = 0
        for path in files[self.max_entries:]:
            path.unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.debug("Context cache pruned", removed=removed)
        return removed

    def _read(self, fingerprint: str) -> Optional[ContextResult]:
        path = self._path(fingerprint)
        if not path.exists():
            return None
        try:
            return ContextResult.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, PydanticValidationError) as e:
            # A damaged cache file is a miss; the entry is rebuilt and rewritten.
            logger.warning("Ignoring unreadable context cache entry", path=str(path), error=str(e))
            return None
