"""
Project configuration management (``config.json``).

Initializes a workspace and edits its vocabularies and display options.
Every change is validated against ProjectConfig before it is written.
"""

from typing import Any, Dict, Optional, Tuple

import structlog
from pydantic import ValidationError as PydanticValidationError

from tasktracker.core.config import VOCABULARIES, ProjectConfig
from tasktracker.core.exceptions import InvalidValueError, NotFoundError, ValidationError
from tasktracker.storage.store import DocumentKind, Store

logger = structlog.get_logger(__name__)

# Accepted spellings for vocabulary names.
_VOCABULARY_NAMES: Dict[str, str] = {}
for _name, (_attr, _) in VOCABULARIES.items():
    _VOCABULARY_NAMES[_name] = _name
    _VOCABULARY_NAMES[_attr] = _name

SETTABLE_OPTIONS: Dict[str, str] = {
    "projectName": "project_name",
    "displayWidth": "display_width",
    "defaultView": "default_view",
    "dateFormat": "date_format",
    "defaultStatus": "default_status",
    "defaultCategory": "default_category",
    "defaultPriority": "default_priority",
    "defaultEffort": "default_effort",
}

_CLEAR_VALUES = {"", "none", "null"}

# default* option attribute -> vocabulary it must belong to
_DEFAULT_OPTIONS: Dict[str, str] = {f"default_{name}": name for name in VOCABULARIES}


def _resolve_vocabulary(name: str) -> str:
    key = (name or "").strip().lower()
    if key not in _VOCABULARY_NAMES:
        raise ValidationError(
            f"Unknown vocabulary '{name}'. Valid vocabularies: {', '.join(VOCABULARIES)}",
            field="vocabulary",
            value=name,
        )
    return _VOCABULARY_NAMES[key]


def _resolve_option(key: str) -> str:
    for camel, attr in SETTABLE_OPTIONS.items():
        if key in (camel, attr):
            return attr
    raise ValidationError(
        f"Unknown option '{key}'. Valid options: {', '.join(SETTABLE_OPTIONS)}",
        field="option",
        value=key,
    )


class ConfigManager:
    """Reads and updates the project configuration document."""

    def __init__(self, store: Store):
        self.store = store

    def load(self) -> ProjectConfig:
        return self.store.load(DocumentKind.CONFIG)

    def init(self, project_name: str = "", force: bool = False) -> Tuple[ProjectConfig, bool]:
        """
        Initialize the data directory.

        Creates the configuration document and any missing collection
        documents. Existing tasks, archives and journal entries are never
        touched; ``force`` only resets the configuration.

        Returns:
            (configuration, whether it was written)
        """
        with self.store.lock():
            if self.store.is_initialized() and not force:
                return self.load(), False

            self.store.ensure_data_dir()
            config = ProjectConfig(project_name=project_name.strip())
            self.store.save(DocumentKind.CONFIG, config)
            for kind in (DocumentKind.TASKS, DocumentKind.ARCHIVES, DocumentKind.JOURNAL):
                if not self.store.path_for(kind).exists():
                    self.store.save(kind, self.store.load(kind))

        logger.info("Workspace initialized", data_dir=str(self.store.data_dir), force=force)
        return config, True

    def add_value(self, vocabulary: str, value: str) -> ProjectConfig:
        """Append a value to a vocabulary; adding an existing value is a no-op."""
        name = _resolve_vocabulary(vocabulary)
        item = (value or "").strip().lower()
        if not item:
            raise ValidationError("Vocabulary values cannot be empty", field=name, value=value)

        with self.store.lock():
            config = self.load()
            values = config.vocabulary(name)
            if item in values:
                return config
            updated = self._replace(config, {VOCABULARIES[name][0]: [*values, item]}, name)
            self.store.save(DocumentKind.CONFIG, updated)

        logger.info("Vocabulary value added", vocabulary=name, value=item)
        return updated

    def remove_value(self, vocabulary: str, value: str) -> ProjectConfig:
        """
        Remove a vocabulary value.

        Tasks already carrying the value keep it; it is only rejected on
        later writes.

        Raises:
            NotFoundError: Value not in the vocabulary
            ValidationError: Last remaining value, or the configured default
        """
        name = _resolve_vocabulary(vocabulary)
        item = (value or "").strip().lower()

        with self.store.lock():
            config = self.load()
            values = config.vocabulary(name)
            if item not in values:
                raise NotFoundError(
                    f"'{value}' is not a configured {name}", entity_type=name, entity_id=value
                )
            if len(values) == 1:
                raise ValidationError(f"Cannot remove the last {name} value", field=name, value=value)
            if getattr(config, f"default_{name}") == item:
                raise ValidationError(
                    f"'{item}' is the default {name}; change the default first", field=name, value=value
                )
            updated = self._replace(config, {VOCABULARIES[name][0]: [v for v in values if v != item]}, name)
            self.store.save(DocumentKind.CONFIG, updated)

        logger.info("Vocabulary value removed", vocabulary=name, value=item)
        return updated

    def set_option(self, key: str, value: Optional[str]) -> ProjectConfig:
        """Set a scalar option; ``default*`` vocabulary options accept none/empty to clear."""
        attr = _resolve_option(key)
        new_value: Any = value.strip() if isinstance(value, str) else value
        vocabulary = _DEFAULT_OPTIONS.get(attr)

        if vocabulary is not None:
            if new_value is None or str(new_value).lower() in _CLEAR_VALUES:
                new_value = None
            else:
                new_value = str(new_value).lower()

        with self.store.lock():
            config = self.load()
            if vocabulary is not None and new_value is not None:
                allowed = config.vocabulary(vocabulary)
                if new_value not in allowed:
                    raise InvalidValueError(vocabulary, value, allowed)
            updated = self._replace(config, {attr: new_value}, key)
            self.store.save(DocumentKind.CONFIG, updated)

        logger.info("Configuration option set", option=key, value=new_value)
        return updated

    @staticmethod
    def _replace(config: ProjectConfig, changes: Dict[str, Any], field: str) -> ProjectConfig:
        payload = config.model_dump()
        payload.update(changes)
        try:
            return ProjectConfig.model_validate(payload)
        except PydanticValidationError as e:
            first = e.errors()[0]
            raise ValidationError(
                f"Invalid configuration for {field}: {first['msg']}",
                field=field,
                value=changes,
            ) from e
