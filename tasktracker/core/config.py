"""
Configuration management for TaskTracker based on Pydantic Settings.

Two layers live here:
- TrackerSettings: runtime settings from environment variables and .env
  files (data directory, logging, locking, context defaults).
- ProjectConfig: the per-project configuration document persisted in
  ``config.json`` (project name, vocabularies, display options).

Both are loaded once per invocation and passed explicitly to the components
that need them.
"""

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings

DATA_DIR_NAME = ".tasktracker"

DEFAULT_STATUSES = ["todo", "in-progress", "review", "done", "blocked"]
DEFAULT_CATEGORIES = ["feature", "bugfix", "refactor", "docs", "test", "chore", "technical-debt"]
DEFAULT_PRIORITIES = ["p0-critical", "p1-high", "p2-medium", "p3-low"]
DEFAULT_EFFORTS = ["1-trivial", "2-small", "3-medium", "5-large", "8-xlarge"]

# vocabulary name -> (ProjectConfig attribute, preferred default)
VOCABULARIES: Dict[str, tuple] = {
    "status": ("statuses", "todo"),
    "category": ("categories", "feature"),
    "priority": ("priorities", "p2-medium"),
    "effort": ("efforts", "3-medium"),
}

# Keys written by older releases of the tracker.
_LEGACY_CONFIG_KEYS = {
    "taskCategories": "categories",
    "taskStatuses": "statuses",
    "priorityLevels": "priorities",
    "effortEstimation": "efforts",
    "maxDisplayWidth": "displayWidth",
    "defaultListView": "defaultView",
}


class LoggingConfig(BaseSettings):
    """Structured logging configuration."""

    level: str = Field(default="WARNING", description="Logging level")
    format: Literal["console", "json"] = Field(default="console", description="Renderer for log events")
    include_timestamps: bool = Field(default=True, description="Add ISO timestamps to events")

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    model_config = {"env_prefix": "TASKTRACKER_LOG_"}


class ContextConfig(BaseSettings):
    """Defaults for AI context assembly."""

    budget_chars: int = Field(default=8000, ge=200, description="Default character budget")
    recent_days: int = Field(default=7, ge=1, description="Window for the unscoped working set")
    cache_enabled: bool = Field(default=True, description="Persist rendered documents in the cache dir")
    cache_size: int = Field(default=20, ge=1, description="Rendered documents kept on disk")

    model_config = {"env_prefix": "TASKTRACKER_CONTEXT_"}


class TrackerSettings(BaseSettings):
    """Main runtime settings."""

    data_dir: Optional[Path] = Field(default=None, description="Data directory (default: <root>/.tasktracker)")
    lock_enabled: bool = Field(default=True, description="Hold an advisory lock around write cycles")
    debug: bool = Field(default=False, description="Show tracebacks on errors")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)

    def resolve_data_dir(self, root: Path) -> Path:
        """Return the absolute data directory for a working directory."""
        if self.data_dir is None:
            return Path(root) / DATA_DIR_NAME
        if self.data_dir.is_absolute():
            return self.data_dir
        return Path(root) / self.data_dir

    model_config = {
        "env_prefix": "TASKTRACKER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }


def _normalize_vocabulary(values: List[str]) -> List[str]:
    normalized: List[str] = []
    for value in values:
        item = str(value).strip().lower()
        if not item:
            raise ValueError("Vocabulary values cannot be empty")
        if item not in normalized:
            normalized.append(item)
    if not normalized:
        raise ValueError("Vocabulary must contain at least one value")
    return normalized


class ProjectConfig(BaseModel):
    """Project configuration document (``config.json``)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    project_name: str = Field(default="", description="Display name of the project")
    categories: List[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    statuses: List[str] = Field(default_factory=lambda: list(DEFAULT_STATUSES))
    priorities: List[str] = Field(default_factory=lambda: list(DEFAULT_PRIORITIES))
    efforts: List[str] = Field(default_factory=lambda: list(DEFAULT_EFFORTS))

    display_width: int = Field(default=120, ge=60, le=200)
    default_view: Literal["table", "compact", "detailed"] = "table"
    date_format: Literal["locale", "iso", "short"] = "locale"

    default_status: Optional[str] = None
    default_category: Optional[str] = None
    default_priority: Optional[str] = None
    default_effort: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def migrate_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for old, new in _LEGACY_CONFIG_KEYS.items():
            if old in data and new not in data:
                data[new] = data.pop(old)
        # The legacy "relative" date format renders the same as "short".
        if data.get("dateFormat") == "relative":
            data["dateFormat"] = "short"
        return data

    @field_validator("categories", "statuses", "priorities", "efforts")
    @classmethod
    def validate_vocabulary(cls, v: List[str]) -> List[str]:
        return _normalize_vocabulary(v)

    @model_validator(mode="after")
    def validate_defaults(self) -> "ProjectConfig":
        for name, (attr, _) in VOCABULARIES.items():
            default = getattr(self, f"default_{name}")
            if default is not None and default.lower() not in getattr(self, attr):
                raise ValueError(f"default{name.capitalize()} '{default}' is not one of {getattr(self, attr)}")
        return self

    def vocabulary(self, name: str) -> List[str]:
        """Legal values for an enumerated task field."""
        attr, _ = VOCABULARIES[name]
        return list(getattr(self, attr))

    def default_for(self, name: str) -> str:
        """Configured default, else the conventional one, else the first value."""
        attr, preferred = VOCABULARIES[name]
        explicit = getattr(self, f"default_{name}")
        if explicit:
            return explicit.lower()
        values = getattr(self, attr)
        return preferred if preferred in values else values[0]

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
