"""
Context request/result models.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class Verbosity(str, Enum):
    BRIEF = "brief"
    NORMAL = "normal"
    FULL = "full"


class ContextFormat(str, Enum):
    MARKDOWN = "markdown"
    JSON = "json"


# Journal entries included per verbosity, newest first.
JOURNAL_LIMITS: Dict[Verbosity, int] = {
    Verbosity.BRIEF: 5,
    Verbosity.NORMAL: 15,
    Verbosity.FULL: 50,
}


class ContextRequest(BaseModel):
    """What to assemble and how large it may get."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_id: Optional[int] = Field(None, ge=1, description="Scope to a single task")
    file: Optional[str] = Field(None, description="Scope to tasks related to a file")
    verbosity: Verbosity = Verbosity.NORMAL
    format: ContextFormat = ContextFormat.MARKDOWN
    budget_chars: int = Field(default=8000, ge=200, description="Maximum document length in characters")
    budget_lines: Optional[int] = Field(default=None, ge=10, description="Maximum number of lines")
    recent_days: int = Field(default=7, ge=1, description="Window for the unscoped working set")

    @model_validator(mode="after")
    def validate_scope(self) -> "ContextRequest":
        if self.task_id is not None and self.file:
            raise ValueError("Scope by task or by file, not both")
        return self

    def fingerprint_fields(self) -> Dict[str, object]:
        return {
            "taskId": self.task_id,
            "file": self.file,
            "verbosity": self.verbosity.value,
            "format": self.format.value,
            "budgetChars": self.budget_chars,
            "budgetLines": self.budget_lines,
            "recentDays": self.recent_days,
        }


class ContextResult(BaseModel):
    """A rendered context document plus what went into it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    content: str
    fingerprint: str
    format: ContextFormat = ContextFormat.MARKDOWN
    truncated: bool = False
    omitted_tasks: int = 0
    omitted_entries: int = 0
    task_ids: List[int] = Field(default_factory=list)
    entry_ids: List[int] = Field(default_factory=list)
    cached: bool = Field(default=False, description="Served from the cache")
