"""
Core module: configuration, exceptions and logging shared by every component.
"""

from tasktracker.core.config import ProjectConfig, TrackerSettings
from tasktracker.core.exceptions import (
    ConfigurationError,
    ConflictError,
    CorruptStoreError,
    InvalidValueError,
    NotFoundError,
    TaskTrackerError,
    ValidationError,
)

__all__ = [
    "ProjectConfig",
    "TrackerSettings",
    "TaskTrackerError",
    "ValidationError",
    "NotFoundError",
    "InvalidValueError",
    "CorruptStoreError",
    "ConflictError",
    "ConfigurationError",
]
