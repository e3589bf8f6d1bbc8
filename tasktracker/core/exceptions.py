"""
Custom exceptions for TaskTracker.

Exception hierarchy:
- TaskTrackerError (base)
  ├── ValidationError
  ├── NotFoundError
  ├── InvalidValueError
  ├── CorruptStoreError
  ├── ConflictError
  └── ConfigurationError

Every class carries the process exit code the CLI uses when the error
reaches it, so the command layer never has to map kinds by hand.
"""

from typing import Any, Dict, Iterable, Optional


class TaskTrackerError(Exception):
    """Base exception for all TaskTracker errors."""

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        base_msg = self.message
        if self.error_code:
            base_msg = f"[{self.error_code}] {base_msg}"
        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Serializable payload for JSON output."""
        return {
            "kind": self.kind,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class ValidationError(TaskTrackerError):
    """Bad or missing required input."""

    exit_code = 2

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]
        kwargs.setdefault("error_code", "VALIDATION")
        super().__init__(message, **kwargs, context=context)
        self.field = field


class NotFoundError(TaskTrackerError):
    """Referenced task, entry or path is absent."""

    exit_code = 3

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if entity_type:
            context["entity_type"] = entity_type
        if entity_id is not None:
            context["entity_id"] = entity_id
        kwargs.setdefault("error_code", "NOT_FOUND")
        super().__init__(message, **kwargs, context=context)


class InvalidValueError(TaskTrackerError):
    """Value outside the configured vocabulary for a field."""

    exit_code = 4

    def __init__(
        self,
        field: str,
        value: Any,
        valid_values: Iterable[str],
        **kwargs: Any,
    ) -> None:
        valid = list(valid_values)
        message = f'Invalid {field}: "{value}". Valid values: {", ".join(valid)}'
        context = kwargs.pop("context", {})
        context.update({"field": field, "value": str(value)[:100], "valid_values": valid})
        kwargs.setdefault("error_code", "INVALID_VALUE")
        super().__init__(message, **kwargs, context=context)
        self.field = field
        self.valid_values = valid


class CorruptStoreError(TaskTrackerError):
    """A backing document exists but cannot be parsed."""

    exit_code = 5

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        detail: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if path:
            context["path"] = path
        if detail:
            context["detail"] = detail
        kwargs.setdefault("error_code", "CORRUPT_STORE")
        super().__init__(message, **kwargs, context=context)
        self.path = path
        self.detail = detail


class ConflictError(TaskTrackerError):
    """Archive/restore id collision between partitions."""

    exit_code = 6

    def __init__(
        self,
        message: str,
        entity_id: Optional[Any] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if entity_id is not None:
            context["entity_id"] = entity_id
        kwargs.setdefault("error_code", "CONFLICT")
        super().__init__(message, **kwargs, context=context)


class ConfigurationError(TaskTrackerError):
    """Invalid project or runtime configuration."""

    exit_code = 7

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_file: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        if config_file:
            context["config_file"] = config_file
        kwargs.setdefault("error_code", "CONFIGURATION")
        super().__init__(message, **kwargs, context=context)
