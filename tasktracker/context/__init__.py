"""
AI context assembly.
"""

from tasktracker.context.models import ContextFormat, ContextRequest, ContextResult, Verbosity

__all__ = ["ContextFormat", "ContextRequest", "ContextResult", "Verbosity"]
