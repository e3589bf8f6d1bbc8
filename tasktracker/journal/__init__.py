"""
Development journal: append-only entries for humans and AI assistants.
"""

from tasktracker.journal.models import EntryType, JournalEntry, JournalLog

__all__ = ["EntryType", "JournalEntry", "JournalLog"]
