"""
Storage layer: atomic JSON documents in the tracker data directory.
"""

from .store import DocumentKind, Store, atomic_write_text

__all__ = ["DocumentKind", "Store", "atomic_write_text"]
