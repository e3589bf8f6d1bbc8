"""Task id allocation."""

from typing import Iterable, Optional

from tasktracker.tasks.models import ArchiveCollection, TaskCollection


def next_id(ids: Iterable[int]) -> int:
    """``max(ids) + 1``, or 1 for an empty sequence."""
    return max(ids, default=0) + 1


class IdentityAllocator:
    """
    Allocates task ids from the records themselves.

    There is no counter file: the next id is always derived from the ids
    present in both partitions, so an out-of-band edit to the store cannot
    cause a collision. ``nextHint`` in the tasks document is written for
    readers only and is never consulted here.
    """

    def next_id(self, active: TaskCollection, archived: Optional[ArchiveCollection] = None) -> int:
        ids = list(active.ids())
        if archived is not None:
            ids.extend(archived.ids())
        return next_id(ids)
