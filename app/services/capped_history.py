"""Fixed-capacity, append-only history with FIFO eviction.

Used for a word's score history and a learner's confidence history. Both are
persisted as JSON lists, so the helper loads from and dumps to plain lists.
"""
from collections import deque
from typing import Any, Deque, Generic, Iterable, Iterator, List, Optional, TypeVar
from app.constants import HISTORY_CAPACITY

T = TypeVar("T")


class CappedHistory(Generic[T]):
    """Ordered sequence holding at most ``capacity`` entries, oldest first.

    Appending to a full history drops the oldest entry. Both operations are
    O(1); entries are never edited in place.
    """

    def __init__(self, entries: Optional[Iterable[T]] = None, capacity: int = HISTORY_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        # A deque with maxlen keeps only the newest entries when seeded
        # from an over-long stored list.
        self._entries: Deque[T] = deque(entries or (), maxlen=capacity)

    def append(self, entry: T) -> Optional[T]:
        """Append an entry, returning the evicted oldest entry if any."""
        evicted = self._entries[0] if len(self._entries) == self.capacity else None
        self._entries.append(entry)
        return evicted

    @property
    def oldest(self) -> Optional[T]:
        return self._entries[0] if self._entries else None

    @property
    def newest(self) -> Optional[T]:
        return self._entries[-1] if self._entries else None

    def to_list(self) -> List[T]:
        """Entries oldest-first as a new list, ready for a JSON column."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[T]:
        return iter(self._entries)

    def __reversed__(self) -> Iterator[T]:
        return reversed(self._entries)

    def __repr__(self) -> str:
        return f"CappedHistory(len={len(self._entries)}, capacity={self.capacity})"


def append_capped(entries: Optional[List[Any]], entry: Any, capacity: int = HISTORY_CAPACITY) -> List[Any]:
    """Return a new list with ``entry`` appended and trimmed to ``capacity``."""
    history = CappedHistory(entries, capacity=capacity)
    history.append(entry)
    return history.to_list()
