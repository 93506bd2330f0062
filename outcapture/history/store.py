from __future__ import annotations

from typing import Dict, Iterator, Optional

import structlog

from ..protocol.records import HistoryEntry

logger = structlog.get_logger()


class HistoryStore:
    """Extended history: finalized entries keyed by invocation id.

    Entries are write-once. When the table grows past ``maximum_entry_count``
    the entries with the smallest invocation ids are evicted.

    Thread Safety:
        NOT thread-safe on its own. Writers go through ``HistoryContext``,
        whose lock serializes every End phase.
    """

    def __init__(self, maximum_entry_count: int = 200) -> None:
        if maximum_entry_count < 1:
            raise ValueError(f"maximum_entry_count must be >= 1, got {maximum_entry_count}")
        self._maximum_entry_count = maximum_entry_count
        self._entries: Dict[int, HistoryEntry] = {}

    @property
    def maximum_entry_count(self) -> int:
        return self._maximum_entry_count

    @maximum_entry_count.setter
    def maximum_entry_count(self, value: int) -> None:
        if value < 1:
            raise ValueError(f"maximum_entry_count must be >= 1, got {value}")
        self._maximum_entry_count = value
        self._evict()

    def add(self, entry: HistoryEntry) -> bool:
        """Store ``entry`` and evict the oldest entries if over capacity.

        Returns:
            False if an entry with the same id is already stored
        """
        if entry.history_id in self._entries:
            logger.warning(
                "Rejected duplicate history entry",
                history_id=entry.history_id,
            )
            return False
        self._entries[entry.history_id] = entry
        self._evict()
        return True

    def _evict(self) -> None:
        while len(self._entries) > self._maximum_entry_count:
            oldest = min(self._entries)
            del self._entries[oldest]
            logger.debug("Evicted history entry", history_id=oldest, size=len(self._entries))

    def get(self, history_id: int) -> Optional[HistoryEntry]:
        return self._entries.get(history_id)

    def latest(self) -> Optional[HistoryEntry]:
        """Entry with the largest invocation id, or None when empty."""
        if not self._entries:
            return None
        return self._entries[max(self._entries)]

    def remove(self, history_id: int) -> Optional[HistoryEntry]:
        return self._entries.pop(history_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, history_id: object) -> bool:
        return history_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        """Iterate entries in ascending invocation id order."""
        for history_id in sorted(self._entries):
            yield self._entries[history_id]
