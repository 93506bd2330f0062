"""Per-invocation bounded buffers.

Both buffers keep the first ``max_size`` items and count the rest instead of
growing; nothing here ever raises on overflow.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Iterator

import structlog

from ..protocol.records import EmittedObject

logger = structlog.get_logger()

# Host wrapper prefixes stripped before comparing type names
_WRAPPER_PREFIX = re.compile(r"^(Deserialized|Selected)\.")
_WRAPPER_PREFIXES = ("Deserialized.", "Selected.")


class BoundedBuffer:
    """Append-only buffer that drops new items once full.

    NOT thread-safe; one buffer belongs to one invocation.

    Attributes:
        dropped_count: Items refused because the buffer was full.
    """

    def __init__(self, max_size: int) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._max_size = max_size
        self._items: list[Any] = []
        self._dropped_count = 0

    def append(self, item: Any) -> bool:
        """Append ``item`` unless full.

        Returns:
            True if stored, False if dropped
        """
        if len(self._items) >= self._max_size:
            self._dropped_count += 1
            return False
        self._items.append(item)
        return True

    def clear(self) -> None:
        self._items.clear()
        self._dropped_count = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self._max_size

    @property
    def items(self) -> list[Any]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._items)


class HistoryBuffer(BoundedBuffer):
    """Output retained for the extended history entry of one invocation.

    History records are never stored, only counted, so replaying history
    cannot make history grow recursively.
    """

    def __init__(self, max_size: int) -> None:
        super().__init__(max_size)
        self._dropped_history_records = 0

    def note_history_record(self) -> None:
        self._dropped_history_records += 1

    @property
    def dropped_history_records(self) -> int:
        return self._dropped_history_records

    @property
    def total_count(self) -> int:
        """Logical output count: stored plus everything dropped."""
        return len(self._items) + self._dropped_count + self._dropped_history_records

    def insert_front(self, item: Any) -> None:
        """Insert a synthetic item ahead of the output, keeping the cap.

        When full, the last stored item is dropped and counted so the logical
        total does not change.
        """
        if self.is_full:
            self._items.pop()
            self._dropped_count += 1
        self._items.insert(0, item)

    def clear(self) -> None:
        super().clear()
        self._dropped_history_records = 0


def expand_type_names(type_names: Iterable[str]) -> set[str]:
    """Normalize type names and add every wrapper-prefixed spelling."""
    expanded: set[str] = set()
    for name in type_names:
        plain = _WRAPPER_PREFIX.sub("", name)
        expanded.add(plain)
        for prefix in _WRAPPER_PREFIXES:
            expanded.add(prefix + plain)
    return expanded


def is_excluded(obj: EmittedObject, excluded_types: frozenset[str]) -> bool:
    if not excluded_types:
        return False
    return not excluded_types.isdisjoint(expand_type_names(obj.type_names))


class CaptureBuffer(BoundedBuffer):
    """Candidates for the last-output variable.

    Items whose type names match ``excluded_types`` are refused without being
    counted as drops.
    """

    def __init__(self, max_size: int, excluded_types: frozenset[str] = frozenset()) -> None:
        super().__init__(max_size)
        self._excluded_types = frozenset(excluded_types)

    def offer(self, obj: EmittedObject) -> bool:
        if is_excluded(obj, self._excluded_types):
            logger.debug("Excluded from capture", type_name=obj.type_names[0] if obj.type_names else None)
            return False
        return self.append(obj)
