"""Incremental harvesting of the host's error log.

The host keeps a growing error log with the newest error first. The watermark
remembers the hash of the newest error already attributed to an invocation so
the next invocation only picks up errors raised since then.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

import structlog

from ..protocol.errors import IncompleteParseError, PipelineStoppedError
from ..protocol.records import ErrorRecord

logger = structlog.get_logger()

# Host bookkeeping, not user-visible failures
_IGNORED_ERRORS: tuple[type[BaseException], ...] = (IncompleteParseError, PipelineStoppedError)


class ErrorWatermark:
    """Cursor into the error log. Only ``harvest_new_errors`` moves it."""

    def __init__(self) -> None:
        self._value: Optional[int] = None

    @property
    def value(self) -> Optional[int]:
        return self._value

    def advance(self, error_hash: int) -> None:
        self._value = error_hash

    def reset(self) -> None:
        self._value = None


def is_ignored_error(entry: Any) -> bool:
    if isinstance(entry, _IGNORED_ERRORS):
        return True
    if isinstance(entry, ErrorRecord) and isinstance(entry.exception, _IGNORED_ERRORS):
        return True
    return False


def harvest_new_errors(error_log: Optional[Iterable[Any]], watermark: ErrorWatermark) -> list[Any]:
    """Collect errors added to ``error_log`` since the watermark.

    Args:
        error_log: The host's error log, newest first. None means no log.
        watermark: Cursor to consult and advance

    Returns:
        New errors, oldest first

    Errors raised while iterating the log (e.g. it changed size) propagate;
    retrying could attribute the same error twice.
    """
    if error_log is None:
        return []

    collected: list[Any] = []
    for entry in error_log:
        if watermark.value is not None and hash(entry) == watermark.value:
            break
        if is_ignored_error(entry):
            continue
        collected.append(entry)

    if collected:
        watermark.advance(hash(collected[0]))
        collected.reverse()
        logger.debug("Harvested new errors", count=len(collected), watermark=watermark.value)
    return collected
