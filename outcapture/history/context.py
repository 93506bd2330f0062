from __future__ import annotations

import threading
from typing import Optional

from ..session.config import HistoryConfig
from .store import HistoryStore
from .watermark import ErrorWatermark


class HistoryContext:
    """Cross-invocation state: the history store and the error watermark.

    ``lock`` serializes End phases. Interceptors sharing a context on several
    threads hold it for the whole of End so eviction order and the watermark
    stay consistent.
    """

    def __init__(self, config: Optional[HistoryConfig] = None) -> None:
        self._config = config or HistoryConfig()
        self.store = HistoryStore(self._config.maximum_entry_count)
        self.watermark = ErrorWatermark()
        self.lock = threading.Lock()

    @property
    def config(self) -> HistoryConfig:
        return self._config

    def reset(self) -> None:
        """Forget all history and the watermark."""
        with self.lock:
            self.store.clear()
            self.watermark.reset()


_default_context: Optional[HistoryContext] = None
_default_lock = threading.Lock()


def get_default_context() -> HistoryContext:
    """Process-wide context shared by interceptors built without one."""
    global _default_context
    with _default_lock:
        if _default_context is None:
            _default_context = HistoryContext(HistoryConfig.from_env())
        return _default_context
