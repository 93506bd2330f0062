from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import structlog

from .constants import (
    DEFAULT_MAXIMUM_ERROR_COUNT,
    ERROR_LOG_VARIABLE,
    SESSION_INTERNALS,
    SUCCESS_VARIABLE,
)

logger = structlog.get_logger()


class VariableStore(Protocol):
    """Session variables as the interceptor sees them."""

    def get(self, name: str) -> Any: ...

    def set(self, name: str, value: Any) -> None: ...


class NamespaceVariableStore:
    """Variable store backed by a namespace dict.

    The namespace object is never replaced, only updated, so a host that
    executes code against the same dict sees every change.
    """

    def __init__(
        self,
        namespace: Optional[Dict[str, Any]] = None,
        maximum_error_count: int = DEFAULT_MAXIMUM_ERROR_COUNT,
    ) -> None:
        if maximum_error_count < 1:
            raise ValueError(f"maximum_error_count must be >= 1, got {maximum_error_count}")
        self._namespace: Dict[str, Any] = namespace if namespace is not None else {}
        self._maximum_error_count = maximum_error_count
        self._setup_namespace()

    def _setup_namespace(self) -> None:
        """Seed session internals that are missing; existing values are kept."""
        if SUCCESS_VARIABLE not in self._namespace:
            self._namespace[SUCCESS_VARIABLE] = True
        if not isinstance(self._namespace.get(ERROR_LOG_VARIABLE), list):
            self._namespace[ERROR_LOG_VARIABLE] = []

    @property
    def namespace(self) -> Dict[str, Any]:
        return self._namespace

    @property
    def errors(self) -> list[Any]:
        """The live error log, newest first."""
        return self._namespace[ERROR_LOG_VARIABLE]

    def get(self, name: str) -> Any:
        return self._namespace.get(name)

    def set(self, name: str, value: Any) -> None:
        # Item assignment only; the namespace object must survive
        self._namespace[name] = value

    def update_namespace(self, updates: Dict[str, Any], source_context: str = "user") -> Dict[str, Any]:
        """Merge ``updates`` into the namespace.

        Session internals are only writable from the ``"engine"`` context.

        Returns:
            Dict of changes actually made
        """
        changes: Dict[str, Any] = {}
        for key, value in updates.items():
            if key in SESSION_INTERNALS and source_context != "engine":
                logger.debug("Skipping protected key", key=key, source=source_context)
                continue
            self._namespace[key] = value
            changes[key] = value
        return changes

    def record_error(self, error: Any) -> None:
        """Prepend ``error`` to the error log and clear the success indicator.

        The log is trimmed to ``maximum_error_count`` entries, oldest dropped.
        """
        log = self.errors
        log.insert(0, error)
        del log[self._maximum_error_count:]
        self._namespace[SUCCESS_VARIABLE] = False

    def set_success(self, succeeded: bool) -> None:
        self._namespace[SUCCESS_VARIABLE] = bool(succeeded)

    def clear_errors(self) -> None:
        # Clear in place; readers may hold the list
        self.errors.clear()
