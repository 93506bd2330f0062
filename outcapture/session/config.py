"""Configuration for output capture and extended history."""

from __future__ import annotations

import os as _os
from dataclasses import dataclass, field
from typing import Optional

_TRUTHY = {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    value = _os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = _os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


@dataclass
class CaptureConfig:
    """Settings for the last-output variable.

    Read-only to the interceptor; hosts own loading and persisting it.
    """

    # Variable updated with the most recent output
    variable_name: str = "_"

    # Logical type names never captured (wrapper prefixes are matched too)
    excluded_types: frozenset[str] = field(default_factory=frozenset)

    # Capture buffer limit per invocation
    maximum_item_count: int = 1000

    # Whether a single bool/int/float/... result replaces the variable
    capture_value_types: bool = False

    # Whether an invocation with no output sets the variable to None
    capture_null: bool = False

    def __post_init__(self) -> None:
        if self.maximum_item_count < 1:
            raise ValueError(f"maximum_item_count must be >= 1, got {self.maximum_item_count}")
        if not self.variable_name:
            raise ValueError("variable_name must not be empty")
        self.excluded_types = frozenset(self.excluded_types)

    @classmethod
    def from_env(cls, variable_name: Optional[str] = None) -> CaptureConfig:
        """Build a config from ``OUTCAPTURE_*`` environment variables.

        Explicit arguments win over the environment.
        """
        excluded = _os.getenv("OUTCAPTURE_EXCLUDED_TYPES", "")
        return cls(
            variable_name=variable_name or _os.getenv("OUTCAPTURE_VARIABLE_NAME") or "_",
            excluded_types=frozenset(name.strip() for name in excluded.split(",") if name.strip()),
            maximum_item_count=_env_int("OUTCAPTURE_MAX_CAPTURE_ITEMS", 1000),
            capture_value_types=_env_bool("OUTCAPTURE_CAPTURE_VALUE_TYPES", False),
            capture_null=_env_bool("OUTCAPTURE_CAPTURE_NULL", False),
        )


@dataclass
class HistoryConfig:
    """Limits for the extended history store."""

    maximum_entry_count: int = 200
    maximum_item_count_per_entry: int = 1000

    def __post_init__(self) -> None:
        if self.maximum_entry_count < 1:
            raise ValueError(f"maximum_entry_count must be >= 1, got {self.maximum_entry_count}")
        if self.maximum_item_count_per_entry < 1:
            raise ValueError(
                f"maximum_item_count_per_entry must be >= 1, got {self.maximum_item_count_per_entry}"
            )

    @classmethod
    def from_env(cls) -> HistoryConfig:
        return cls(
            maximum_entry_count=_env_int("OUTCAPTURE_MAX_ENTRIES", 200),
            maximum_item_count_per_entry=_env_int("OUTCAPTURE_MAX_ITEMS_PER_ENTRY", 1000),
        )
