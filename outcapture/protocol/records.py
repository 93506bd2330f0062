from __future__ import annotations

import ast
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import PipelineStoppedError


class StreamType(str, Enum):
    OUTPUT = "output"
    ERROR = "error"
    WARNING = "warning"
    VERBOSE = "verbose"
    DEBUG = "debug"
    INFORMATION = "information"


class ErrorOrigin(str, Enum):
    """Why an error record was produced.

    Only THROW_STATEMENT and PARENT_CONTAINS_ERROR without an originating
    history id shift an invocation's id back by one; every other origin
    leaves the id alone.
    """

    THROW_STATEMENT = "throw_statement"
    PARENT_CONTAINS_ERROR = "parent_contains_error"
    PIPELINE_STOP = "pipeline_stop"
    OTHER = "other"


def qualified_type_names(value: Any) -> list[str]:
    """Logical type names for a value, most derived first.

    Builtins are reported by bare name (``int``, ``object``); everything else
    as ``module.QualName``.
    """
    names: list[str] = []
    for cls in type(value).__mro__:
        if cls.__module__ == "builtins":
            names.append(cls.__qualname__)
        else:
            names.append(f"{cls.__module__}.{cls.__qualname__}")
    return names


@dataclass(eq=False)
class EmittedObject:
    """Envelope around a value flowing through the output pipeline.

    Hosts attach routing tags to say which stream the value was written to.
    Identity semantics: two envelopes are equal only if they are the same.
    """

    base: Any
    routing: set[StreamType] = field(default_factory=set)
    type_names: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.type_names:
            self.type_names = qualified_type_names(self.base)

    @classmethod
    def wrap(cls, value: Any) -> EmittedObject:
        """Return ``value`` if it is already an envelope, otherwise wrap it."""
        if isinstance(value, EmittedObject):
            return value
        return cls(base=value)

    @classmethod
    def tagged(cls, value: Any, stream: StreamType) -> EmittedObject:
        """Wrap ``value`` and tag it for ``stream``."""
        obj = cls.wrap(value)
        if stream is not StreamType.OUTPUT:
            obj.routing.add(stream)
        return obj


@dataclass(eq=False)
class ErrorRecord:
    """An error as the host records it in its error log."""

    exception: BaseException
    history_id: Optional[int] = None
    origin: ErrorOrigin = ErrorOrigin.OTHER

    @classmethod
    def from_exception(
        cls, exception: BaseException, history_id: Optional[int] = None
    ) -> ErrorRecord:
        """Build a record for an exception raised by user code."""
        if isinstance(exception, PipelineStoppedError):
            origin = ErrorOrigin.PIPELINE_STOP
        else:
            origin = ErrorOrigin.THROW_STATEMENT
        return cls(exception=exception, history_id=history_id, origin=origin)

    def __str__(self) -> str:
        return f"{type(self.exception).__name__}: {self.exception}"


@dataclass(eq=False)
class WarningRecord:
    message: str

    def __str__(self) -> str:
        return f"WARNING: {self.message}"


class SourceLocation(BaseModel):
    """Call site that produced output."""

    model_config = ConfigDict(frozen=True)

    file: str = Field(description="File name or pseudo file name of the frame")
    line: int = Field(description="Line number within the file")
    function: str = Field(default="<module>", description="Function executing at the call site")
    text: Optional[str] = Field(default=None, description="Source text of the line, when known")


class CommandHistoryInfo(BaseModel):
    """Plain command-history record as the host keeps it."""

    model_config = ConfigDict(frozen=True)

    history_id: int = Field(description="Invocation identifier")
    command_line: str = Field(description="Command text as entered")
    execution_status: str = Field(default="completed", description="Host execution status")


class Invocation(BaseModel):
    """What the host knows about the command being run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    history_id: int = Field(description="Identifier the host assigned to this invocation")
    tree: Optional[ast.mod] = Field(default=None, description="Parsed syntax tree of the command")
    bound_parameters: dict[str, Any] = Field(
        default_factory=dict, description="Parameters bound to the output handler"
    )


class HistoryEntry(BaseModel):
    """Finalized record of one invocation. Immutable once built."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    history_id: int = Field(description="Invocation identifier")
    output: tuple[Any, ...] = Field(default=(), description="Buffered output envelopes in emission order")
    output_count: int = Field(default=0, description="Total output including dropped items")
    dropped_history_records: int = Field(default=0, description="History records left out of output")
    dropped_for_capacity: int = Field(default=0, description="Items dropped once the buffer was full")
    output_sources: tuple[SourceLocation, ...] = Field(
        default=(), description="Distinct call sites that produced output"
    )
    errors: tuple[Any, ...] = Field(default=(), description="New errors, oldest first")
    succeeded: bool = Field(default=True, description="Whether the invocation succeeded")

    @property
    def output_values(self) -> list[Any]:
        """Buffered output with envelopes unwrapped."""
        return [item.base if isinstance(item, EmittedObject) else item for item in self.output]


# History records are never retained in extended history.
HISTORY_RECORD_TYPES: tuple[type, ...] = (HistoryEntry, CommandHistoryInfo)


def is_history_record(value: Any) -> bool:
    base = value.base if isinstance(value, EmittedObject) else value
    return isinstance(base, HISTORY_RECORD_TYPES)
