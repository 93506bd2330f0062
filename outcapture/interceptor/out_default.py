"""Default output handler wrapper that records extended history.

``OutputInterceptor`` sits in front of the host's own output step. For every
invocation it is driven through three phases:

- ``begin(invocation)``: reset per-invocation state, remember the syntax tree.
- ``process(obj)``: classify and buffer each emitted object, then hand it to
  the renderer unchanged (routing tags are stripped only afterwards).
- ``end()``: decide the last-output variable, harvest new errors, and store a
  ``HistoryEntry`` for the invocation.

Cross-invocation state (store, watermark, last-output variable) is only
touched during ``end()``, under the context lock.
"""

from __future__ import annotations

import ast
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog

from ..analysis.retention import RetentionDecision, decide_retention, select_capture_value
from ..history.buffer import CaptureBuffer, HistoryBuffer
from ..history.context import HistoryContext, get_default_context
from ..history.watermark import harvest_new_errors
from ..protocol.errors import InterceptorStateError
from ..protocol.records import (
    EmittedObject,
    ErrorOrigin,
    ErrorRecord,
    HistoryEntry,
    Invocation,
    SourceLocation,
    StreamType,
    WarningRecord,
    is_history_record,
)
from ..protocol.streams import classify, strip_routing
from ..session.callstack import CallStackProvider, caller_location
from ..session.config import CaptureConfig, HistoryConfig
from ..session.constants import ERROR_LOG_VARIABLE, OUT_VARIABLE_PARAMETER, SUCCESS_VARIABLE
from ..session.variables import VariableStore
from .renderer import OutputRenderer

logger = structlog.get_logger()

# Errors without an originating id that belong to the previous invocation
_ADJUSTING_ORIGINS = {ErrorOrigin.THROW_STATEMENT, ErrorOrigin.PARENT_CONTAINS_ERROR}


class OutputInterceptor:
    """Wraps a renderer and records every invocation's output and errors."""

    def __init__(
        self,
        renderer: OutputRenderer,
        variables: VariableStore,
        capture_config: Optional[CaptureConfig] = None,
        history_config: Optional[HistoryConfig] = None,
        context: Optional[HistoryContext] = None,
        call_stack: Optional[CallStackProvider] = None,
    ) -> None:
        self._renderer = renderer
        self._variables = variables
        self._capture_config = capture_config or CaptureConfig()
        self._context = context or get_default_context()
        history_config = history_config or self._context.config
        self._call_stack = call_stack or caller_location

        self._history = HistoryBuffer(history_config.maximum_item_count_per_entry)
        self._capture = CaptureBuffer(
            self._capture_config.maximum_item_count,
            self._capture_config.excluded_types,
        )
        self._output_sources: list[SourceLocation] = []
        self._history_id = -1
        self._tree: Optional[ast.AST] = None
        self._adjust_history_id = False
        self._variable_conflict = False
        self._active = False

    @property
    def context(self) -> HistoryContext:
        return self._context

    @property
    def history_id(self) -> int:
        """Invocation id the current entry will be stored under."""
        return self._history_id

    @property
    def variable_conflict(self) -> bool:
        return self._variable_conflict

    @property
    def active(self) -> bool:
        return self._active

    def _require_active(self, phase: str) -> None:
        if not self._active:
            raise InterceptorStateError(f"{phase}() called before begin()")

    def begin(self, invocation: Invocation) -> None:
        """Start an invocation.

        If the command bound its output to the capture variable, that binding
        is redirected to the discard target since ``end()`` assigns the
        variable itself.
        """
        self._history.clear()
        self._capture.clear()
        self._output_sources = []
        self._adjust_history_id = False
        self._variable_conflict = False

        self._history_id = invocation.history_id
        self._tree = invocation.tree

        params = invocation.bound_parameters
        if params.get(OUT_VARIABLE_PARAMETER) == self._capture_config.variable_name:
            self._variable_conflict = True
            params[OUT_VARIABLE_PARAMETER] = None

        self._active = True
        logger.debug(
            "Output interception started",
            history_id=self._history_id,
            variable_conflict=self._variable_conflict,
        )
        self._renderer.begin(True)

    def process(self, obj: Any) -> None:
        """Observe one emitted object and pass it to the renderer."""
        self._require_active("process")
        if obj is None:
            self._renderer.process_one(obj)
            return

        item = EmittedObject.wrap(obj)
        classified = classify(item)
        record = classified.error_record if classified.is_error else None
        if record is not None:
            self._track_error(record)
        else:
            self._retain(item)

        self._renderer.process_one(item)

        # The renderer needed the routing tags; nothing after it should see them
        if strip_routing(item):
            self._record_source()

    def _track_error(self, record: ErrorRecord) -> None:
        if record.history_id is None:
            if record.origin in _ADJUSTING_ORIGINS:
                self._adjust_history_id = True
        elif record.history_id < self._history_id:
            self._history_id = record.history_id

    def _retain(self, item: EmittedObject) -> None:
        if is_history_record(item):
            self._history.note_history_record()
        else:
            self._history.append(item)
        # History records may still become the last output
        self._capture.offer(item)

    def _record_source(self) -> None:
        location = self._call_stack()
        if location is not None and location not in self._output_sources:
            self._output_sources.append(location)

    def end(self) -> HistoryEntry:
        """Finish the invocation and store its history entry.

        The renderer's own ``end()`` always runs, so visible output is
        unaffected if finalization fails; the failure still propagates.
        """
        self._require_active("end")
        self._active = False
        try:
            with self._context.lock:
                return self._finalize()
        finally:
            self._renderer.end()

    def _finalize(self) -> HistoryEntry:
        last_succeeded = bool(self._variables.get(SUCCESS_VARIABLE))

        if self._adjust_history_id:
            self._history_id -= 1

        output_count = self._history.total_count
        omitted = self._history.dropped_history_records
        if omitted > 0:
            warning = EmittedObject.tagged(
                WarningRecord(f"<Omitting {omitted} history information objects>"),
                StreamType.WARNING,
            )
            self._history.insert_front(warning)

        self._update_last_output()

        errors = harvest_new_errors(self._variables.get(ERROR_LOG_VARIABLE), self._context.watermark)

        succeeded = last_succeeded or (output_count == 0 and not errors)

        entry = HistoryEntry(
            history_id=self._history_id,
            output=tuple(self._history.items),
            output_count=output_count,
            dropped_history_records=omitted,
            dropped_for_capacity=self._history.dropped_count,
            output_sources=tuple(self._output_sources),
            errors=tuple(errors),
            succeeded=succeeded,
        )
        self._context.store.add(entry)

        logger.debug(
            "Output interception finished",
            history_id=entry.history_id,
            output_count=output_count,
            errors=len(errors),
            succeeded=succeeded,
        )
        return entry

    def _update_last_output(self) -> None:
        name = self._capture_config.variable_name
        if decide_retention(self._tree, name) is RetentionDecision.PRESERVE:
            return
        assignment = select_capture_value(
            self._capture.items,
            self._capture_config,
            wrap_single=self._variable_conflict,
        )
        if assignment is not None:
            self._variables.set(name, assignment.value)

    @contextmanager
    def intercept(self, invocation: Invocation) -> Iterator[OutputInterceptor]:
        """Run one invocation as a ``with`` block.

        If the block raises, the invocation counts as aborted: no entry is
        stored, the renderer is still ended, and the exception propagates.
        """
        self.begin(invocation)
        try:
            yield self
        except BaseException:
            self._active = False
            self._renderer.end()
            raise
        self.end()
