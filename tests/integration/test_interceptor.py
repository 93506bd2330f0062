"""Lifecycle tests for OutputInterceptor against real collaborators."""

import ast

import pytest

from outcapture.history.context import HistoryContext
from outcapture.interceptor.out_default import OutputInterceptor
from outcapture.protocol.errors import InterceptorStateError, PipelineStoppedError
from outcapture.protocol.records import (
    CommandHistoryInfo,
    EmittedObject,
    ErrorOrigin,
    ErrorRecord,
    HistoryEntry,
    Invocation,
    SourceLocation,
    StreamType,
    WarningRecord,
)
from outcapture.session.config import CaptureConfig, HistoryConfig
from outcapture.session.constants import SUCCESS_VARIABLE
from outcapture.session.variables import NamespaceVariableStore
from tests.fixtures.renderers import RecordingRenderer, error_object, tagged

PREVIOUS = object()


def invocation(history_id: int, code: str = "f()", **params) -> Invocation:
    return Invocation(history_id=history_id, tree=ast.parse(code), bound_parameters=dict(params))


def run(interceptor: OutputInterceptor, inv: Invocation, *objects) -> HistoryEntry:
    interceptor.begin(inv)
    for obj in objects:
        interceptor.process(obj)
    return interceptor.end()


@pytest.mark.integration
class TestDocumentedScenarios:
    """End-to-end behavior of a single invocation."""

    def test_assignment_preserves_last_output(self, interceptor, variables, context):
        variables.set("_", PREVIOUS)
        entry = run(interceptor, invocation(1, "x = 1"), "a", "b", "c")

        assert variables.get("_") is PREVIOUS
        assert entry.output_count == 3
        assert entry.succeeded is True
        assert entry.output_values == ["a", "b", "c"]
        assert context.store.get(1) is entry

    def test_new_error_marks_failure(self, interceptor, variables, context):
        error = ErrorRecord(ValueError("boom"), history_id=2)
        variables.record_error(error)

        entry = run(interceptor, invocation(2))

        assert entry.succeeded is False
        assert entry.errors == (error,)
        assert context.watermark.value == hash(error)

    def test_single_object_assigned_directly(self, interceptor, variables):
        value = {"name": "widget"}
        run(interceptor, invocation(3), value)
        assert variables.get("_") is value

    def test_overflow_is_counted(self, interceptor):
        # context fixture allows 5 items per entry
        entry = run(interceptor, invocation(4), *range(10))

        assert len(entry.output) == 5
        assert entry.output_values == [0, 1, 2, 3, 4]
        assert entry.dropped_for_capacity == 5
        assert entry.output_count == 10


@pytest.mark.integration
class TestLastOutputVariable:
    """Retention decisions as applied by End."""

    def test_empty_command_never_modifies(self, interceptor, variables):
        variables.set("_", PREVIOUS)
        run(interceptor, Invocation(history_id=1, tree=ast.parse("")), "output")
        run(interceptor, Invocation(history_id=2, tree=None), "output")
        assert variables.get("_") is PREVIOUS

    def test_interactive_and_expression_trees(self, interceptor, variables, context):
        variables.set("_", PREVIOUS)
        run(interceptor, Invocation(history_id=1, tree=ast.parse("x = 1", mode="single")), "a")
        assert variables.get("_") is PREVIOUS

        run(interceptor, Invocation(history_id=2, tree=ast.parse("f()", mode="single")), "b")
        assert variables.get("_") == "b"

        run(interceptor, Invocation(history_id=3, tree=ast.parse("x.y", mode="eval")), "c")
        assert variables.get("_") == "b"

        run(interceptor, Invocation(history_id=4, tree=ast.parse("f(x)", mode="eval")), "d")
        assert variables.get("_") == "d"
        assert [entry.history_id for entry in context.store] == [1, 2, 3, 4]

    def test_walrus_statement_overwrites(self, interceptor, variables):
        variables.set("_", PREVIOUS)
        run(interceptor, invocation(1, "(y := f())"), "shown")
        assert variables.get("_") == "shown"

    def test_reference_to_variable_preserves(self, interceptor, variables):
        variables.set("_", PREVIOUS)
        run(interceptor, invocation(1, "len(_)"), 3)
        assert variables.get("_") is PREVIOUS

    def test_many_items_become_list(self, interceptor, variables):
        run(interceptor, invocation(1), "a", {"b": 1})
        assert variables.get("_") == ["a", {"b": 1}]

    def test_value_type_is_not_captured(self, interceptor, variables):
        variables.set("_", PREVIOUS)
        run(interceptor, invocation(1, "2 + 2"), 4)
        assert variables.get("_") is PREVIOUS

    def test_no_output_leaves_variable_unless_null_capture(self, renderer, variables, context):
        variables.set("_", PREVIOUS)
        interceptor = OutputInterceptor(renderer, variables, context=context, call_stack=lambda: None)
        run(interceptor, invocation(1))
        assert variables.get("_") is PREVIOUS

        null_capturing = OutputInterceptor(
            renderer,
            variables,
            capture_config=CaptureConfig(capture_null=True),
            context=context,
            call_stack=lambda: None,
        )
        run(null_capturing, invocation(2))
        assert variables.get("_") is None

    def test_custom_variable_name(self, renderer, variables, context):
        interceptor = OutputInterceptor(
            renderer,
            variables,
            capture_config=CaptureConfig(variable_name="last"),
            context=context,
            call_stack=lambda: None,
        )
        run(interceptor, invocation(1), "value")
        assert variables.get("last") == "value"
        assert variables.get("_") is None

    def test_out_variable_conflict_wraps_single_item(self, interceptor, variables):
        inv = invocation(1, out_variable="_")
        interceptor.begin(inv)
        assert interceptor.variable_conflict
        assert inv.bound_parameters["out_variable"] is None

        value = {"k": "v"}
        interceptor.process(value)
        interceptor.end()
        assert variables.get("_") == [value]

    def test_conflict_does_not_leak_into_next_invocation(self, interceptor, variables):
        run(interceptor, invocation(1, out_variable="_"), "first")
        assert variables.get("_") == ["first"]
        run(interceptor, invocation(2), "second")
        assert not interceptor.variable_conflict
        assert variables.get("_") == "second"

    def test_other_out_variable_is_untouched(self, interceptor):
        inv = invocation(1, out_variable="results")
        run(interceptor, inv, "x")
        assert inv.bound_parameters["out_variable"] == "results"
        assert not interceptor.variable_conflict

    def test_excluded_types_are_not_captured(self, renderer, variables, context):
        interceptor = OutputInterceptor(
            renderer,
            variables,
            capture_config=CaptureConfig(excluded_types=frozenset({"dict"})),
            context=context,
            call_stack=lambda: None,
        )
        entry = run(interceptor, invocation(1), {"skip": True}, "kept")
        assert variables.get("_") == "kept"
        # Exclusion only affects capture, not history
        assert entry.output_count == 2

    def test_capture_cap(self, renderer, variables, context):
        interceptor = OutputInterceptor(
            renderer,
            variables,
            capture_config=CaptureConfig(maximum_item_count=2),
            context=context,
            call_stack=lambda: None,
        )
        run(interceptor, invocation(1), "a", "b", "c")
        assert variables.get("_") == ["a", "b"]


@pytest.mark.integration
class TestStreamsAndIds:
    """Error routing and invocation id adjustments."""

    def test_errors_are_not_buffered(self, interceptor):
        entry = run(interceptor, invocation(5), "out", error_object(ErrorRecord(ValueError("x"), history_id=5)))
        assert entry.output_values == ["out"]
        assert entry.output_count == 1

    def test_diagnostics_are_buffered(self, interceptor):
        warning = tagged(WarningRecord("careful"), StreamType.WARNING)
        entry = run(interceptor, invocation(5), warning, tagged("detail", StreamType.VERBOSE))
        assert entry.output_count == 2
        assert entry.output[0] is warning

    def test_older_error_lowers_history_id(self, interceptor, context):
        entry = run(interceptor, invocation(10), error_object(ErrorRecord(ValueError("old"), history_id=7)))
        assert entry.history_id == 7
        assert 7 in context.store

    def test_newer_error_id_is_ignored(self, interceptor):
        entry = run(interceptor, invocation(10), error_object(ErrorRecord(ValueError("x"), history_id=12)))
        assert entry.history_id == 10

    @pytest.mark.parametrize("origin", [ErrorOrigin.THROW_STATEMENT, ErrorOrigin.PARENT_CONTAINS_ERROR])
    def test_raised_error_without_id_decrements(self, interceptor, origin):
        record = ErrorRecord(RuntimeError("thrown"), origin=origin)
        interceptor.begin(invocation(10))
        interceptor.process(error_object(record))
        assert interceptor.history_id == 10
        entry = interceptor.end()
        assert entry.history_id == 9

    @pytest.mark.parametrize("origin", [ErrorOrigin.PIPELINE_STOP, ErrorOrigin.OTHER])
    def test_other_origins_do_not_adjust(self, interceptor, origin):
        record = ErrorRecord(PipelineStoppedError("stop"), origin=origin)
        entry = run(interceptor, invocation(10), error_object(record))
        assert entry.history_id == 10

    def test_success_indicator_wins(self, interceptor, variables):
        variables.set_success(False)
        entry = run(interceptor, invocation(1), "output")
        assert entry.succeeded is False

        variables.set_success(True)
        variables.record_error(ErrorRecord(ValueError("logged")))
        variables.set_success(True)
        entry = run(interceptor, invocation(2), "output")
        assert entry.succeeded is True
        assert len(entry.errors) == 1

    def test_no_output_no_errors_is_success(self, interceptor, variables):
        variables.set(SUCCESS_VARIABLE, False)
        entry = run(interceptor, invocation(1))
        assert entry.succeeded is True

    def test_errors_are_not_recaptured(self, interceptor, variables):
        first = ErrorRecord(ValueError("first"))
        variables.record_error(first)
        entry_one = run(interceptor, invocation(1))

        second = ErrorRecord(ValueError("second"))
        third = ErrorRecord(ValueError("third"))
        variables.record_error(second)
        variables.record_error(third)
        entry_two = run(interceptor, invocation(2))
        entry_three = run(interceptor, invocation(3))

        assert entry_one.errors == (first,)
        assert entry_two.errors == (second, third)
        assert entry_three.errors == ()

    def test_incomplete_parse_is_not_a_failure(self, interceptor, variables):
        from outcapture.protocol.errors import IncompleteParseError

        variables.record_error(IncompleteParseError("unexpected EOF"))
        entry = run(interceptor, invocation(1))
        assert entry.errors == ()
        assert entry.succeeded is True


@pytest.mark.integration
class TestHistoryRecords:
    """History records are counted but never retained."""

    def test_history_records_replaced_by_warning(self, interceptor, variables):
        old = HistoryEntry(history_id=1)
        info = CommandHistoryInfo(history_id=1, command_line="f()")
        entry = run(interceptor, invocation(2), old, "text", info)

        assert entry.output_count == 3
        assert entry.dropped_history_records == 2
        warning = entry.output[0]
        assert isinstance(warning.base, WarningRecord)
        assert warning.base.message == "<Omitting 2 history information objects>"
        assert warning.routing == {StreamType.WARNING}
        assert entry.output_values[1:] == ["text"]
        # Still eligible as last output
        assert variables.get("_") == [old, "text", info]

    def test_count_identity_holds_when_full(self, interceptor):
        objects = [HistoryEntry(history_id=1)] + list(range(7))
        entry = run(interceptor, invocation(2), *objects)

        buffered = [item for item in entry.output if not isinstance(item.base, WarningRecord)]
        assert len(entry.output) == 5
        assert entry.output_count == 8
        assert entry.output_count == len(buffered) + entry.dropped_history_records + entry.dropped_for_capacity


@pytest.mark.integration
class TestRendererDelegation:
    """The renderer sees every object, in order, with routing intact."""

    def test_phase_order(self, interceptor, renderer):
        run(interceptor, invocation(1), "a", None, "b")
        assert renderer.method_names == ["begin", "process_one", "process_one", "process_one", "end"]
        assert renderer.calls[0] == ("begin", True)
        assert renderer.processed[1] is None
        assert [obj.base for obj in renderer.processed if obj is not None] == ["a", "b"]

    def test_routing_stripped_after_rendering(self, interceptor, renderer):
        warning = tagged(WarningRecord("w"), StreamType.WARNING)
        interceptor.begin(invocation(1))
        interceptor.process(warning)
        assert renderer.routing_seen == [{StreamType.WARNING}]
        assert warning.routing == set()
        interceptor.end()

    def test_envelopes_are_passed_through(self, interceptor, renderer):
        envelope = EmittedObject(base="x")
        run(interceptor, invocation(1), envelope)
        assert renderer.processed == [envelope]

    def test_renderer_end_runs_when_finalization_fails(self, renderer, context):
        class BrokenVariables(NamespaceVariableStore):
            def get(self, name):
                raise LookupError(name)

        interceptor = OutputInterceptor(renderer, BrokenVariables(), context=context, call_stack=lambda: None)
        interceptor.begin(invocation(1))
        interceptor.process("visible")
        with pytest.raises(LookupError):
            interceptor.end()
        assert renderer.method_names[-1] == "end"
        assert 1 not in context.store

    def test_renderer_end_failure_propagates_after_store(self, variables, context):
        renderer = RecordingRenderer(fail_on_end=True)
        interceptor = OutputInterceptor(renderer, variables, context=context, call_stack=lambda: None)
        interceptor.begin(invocation(1))
        interceptor.process("visible")
        with pytest.raises(RuntimeError, match="renderer failed"):
            interceptor.end()

        assert context.store.get(1).output_values == ["visible"]
        assert variables.get("_") == "visible"
        assert interceptor.active is False

    def test_phases_require_begin(self, interceptor):
        with pytest.raises(InterceptorStateError):
            interceptor.process("x")
        with pytest.raises(InterceptorStateError):
            interceptor.end()
        run(interceptor, invocation(1))
        with pytest.raises(InterceptorStateError):
            interceptor.end()


@pytest.mark.integration
class TestOutputSources:
    """Call sites of standard output are recorded once each."""

    def test_distinct_sources_in_first_seen_order(self, renderer, variables, context):
        here = SourceLocation(file="<stdin>", line=1)
        there = SourceLocation(file="<stdin>", line=2)
        locations = iter([here, here, there, here])
        interceptor = OutputInterceptor(renderer, variables, context=context, call_stack=lambda: next(locations))

        entry = run(interceptor, invocation(1), "a", "b", "c", "d")
        assert entry.output_sources == (here, there)

    def test_diagnostics_do_not_record_sources(self, renderer, variables, context):
        calls = []

        def provider():
            calls.append(1)
            return SourceLocation(file="<stdin>", line=len(calls))

        interceptor = OutputInterceptor(renderer, variables, context=context, call_stack=provider)
        entry = run(
            interceptor,
            invocation(1),
            tagged("verbose", StreamType.VERBOSE),
            error_object(ErrorRecord(ValueError("x"))),
            "plain",
        )
        assert len(calls) == 1
        assert entry.output_sources == (SourceLocation(file="<stdin>", line=1),)

    def test_default_provider_reports_caller(self, renderer, variables, context):
        interceptor = OutputInterceptor(renderer, variables, context=context)
        entry = run(interceptor, invocation(1), "from the test")
        assert len(entry.output_sources) == 1
        assert entry.output_sources[0].file == __file__


@pytest.mark.integration
class TestStoreIntegration:
    """Entries across many invocations."""

    def test_store_is_bounded(self, interceptor, context):
        for history_id in range(1, 16):
            run(interceptor, invocation(history_id), history_id)
        assert len(context.store) == 10
        assert [entry.history_id for entry in context.store] == list(range(6, 16))

    def test_interceptors_share_context(self, renderer, context):
        first = OutputInterceptor(renderer, NamespaceVariableStore(), context=context, call_stack=lambda: None)
        second = OutputInterceptor(renderer, NamespaceVariableStore(), context=context, call_stack=lambda: None)
        run(first, invocation(1), "a")
        run(second, invocation(2), "b")
        assert [entry.history_id for entry in context.store] == [1, 2]

    def test_intercept_block(self, interceptor, context, variables):
        with interceptor.intercept(invocation(1)) as active:
            active.process({"x": 1})
        assert context.store.get(1).output_count == 1
        assert variables.get("_") == {"x": 1}

    def test_aborted_block_stores_nothing(self, interceptor, renderer, context):
        with pytest.raises(KeyboardInterrupt):
            with interceptor.intercept(invocation(1)):
                interceptor.process("partial")
                raise KeyboardInterrupt
        assert 1 not in context.store
        assert renderer.method_names[-1] == "end"
        assert not interceptor.active

    def test_history_config_override(self, renderer, variables):
        context = HistoryContext(HistoryConfig(maximum_item_count_per_entry=50))
        interceptor = OutputInterceptor(
            renderer,
            variables,
            history_config=HistoryConfig(maximum_item_count_per_entry=2),
            context=context,
            call_stack=lambda: None,
        )
        entry = run(interceptor, invocation(1), 1, 2, 3)
        assert len(entry.output) == 2
        assert entry.output_count == 3
