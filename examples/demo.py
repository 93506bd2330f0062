#!/usr/bin/env python3
"""outcapture - extended output history for a minimal Python REPL host.

The host below is deliberately tiny: it parses each command, runs it against
a shared namespace, and drives an ``OutputInterceptor`` through begin /
process / end. The interceptor decides what ``_`` becomes and records a
history entry per command.
"""

from __future__ import annotations

import ast
import logging
import sys
from pathlib import Path
from typing import Any

import structlog

sys.path.insert(0, str(Path(__file__).parent.parent))

from outcapture.history.context import HistoryContext
from outcapture.interceptor.out_default import OutputInterceptor
from outcapture.interceptor.renderer import TextStreamRenderer
from outcapture.protocol.records import EmittedObject, ErrorRecord, Invocation, StreamType
from outcapture.session.config import CaptureConfig, HistoryConfig
from outcapture.session.variables import NamespaceVariableStore

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

logger = structlog.get_logger()


def run_command(interceptor: OutputInterceptor, variables: NamespaceVariableStore, history_id: int, code: str) -> None:
    """Execute one command the way an interactive host would."""
    namespace = variables.namespace
    tree = ast.parse(code)
    interceptor.begin(Invocation(history_id=history_id, tree=tree))
    try:
        body = tree.body
        result: Any = None
        if body and isinstance(body[-1], ast.Expr):
            exec(compile(ast.Module(body=body[:-1], type_ignores=[]), "<demo>", "exec"), namespace)
            result = eval(compile(ast.Expression(body=body[-1].value), "<demo>", "eval"), namespace)
        else:
            exec(compile(tree, "<demo>", "exec"), namespace)

        if isinstance(result, list):
            for item in result:
                interceptor.process(item)
        elif result is not None:
            interceptor.process(result)
        variables.set_success(True)
    except Exception as exc:
        logger.info("Command failed", history_id=history_id, error=str(exc))
        record = ErrorRecord.from_exception(exc, history_id=history_id)
        variables.record_error(record)
        interceptor.process(EmittedObject.tagged(record, StreamType.ERROR))
    interceptor.end()


def main() -> None:
    print("=== outcapture demo ===\n")

    variables = NamespaceVariableStore()
    context = HistoryContext(HistoryConfig(maximum_entry_count=50))
    interceptor = OutputInterceptor(
        renderer=TextStreamRenderer(),
        variables=variables,
        capture_config=CaptureConfig(),
        context=context,
    )

    commands = [
        "[{'name': 'alpha'}, {'name': 'beta'}]",
        "x = 1",
        "len(_)",
        "++x",
        "_[0]['name']",
        "{'name': 'gamma'}",
        "1 / 0",
        "_",
    ]

    for history_id, code in enumerate(commands, start=1):
        print(f"[{history_id}] >>> {code}")
        run_command(interceptor, variables, history_id, code)
        print(f"    _ = {variables.get('_')!r}\n")

    print("=== Extended history ===")
    for entry in context.store:
        print(
            f"{entry.history_id:>3}  count={entry.output_count}  "
            f"errors={len(entry.errors)}  succeeded={entry.succeeded}"
        )


if __name__ == "__main__":
    main()
