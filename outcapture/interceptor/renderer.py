"""Renderer collaborators the interceptor delegates display to."""

from __future__ import annotations

import sys
from typing import Any, Optional, Protocol, TextIO

from ..protocol.records import EmittedObject, StreamType


class OutputRenderer(Protocol):
    """The host's own output step. Called object for object, in phase order."""

    def begin(self, buffer_input: bool) -> None: ...

    def process_one(self, obj: Any) -> None: ...

    def end(self) -> None: ...


class TextStreamRenderer:
    """Writes each object's text to stdout, error-tagged objects to stderr.

    With ``buffer_input`` the lines are held until ``end()`` so a command's
    output is written in one go.
    """

    def __init__(self, stdout: Optional[TextIO] = None, stderr: Optional[TextIO] = None) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self._buffer_input = False
        self._pending: list[tuple[TextIO, str]] = []

    def begin(self, buffer_input: bool) -> None:
        self._buffer_input = buffer_input
        self._pending.clear()

    def process_one(self, obj: Any) -> None:
        if obj is None:
            return
        if isinstance(obj, EmittedObject):
            if obj.base is None:
                return
            error = StreamType.ERROR in obj.routing
            text = str(obj.base)
        else:
            error = False
            text = str(obj)

        # Resolve streams late so redirected sys.stdout/sys.stderr are honored
        stream = (self._stderr or sys.stderr) if error else (self._stdout or sys.stdout)
        if self._buffer_input:
            self._pending.append((stream, text))
        else:
            self._write(stream, text)

    def end(self) -> None:
        pending, self._pending = self._pending, []
        for stream, text in pending:
            self._write(stream, text)

    @staticmethod
    def _write(stream: TextIO, text: str) -> None:
        stream.write(text + "\n")
        if hasattr(stream, "flush"):
            stream.flush()
