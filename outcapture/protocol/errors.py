"""Exception types shared between the interceptor and its host."""

from __future__ import annotations


class IncompleteParseError(SyntaxError):
    """Raised by a host when a command line is incomplete and needs more input.

    These land in the error log as bookkeeping and are never reported as
    command failures.
    """

    pass


class PipelineStoppedError(RuntimeError):
    """Raised by a host when an error-action preference stopped the pipeline."""

    pass


class InterceptorStateError(RuntimeError):
    """Raised when interceptor phases are invoked out of order."""

    pass
