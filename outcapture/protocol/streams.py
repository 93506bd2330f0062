"""Stream classification for objects written to the output pipeline.

Hosts mark diagnostic objects with routing tags (see ``EmittedObject.routing``)
so the renderer knows where to send them. The classifier turns those tags into
an explicit ``Classified`` variant, and ``strip_routing`` removes them once the
renderer has seen the object so later consumers (the last-output variable,
history readers) never see stale routing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .records import EmittedObject, ErrorRecord, StreamType

# Highest precedence first; an object tagged for several streams is reported
# on the first one found here.
ROUTING_PRECEDENCE: tuple[StreamType, ...] = (
    StreamType.ERROR,
    StreamType.WARNING,
    StreamType.VERBOSE,
    StreamType.DEBUG,
    StreamType.INFORMATION,
)


@dataclass(frozen=True, slots=True)
class Classified:
    """Result of classifying one emitted object."""

    stream: StreamType
    item: EmittedObject
    error_record: Optional[ErrorRecord] = None

    @property
    def is_error(self) -> bool:
        """True only for error-stream objects that carry an error record."""
        return self.stream is StreamType.ERROR and self.error_record is not None

    @property
    def is_standard_output(self) -> bool:
        return self.stream is StreamType.OUTPUT


def error_record_of(value: Any) -> Optional[ErrorRecord]:
    """Return the error record held by ``value``, if any.

    Accepts a bare ``ErrorRecord``, an envelope around one, or any object
    exposing an ``error_record`` attribute (exceptions raised by hosts
    commonly do).
    """
    if isinstance(value, EmittedObject):
        value = value.base
    if isinstance(value, ErrorRecord):
        return value
    record = getattr(value, "error_record", None)
    if isinstance(record, ErrorRecord):
        return record
    return None


def classify(obj: EmittedObject) -> Classified:
    """Classify an envelope by its routing tags.

    Untagged objects are standard output; nothing is ever dropped.
    """
    for stream in ROUTING_PRECEDENCE:
        if stream in obj.routing:
            record = error_record_of(obj) if stream is StreamType.ERROR else None
            return Classified(stream=stream, item=obj, error_record=record)
    return Classified(stream=StreamType.OUTPUT, item=obj)


def strip_routing(obj: EmittedObject) -> bool:
    """Remove all routing tags from ``obj``.

    Returns:
        True if the object carried no routing tags (standard output)
    """
    standard_output = not any(stream in obj.routing for stream in ROUTING_PRECEDENCE)
    obj.routing.clear()
    return standard_output
