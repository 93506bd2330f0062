"""Call-stack provider used to attribute output to a call site."""

from __future__ import annotations

import linecache
import os
import sys
from types import FrameType
from typing import Callable, Optional

from ..protocol.records import SourceLocation

CallStackProvider = Callable[[], Optional[SourceLocation]]

# Frames from this package are the interceptor itself, never a data source
_PACKAGE_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _is_internal(frame: FrameType) -> bool:
    filename = frame.f_code.co_filename
    if filename.startswith("<"):
        return False
    return os.path.abspath(filename).startswith(_PACKAGE_ROOT + os.sep)


def location_of(frame: FrameType) -> SourceLocation:
    filename = frame.f_code.co_filename
    line = frame.f_lineno
    text = linecache.getline(filename, line).strip() or None
    return SourceLocation(file=filename, line=line, function=frame.f_code.co_name, text=text)


def caller_location() -> Optional[SourceLocation]:
    """Location of the nearest frame outside this package, or None."""
    frame: Optional[FrameType] = sys._getframe(1)
    while frame is not None and _is_internal(frame):
        frame = frame.f_back
    if frame is None:
        return None
    return location_of(frame)
