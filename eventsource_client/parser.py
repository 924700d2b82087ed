"""
Incremental parser for the ``text/event-stream`` format.

Chunks may split lines, fields and even ``\\r\\n`` pairs anywhere; the parser
keeps the unterminated tail buffered until the next call.

Usage:
    parser = StreamParser()
    for chunk in chunks:
        for event in parser.feed(chunk):
            ...
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from .types import MESSAGE_EVENT, Event


_LINE_END = re.compile(r"\r\n|\r|\n")
_DIGITS = re.compile(r"[0-9]+")

BOM = "\ufeff"


@dataclass
class _PendingBlock:
    event: Optional[str] = None
    data: List[str] = field(default_factory=list)
    id: Optional[str] = None
    retry: Optional[int] = None
    dirty: bool = False


class StreamParser:
    """Turns successive text chunks into completed :class:`Event` records."""

    def __init__(self) -> None:
        self._buffer = ""
        self._block = _PendingBlock()
        self._skip_lf = False  # previous chunk ended with a bare "\r"
        self._started = False

    def feed(self, chunk: str) -> List[Event]:
        """Consume ``chunk`` and return the events it completed, in order."""
        if not chunk:
            return []
        if not self._started:
            self._started = True
            if chunk.startswith(BOM):
                chunk = chunk[1:]
        if self._skip_lf:
            self._skip_lf = False
            if chunk.startswith("\n"):
                chunk = chunk[1:]

        buffer = self._buffer + chunk
        lines = _LINE_END.split(buffer)
        self._buffer = lines.pop()
        if buffer.endswith("\r"):
            self._skip_lf = True

        events: List[Event] = []
        for line in lines:
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def reset(self) -> None:
        """Drop any buffered partial line and in-progress block."""
        self._buffer = ""
        self._block = _PendingBlock()
        self._skip_lf = False
        self._started = False

    def _process_line(self, line: str) -> Optional[Event]:
        if not line:
            return self._finalize()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        block = self._block
        if name == "data":
            block.data.append(value)
        elif name == "event":
            block.event = value
        elif name == "id":
            if not value or "\0" in value:
                return None
            block.id = value
        elif name == "retry":
            if not _DIGITS.fullmatch(value):
                return None
            block.retry = int(value)
        else:
            return None
        block.dirty = True
        return None

    def _finalize(self) -> Optional[Event]:
        block, self._block = self._block, _PendingBlock()
        if not block.dirty:
            return None
        return Event(
            id=block.id,
            event=block.event or MESSAGE_EVENT,
            data="\n".join(block.data),
            retry=block.retry,
        )
