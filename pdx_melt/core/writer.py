"""Native plain-text writer with container-shape disambiguation.

WHY: The binary format does not say whether ``{`` opens an object
(key=value pairs), an array of bare values, or a mixed container. The
text serializer does make that distinction visible: objects span lines,
arrays stay inline, empty containers print as ``{ }``. Getting the shape
wrong yields text that either fails to parse or means something else.

HOW: Every container opens in UNKNOWN shape. The first scalar child is
held back; the token after it decides. ``=`` turns the container into an
object and the held scalar into its first key. Anything else makes it
an array and the held scalar its first value. A container whose first
child is itself a container is an array of blocks, one element per
line. ``=`` inside an array switches to mixed mode (``{ 1 2 a=b }``).
Output accumulates in a bytearray flushed to the sink in chunks.

RULES:
- Objects: one ``key=value`` per line, tab-indented by depth
- Arrays: ``{ 1 2 3 }`` inline; arrays of containers one per line
- Empty containers: ``{ }``, or an open/close pair on two lines when the
  field is hinted as an OBJECT
- Quoted strings keep quotes in value position, escaping ``"`` and ``\\``,
  and drop them in key position
- Unquoted strings are quoted only when they would not parse bare
- Sink OSErrors surface as SinkFailureError with the bytes written so far
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from pdx_melt.config import CHUNK_SIZE
from pdx_melt.core.flavor import Shape
from pdx_melt.errors import SinkFailureError

_NEEDS_QUOTES = frozenset(b' \t\r\n={}"')


class _Mode(Enum):
    UNKNOWN = "unknown"
    OBJECT = "object"
    ARRAY = "array"


class _State(Enum):
    KEY = "key"
    OPERATOR = "operator"
    VALUE = "value"


class _Style(Enum):
    RAW = "raw"
    BARE = "bare"
    QUOTED = "quoted"


@dataclass
class _Frame:
    mode: _Mode
    hint: Optional[Shape] = None
    state: _State = _State.KEY
    block: bool = False
    glue: bool = False
    pending: Optional[Tuple[bytes, _Style]] = None


def quote(data: bytes) -> bytes:
    """Wrap bytes in double quotes, escaping backslashes and quotes."""
    return b'"' + data.replace(b"\\", b"\\\\").replace(b'"', b'\\"') + b'"'


def needs_quotes(data: bytes) -> bool:
    return not data or any(byte in _NEEDS_QUOTES for byte in data)


def _render_key(text: bytes, style: _Style) -> bytes:
    if style is not _Style.RAW and needs_quotes(text):
        return quote(text)
    return text


def _render_value(text: bytes, style: _Style) -> bytes:
    if style is _Style.QUOTED or (style is _Style.BARE and needs_quotes(text)):
        return quote(text)
    return text


class TextWriter:
    """Streams tape events out as the engine's native text syntax."""

    def __init__(self, sink, indent: bytes = b"\t", flush_size: int = CHUNK_SIZE,
                 bytes_written: int = 0) -> None:
        self._sink = sink
        self._indent = indent
        self._flush_size = flush_size
        self._buf = bytearray()
        self._frames: List[_Frame] = [_Frame(_Mode.OBJECT)]
        self._next_hint: Optional[Shape] = None
        self._started = False
        self.bytes_written = bytes_written

    # -- introspection -----------------------------------------------------

    @property
    def depth(self) -> int:
        return len(self._frames) - 1

    @property
    def current_hint(self) -> Optional[Shape]:
        return self._frames[-1].hint

    def expecting_key(self) -> bool:
        """True where the next scalar would be written as a key (or may be one)."""
        frame = self._frames[-1]
        if frame.mode is _Mode.OBJECT:
            return frame.state is not _State.VALUE
        return frame.mode is _Mode.UNKNOWN and frame.pending is None

    def at_value(self) -> bool:
        """True directly after an ``=``, where a value must follow."""
        frame = self._frames[-1]
        if frame.mode is _Mode.OBJECT:
            return frame.state is _State.VALUE
        return frame.mode is _Mode.ARRAY and frame.glue

    def hint_next_container(self, shape: Optional[Shape]) -> None:
        """Attach a shape hint to the next container opened."""
        self._next_hint = shape

    # -- output plumbing ---------------------------------------------------

    def _put(self, data: bytes) -> None:
        self._buf += data
        if len(self._buf) >= self._flush_size:
            self.flush()

    def _line(self, level: int) -> None:
        if self._started:
            self._buf += b"\n" + self._indent * level
        else:
            self._started = True

    def flush(self) -> None:
        if not self._buf:
            return
        data = bytes(self._buf)
        try:
            self._sink.write(data)
        except OSError as exc:
            raise SinkFailureError(self.bytes_written, exc) from exc
        self.bytes_written += len(data)
        self._buf.clear()

    def finish(self, trailing_newline: bool = True) -> None:
        """Terminate the document and flush everything to the sink.

        The trailing newline is only written when something else was.
        """
        if trailing_newline and self._started:
            self._buf += b"\n"
        self.flush()

    # -- scalars -----------------------------------------------------------

    def write_raw(self, text: bytes) -> None:
        """Write pre-rendered text (names, numbers, dates) without quoting."""
        self._scalar(text, _Style.RAW)

    def write_unquoted(self, data: bytes) -> None:
        self._scalar(data, _Style.BARE)

    def write_quoted(self, data: bytes) -> None:
        self._scalar(data, _Style.QUOTED)

    def write_rgb(self, channels: Sequence[int]) -> None:
        name = b"rgba" if len(channels) == 4 else b"rgb"
        body = b" ".join(str(c).encode("ascii") for c in channels)
        self._scalar(name + b" { " + body + b" }", _Style.RAW)

    def _scalar(self, text: bytes, style: _Style) -> None:
        self._next_hint = None
        frame = self._frames[-1]
        if frame.mode is _Mode.UNKNOWN:
            if frame.pending is None:
                frame.pending = (text, style)
                return
            self._become_array(frame)
            self._array_value(frame, text, style)
        elif frame.mode is _Mode.OBJECT:
            if frame.state is _State.VALUE:
                self._put(_render_value(text, style))
                frame.state = _State.KEY
            else:
                self._line(self.depth)
                self._put(_render_key(text, style))
                frame.state = _State.OPERATOR
        else:
            self._array_value(frame, text, style)

    def _array_value(self, frame: _Frame, text: bytes, style: _Style) -> None:
        rendered = _render_value(text, style)
        if frame.glue:
            frame.glue = False
            self._put(rendered)
        elif frame.block:
            self._line(self.depth)
            self._put(rendered)
        else:
            self._put(b" " + rendered)

    def _become_array(self, frame: _Frame) -> None:
        frame.mode = _Mode.ARRAY
        if frame.pending is not None:
            text, style = frame.pending
            frame.pending = None
            self._array_value(frame, text, style)

    # -- structure ---------------------------------------------------------

    def write_operator(self) -> None:
        """Write ``=``; raises ValueError where no key precedes it."""
        frame = self._frames[-1]
        if frame.mode is _Mode.UNKNOWN:
            if frame.pending is None:
                raise ValueError("operator without a preceding key")
            text, style = frame.pending
            frame.pending = None
            frame.mode = _Mode.OBJECT
            self._line(self.depth)
            self._put(_render_key(text, style) + b"=")
            frame.state = _State.VALUE
        elif frame.mode is _Mode.OBJECT:
            if frame.state is not _State.OPERATOR:
                raise ValueError("operator without a preceding key")
            self._put(b"=")
            frame.state = _State.VALUE
        else:
            self._put(b"=")
            frame.glue = True

    def write_start(self) -> None:
        """Open a container."""
        frame = self._frames[-1]
        if frame.mode is _Mode.UNKNOWN:
            if frame.pending is not None:
                self._become_array(frame)
            else:
                frame.mode = _Mode.ARRAY
                frame.block = frame.hint not in (Shape.ARRAY, Shape.COLOR)

        if frame.mode is _Mode.OBJECT:
            if frame.state is _State.KEY:
                self._line(self.depth)
                self._put(b"{")
            elif frame.state is _State.OPERATOR:
                self._put(b"={")
            else:
                self._put(b"{")
            frame.state = _State.KEY
        elif frame.glue:
            frame.glue = False
            self._put(b"{")
        elif frame.block:
            self._line(self.depth)
            self._put(b"{")
        else:
            self._put(b" {")

        self._frames.append(_Frame(_Mode.UNKNOWN, hint=self._next_hint))
        self._next_hint = None

    def write_end(self) -> None:
        """Close the innermost container; raises ValueError at the top level."""
        if not self.depth:
            raise ValueError("close without a matching open")
        self._next_hint = None
        frame = self._frames.pop()
        level = self.depth
        if frame.mode is _Mode.UNKNOWN:
            if frame.pending is not None:
                text, style = frame.pending
                self._put(b" " + _render_value(text, style) + b" }")
            elif frame.hint is Shape.OBJECT:
                self._line(level)
                self._put(b"}")
            else:
                self._put(b" }")
        elif frame.mode is _Mode.OBJECT or frame.block:
            self._line(level)
            self._put(b"}")
        else:
            self._put(b" }")
