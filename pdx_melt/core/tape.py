"""Tape tokens and the streaming binary tape reader.

WHY: The melt engine consumes a flat sequence of typed entries (the
"tape"). Saves can be hundreds of megabytes, so the binary reader must
walk the stream incrementally and never hold the whole file.

HOW: TapeToken is an immutable (kind, value, offset) triple. The binary
reader pulls fixed-size chunks from any readable binary stream, decodes
the little-endian u16 token codes and their payloads, and exposes a
cursor API: next(), read(), peek(), skip_container(). TokenTape offers
the same API over an in-memory token list.

RULES:
- F32/F64 payloads stay raw bytes; only a Flavor decodes them
- Quoted/unquoted strings stay raw bytes in the save's codepage
- A truncated payload is MalformedInputError with the token's offset
- Any code that is not a control or scalar code is a token id, except
  the string-lookup codes when the reader is told the save uses them
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Any, BinaryIO, Iterator, List, Optional, Sequence

from pdx_melt.config import CHUNK_SIZE
from pdx_melt.errors import MalformedInputError


class TokenKind(Enum):
    """Kinds of entries on a tape."""

    OPEN = "open"
    CLOSE = "close"
    EQUAL = "equal"
    ID = "id"
    BOOL = "bool"
    I32 = "i32"
    U32 = "u32"
    I64 = "i64"
    U64 = "u64"
    F32 = "f32"
    F64 = "f64"
    QUOTED = "quoted"
    UNQUOTED = "unquoted"
    RGB = "rgb"
    LOOKUP = "lookup"


@dataclass(frozen=True)
class TapeToken:
    """One entry of a tape.

    Attributes:
        kind: What the entry is.
        value: int for ID and integer kinds, the string index for LOOKUP,
               bool for BOOL, raw bytes for F32/F64/QUOTED/UNQUOTED, a
               tuple of ints for RGB, None for structural entries.
        offset: Byte offset of the entry's code in a binary stream, or its
                index in an in-memory tape.
    """

    kind: TokenKind
    value: Any = None
    offset: int = 0


# ---------------------------------------------------------------------------
# Binary codes
# ---------------------------------------------------------------------------

EQUAL = 0x0001
OPEN = 0x0003
CLOSE = 0x0004
I32 = 0x000C
F32 = 0x000D
BOOL = 0x000E
QUOTED = 0x000F
U32 = 0x0014
UNQUOTED = 0x0017
F64 = 0x0167
RGB = 0x0243
U64 = 0x029C
I64 = 0x0317
LOOKUP_U8 = 0x0D40
LOOKUP_U16 = 0x0D3E

_U16 = struct.Struct("<H")
_I32 = struct.Struct("<i")
_U32 = struct.Struct("<I")
_I64 = struct.Struct("<q")
_U64 = struct.Struct("<Q")


class BinaryTapeReader:
    """Streaming reader over a binary-tokenized save body.

    WHY: The engine needs single-token lookahead (to decide container
    shapes and to skip ignored values) over streams that do not fit in
    memory.

    HOW: Keeps a small bytearray window over the stream, refilled in
    CHUNK_SIZE reads. ``position`` is the absolute byte offset of the
    next unread code.

    RULES:
    - next() returns None at a clean end of stream
    - read() raises MalformedInputError at end of stream
    - peek() never consumes
    - Lookup codes carry a u8 or u16 string index and are decoded only
      with ``lookup_tokens`` set; other families use those codes as ids
    """

    def __init__(self, stream: BinaryIO, chunk_size: int = CHUNK_SIZE,
                 lookup_tokens: bool = False) -> None:
        self._stream = stream
        self._lookup_tokens = lookup_tokens
        self._chunk_size = chunk_size
        self._buf = bytearray()
        self._pos = 0
        self._consumed = 0
        self._eof = False
        self._peeked: Optional[TapeToken] = None

    @property
    def position(self) -> int:
        if self._peeked is not None:
            return self._peeked.offset
        return self._consumed + self._pos

    def __iter__(self) -> Iterator[TapeToken]:
        while True:
            token = self.next()
            if token is None:
                return
            yield token

    def _fill(self, needed: int) -> bool:
        while len(self._buf) - self._pos < needed and not self._eof:
            if self._pos:
                del self._buf[:self._pos]
                self._consumed += self._pos
                self._pos = 0
            chunk = self._stream.read(max(self._chunk_size, needed))
            if not chunk:
                self._eof = True
                break
            self._buf.extend(chunk)
        return len(self._buf) - self._pos >= needed

    def _take(self, size: int, offset: int, what: str) -> bytes:
        if not self._fill(size):
            raise MalformedInputError("truncated {} payload".format(what), offset)
        data = bytes(self._buf[self._pos:self._pos + size])
        self._pos += size
        return data

    def _code(self) -> Optional[int]:
        if not self._fill(2):
            if len(self._buf) - self._pos:
                raise MalformedInputError("dangling byte at end of tape", self.position)
            return None
        (code,) = _U16.unpack_from(self._buf, self._pos)
        self._pos += 2
        return code

    def _decode(self) -> Optional[TapeToken]:
        offset = self._consumed + self._pos
        code = self._code()
        if code is None:
            return None

        if code == EQUAL:
            return TapeToken(TokenKind.EQUAL, None, offset)
        if code == OPEN:
            return TapeToken(TokenKind.OPEN, None, offset)
        if code == CLOSE:
            return TapeToken(TokenKind.CLOSE, None, offset)
        if code == I32:
            return TapeToken(TokenKind.I32, _I32.unpack(self._take(4, offset, "i32"))[0], offset)
        if code == U32:
            return TapeToken(TokenKind.U32, _U32.unpack(self._take(4, offset, "u32"))[0], offset)
        if code == I64:
            return TapeToken(TokenKind.I64, _I64.unpack(self._take(8, offset, "i64"))[0], offset)
        if code == U64:
            return TapeToken(TokenKind.U64, _U64.unpack(self._take(8, offset, "u64"))[0], offset)
        if code == F32:
            return TapeToken(TokenKind.F32, self._take(4, offset, "f32"), offset)
        if code == F64:
            return TapeToken(TokenKind.F64, self._take(8, offset, "f64"), offset)
        if code == BOOL:
            return TapeToken(TokenKind.BOOL, self._take(1, offset, "bool") != b"\x00", offset)
        if code in (QUOTED, UNQUOTED):
            (length,) = _U16.unpack(self._take(2, offset, "string length"))
            kind = TokenKind.QUOTED if code == QUOTED else TokenKind.UNQUOTED
            return TapeToken(kind, self._take(length, offset, "string"), offset)
        if code == RGB:
            return TapeToken(TokenKind.RGB, self._rgb(offset), offset)
        if self._lookup_tokens and code == LOOKUP_U8:
            return TapeToken(TokenKind.LOOKUP, self._take(1, offset, "lookup index")[0], offset)
        if self._lookup_tokens and code == LOOKUP_U16:
            (index,) = _U16.unpack(self._take(2, offset, "lookup index"))
            return TapeToken(TokenKind.LOOKUP, index, offset)
        return TapeToken(TokenKind.ID, code, offset)

    def _rgb(self, offset: int) -> tuple:
        if self._code() != OPEN:
            raise MalformedInputError("rgb value must open a container", offset)
        channels: List[int] = []
        while True:
            code = self._code()
            if code == CLOSE:
                break
            if code != U32 or len(channels) == 4:
                raise MalformedInputError("rgb value must hold three or four u32 channels", offset)
            channels.append(_U32.unpack(self._take(4, offset, "rgb channel"))[0])
        if len(channels) < 3:
            raise MalformedInputError("rgb value must hold three or four u32 channels", offset)
        return tuple(channels)

    def next(self) -> Optional[TapeToken]:
        """Consume and return the next token, or None at end of stream."""
        if self._peeked is not None:
            token, self._peeked = self._peeked, None
            return token
        return self._decode()

    def read(self) -> TapeToken:
        """Consume the next token; end of stream is an error."""
        token = self.next()
        if token is None:
            raise MalformedInputError("unexpected end of tape", self.position)
        return token

    def peek(self) -> Optional[TapeToken]:
        """Return the next token without consuming it."""
        if self._peeked is None:
            self._peeked = self._decode()
        return self._peeked

    def skip_container(self) -> None:
        """Skip tokens until the container opened just before is closed."""
        skip_container(self)


class TokenTape:
    """In-memory tape with the same cursor API as BinaryTapeReader.

    Offsets of tokens built without one are replaced by their index.
    """

    def __init__(self, tokens: Sequence[TapeToken]) -> None:
        self._tokens = [
            t if t.offset else TapeToken(t.kind, t.value, i) for i, t in enumerate(tokens)
        ]
        self._index = 0

    @property
    def position(self) -> int:
        return self._index

    def __iter__(self) -> Iterator[TapeToken]:
        while True:
            token = self.next()
            if token is None:
                return
            yield token

    def next(self) -> Optional[TapeToken]:
        if self._index >= len(self._tokens):
            return None
        token = self._tokens[self._index]
        self._index += 1
        return token

    def read(self) -> TapeToken:
        token = self.next()
        if token is None:
            raise MalformedInputError("unexpected end of tape", self._index)
        return token

    def peek(self) -> Optional[TapeToken]:
        if self._index >= len(self._tokens):
            return None
        return self._tokens[self._index]

    def skip_container(self) -> None:
        skip_container(self)


def skip_container(tape) -> None:
    """Consume tokens up to and including the close of the current container."""
    depth = 1
    while depth:
        token = tape.read()
        if token.kind is TokenKind.OPEN:
            depth += 1
        elif token.kind is TokenKind.CLOSE:
            depth -= 1
