"""Resolver over the compact binary token index bundled with a build.

WHY: Token tables run to tens of thousands of names. Shipping them as a
flat length-prefixed blob keeps the package small and makes loading a
single pass with no parsing of text.

HOW: The index is ``u16 count``, ``u16 breakpoint``, then one entry per
token, each ``u8 length`` + UTF-8 name. Entries cover tokens
``[0, breakpoint)`` followed by ``[HIGH_SEGMENT_START, count)``; the gap
between the two segments is not stored. Empty entries mark tokens with
no name. build_index() is the offline producer used by
``pdx-melt tokenize``.

RULES:
- Backing store is a tuple; resolve() is two comparisons and an index
- Names longer than 255 UTF-8 bytes cannot be indexed
- A truncated index is a TokenTableError, never a partial resolver
"""

from __future__ import annotations

import logging
import struct
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from pdx_melt.errors import TokenTableError

logger = logging.getLogger(__name__)

HIGH_SEGMENT_START = 10000

_HEADER = struct.Struct("<HH")


class EmbeddedIndexResolver:
    """Resolves tokens from a decoded embedded index."""

    def __init__(self, low: Tuple[Optional[str], ...], high: Tuple[Optional[str], ...]) -> None:
        self._low = low
        self._high = high

    def __len__(self) -> int:
        return sum(1 for name in self._low + self._high if name is not None)

    def resolve(self, token: int) -> Optional[str]:
        if token < len(self._low):
            return self._low[token]
        index = token - HIGH_SEGMENT_START
        if 0 <= index < len(self._high):
            return self._high[index]
        return None

    @classmethod
    def from_bytes(cls, data: bytes) -> "EmbeddedIndexResolver":
        if len(data) < _HEADER.size:
            raise TokenTableError("embedded token index is shorter than its header")
        count, breakpoint = _HEADER.unpack_from(data)
        if breakpoint > min(count, HIGH_SEGMENT_START):
            raise TokenTableError(
                "embedded token index breakpoint {} exceeds count {}".format(breakpoint, count)
            )
        expected = breakpoint + max(0, count - HIGH_SEGMENT_START)

        names: List[Optional[str]] = []
        pos = _HEADER.size
        while len(names) < expected:
            if pos >= len(data):
                raise TokenTableError(
                    "embedded token index truncated after {} of {} entries".format(
                        len(names), expected
                    )
                )
            length = data[pos]
            pos += 1
            raw = data[pos:pos + length]
            if len(raw) != length:
                raise TokenTableError("embedded token index truncated inside entry {}".format(len(names)))
            pos += length
            try:
                names.append(raw.decode("utf-8") if raw else None)
            except UnicodeDecodeError as exc:
                raise TokenTableError("entry {} is not UTF-8: {}".format(len(names), exc)) from exc

        return cls(tuple(names[:breakpoint]), tuple(names[breakpoint:]))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "EmbeddedIndexResolver":
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise TokenTableError("unable to read token index {}: {}".format(path, exc)) from exc
        resolver = cls.from_bytes(data)
        logger.debug("Loaded %d tokens from index %s", len(resolver), path)
        return resolver

    @classmethod
    def from_package(cls, game: str) -> "EmbeddedIndexResolver":
        """Load the index bundled as ``pdx_melt/tokens/<game>.bin``."""
        path = package_index_path(game)
        if not path.is_file():
            raise TokenTableError("no bundled token index for '{}'".format(game))
        return cls.from_file(path)


def package_index_path(game: str) -> Path:
    return Path(__file__).resolve().parent.parent / "tokens" / "{}.bin".format(game.lower())


def build_index(pairs: Iterable[Tuple[int, str]]) -> bytes:
    """Encode (token, name) pairs into the embedded index format.

    Tokens below HIGH_SEGMENT_START form the low segment, the rest the
    high segment. Later pairs for the same token replace earlier ones.
    """
    table = dict(pairs)
    low_tokens = [t for t in table if t < HIGH_SEGMENT_START]
    high_tokens = [t for t in table if t >= HIGH_SEGMENT_START]
    breakpoint = max(low_tokens) + 1 if low_tokens else 0
    count = max(high_tokens) + 1 if high_tokens else breakpoint

    out = bytearray(_HEADER.pack(count, breakpoint))
    segments = (range(breakpoint), range(HIGH_SEGMENT_START, count))
    for segment in segments:
        for token in segment:
            encoded = table.get(token, "").encode("utf-8")
            if len(encoded) > 0xFF:
                raise TokenTableError(
                    "name for token 0x{:04x} is longer than 255 bytes".format(token)
                )
            out.append(len(encoded))
            out += encoded
    return bytes(out)
