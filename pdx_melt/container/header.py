"""The ``SAV`` first line of CK3, Imperator, Vic3 and EU5 saves.

WHY: Saves on the newer engine start with a fixed-width ASCII line that
says whether the body is text or binary, zipped or not, and how many
bytes of metadata precede the gamestate. A melted save must carry the
same line with the kind switched to text and the metadata length
matching the melted metadata block, or the game refuses to load it.

HOW: ``SAV`` + 2 opaque bytes + 2 hex digits of kind + 8 opaque bytes +
8 hex digits of metadata length + ``\\n`` (24 bytes) or ``\\r\\n`` (25).
SaveHeader is immutable; with_kind()/with_meta_len() return copies.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum

from pdx_melt.errors import UnsupportedContainerError

SAV_MAGIC = b"SAV"
HEADER_SIZE = 24


class SaveHeaderKind(IntEnum):
    TEXT = 0
    BINARY = 1
    UNIFIED_TEXT = 2
    UNIFIED_BINARY = 3
    SPLIT_TEXT = 4
    SPLIT_BINARY = 5

    @property
    def is_binary(self) -> bool:
        return self in (SaveHeaderKind.BINARY, SaveHeaderKind.UNIFIED_BINARY,
                        SaveHeaderKind.SPLIT_BINARY)

    @property
    def is_zip(self) -> bool:
        return self not in (SaveHeaderKind.TEXT, SaveHeaderKind.BINARY)


@dataclass(frozen=True)
class SaveHeader:
    unknown: bytes
    kind: int
    random: bytes
    meta_len: int
    header_len: int = HEADER_SIZE

    @classmethod
    def parse(cls, data: bytes) -> "SaveHeader":
        """Parse the header at the start of ``data``.

        Raises UnsupportedContainerError when the bytes are not a header.
        """
        if len(data) < HEADER_SIZE or not data.startswith(SAV_MAGIC):
            raise UnsupportedContainerError("missing SAV header")
        try:
            kind = int(data[5:7].decode("ascii"), 16)
            meta_len = int(data[15:23].decode("ascii"), 16)
        except (UnicodeDecodeError, ValueError) as exc:
            raise UnsupportedContainerError("malformed SAV header: {}".format(exc)) from exc

        if data[23:25] == b"\r\n":
            header_len = HEADER_SIZE + 1
        elif data[23:24] == b"\n":
            header_len = HEADER_SIZE
        else:
            raise UnsupportedContainerError("SAV header is not terminated by a newline")
        return cls(bytes(data[3:5]), kind, bytes(data[7:15]), meta_len, header_len)

    @property
    def known_kind(self) -> SaveHeaderKind:
        try:
            return SaveHeaderKind(self.kind)
        except ValueError:
            raise UnsupportedContainerError("unknown SAV header kind {}".format(self.kind)) from None

    def with_kind(self, kind: int) -> "SaveHeader":
        return replace(self, kind=int(kind))

    def with_meta_len(self, meta_len: int) -> "SaveHeader":
        return replace(self, meta_len=meta_len)

    def to_bytes(self) -> bytes:
        line = (
            SAV_MAGIC
            + self.unknown
            + "{:02x}".format(self.kind).encode("ascii")
            + self.random
            + "{:08x}".format(self.meta_len).encode("ascii")
        )
        return line + (b"\r\n" if self.header_len == HEADER_SIZE + 1 else b"\n")
