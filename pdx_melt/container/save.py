"""Save file containers: detection, size ceiling, member access and melt.

WHY: A save on disk is rarely a bare token stream. EU4 writes a zip of
three members (meta, gamestate, ai) each prefixed with ``EU4bin`` or
``EU4txt``, or a single file with that magic. The newer games write a
``SAV`` first line followed by either a body or a zip. Uploads of any of
these arrive from untrusted users, so the size ceiling has to hold
before a single byte is decompressed.

HOW: SaveContainer wraps a seekable binary stream. The size is known up
front (stat, seek/tell, or a limited copy into a spooled temporary file
for non-seekable streams) and checked against the ceiling before
detection reads anything. Detection looks at the first kilobyte: zip
magic, SAV header, a flavor's file magic, else a NUL-byte sniff for
binary. Zip members are opened through zipfile after their declared
uncompressed size has been checked. melt() writes the text-save framing
(rewritten SAV header, ``EU4txt`` magic) around what the Melter produces.

RULES:
- The ceiling applies to the input and to every member's declared size
- Only stored and deflated zip members are supported
- Text inputs pass through unchanged (SAV kind rewritten to text)
- Checksums cover the raw input bytes, never decompressed content
"""

from __future__ import annotations

import io
import logging
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple, Union

from pdx_melt.config import CHUNK_SIZE, DEFAULT_GAME
from pdx_melt.container.header import SAV_MAGIC, SaveHeader, SaveHeaderKind
from pdx_melt.core.checksum import checksum_stream
from pdx_melt.core.flavor import FLAVORS, FormatFlavor, flavor_for, flavor_for_path
from pdx_melt.core.melt import MeltedDocument, Melter, MeltOptions
from pdx_melt.core.tape import BinaryTapeReader
from pdx_melt.errors import (
    InputTooLargeError,
    MalformedInputError,
    SinkFailureError,
    UnsupportedContainerError,
)

logger = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"
SNIFF_SIZE = 1024
SPOOL_MEMORY = 8 * 1024 * 1024
SUPPORTED_COMPRESSION = (zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED)


class ContainerKind(str, Enum):
    ZIP = "zip"
    SAV = "sav"
    MAGIC = "magic"
    RAW = "raw"


class Encoding(str, Enum):
    TEXT = "text"
    BINARY = "binary"
    TEXT_ZIP = "text_zip"
    BINARY_ZIP = "binary_zip"

    @property
    def is_binary(self) -> bool:
        return self in (Encoding.BINARY, Encoding.BINARY_ZIP)


@dataclass(frozen=True)
class ContainerEntry:
    name: str
    size: int
    compressed_size: int
    compression: int


class _PrefixedReader:
    """Replays bytes already read from a stream before reading on."""

    def __init__(self, prefix: bytes, stream: BinaryIO) -> None:
        self._prefix = prefix
        self._stream = stream

    def read(self, size: int = -1) -> bytes:
        if not self._prefix:
            return self._stream.read(size)
        if size is None or size < 0:
            data, self._prefix = self._prefix + self._stream.read(), b""
            return data
        data, self._prefix = self._prefix[:size], self._prefix[size:]
        if len(data) < size:
            data += self._stream.read(size - len(data))
        return data

    def close(self) -> None:
        self._stream.close()


@dataclass
class TapeView:
    """A readable body (binary tape or text) located inside a container.

    Attributes:
        stream: Reader positioned after any header or file magic.
        binary: Whether the body is a binary token stream.
        member: Zip member name, or None for a body inside the file itself.
    """

    stream: BinaryIO
    binary: bool
    member: Optional[str] = None

    def reader(self, lookup_tokens: bool = False) -> BinaryTapeReader:
        if not self.binary:
            raise UnsupportedContainerError("{} is text and has no binary tape".format(
                self.member or "body"
            ))
        return BinaryTapeReader(self.stream, lookup_tokens=lookup_tokens)

    def close(self) -> None:
        if self.member is not None:
            self.stream.close()

    def __enter__(self) -> "TapeView":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _check_size(size: int, limit: int) -> None:
    if size > limit:
        raise InputTooLargeError(size, limit)


def _spool(stream: BinaryIO, limit: int) -> Tuple[BinaryIO, int]:
    """Copy a non-seekable stream into a temporary file, enforcing the ceiling."""
    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MEMORY)
    total = 0
    while True:
        chunk = stream.read(CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            spool.close()
            raise InputTooLargeError(total, limit)
        spool.write(chunk)
    spool.seek(0)
    return spool, total


def _emit(sink, data: bytes, document: MeltedDocument) -> None:
    try:
        sink.write(data)
    except OSError as exc:
        raise SinkFailureError(document.bytes_written, exc) from exc
    document.bytes_written += len(data)


def _copy(stream, sink, document: MeltedDocument) -> bytes:
    """Copy a stream to the sink in chunks; returns the last chunk written."""
    last = b""
    while True:
        chunk = stream.read(CHUNK_SIZE)
        if not chunk:
            return last
        _emit(sink, chunk, document)
        last = chunk


class SaveContainer:
    """An opened save file of any supported layout.

    Use as a context manager, or call close(), when built with open().
    """

    def __init__(self, stream: BinaryIO, size: int, game: Optional[str] = None,
                 options: Optional[MeltOptions] = None, name: Optional[str] = None,
                 owned: bool = False) -> None:
        self.options = options or MeltOptions()
        _check_size(size, self.options.max_input_size)

        self._stream = stream
        self._base = stream.tell()
        self._owned = owned
        self._zip: Optional[zipfile.ZipFile] = None
        self.size = size
        self.name = name
        self.header: Optional[SaveHeader] = None
        self.flavor: Optional[FormatFlavor] = flavor_for(game) if game else None
        self.kind, self.encoding = self._detect()
        logger.debug("Detected %s as %s/%s", name or "input", self.kind.value, self.encoding.value)

    # -- construction ------------------------------------------------------

    @classmethod
    def open(cls, path: Union[str, Path], game: Optional[str] = None,
             options: Optional[MeltOptions] = None) -> "SaveContainer":
        options = options or MeltOptions()
        path = Path(path)
        size = path.stat().st_size
        _check_size(size, options.max_input_size)
        if game is None:
            guessed = flavor_for_path(path)
            game = guessed.name if guessed is not None else None

        stream = open(path, "rb")
        try:
            return cls(stream, size, game, options, name=path.name, owned=True)
        except BaseException:
            stream.close()
            raise

    @classmethod
    def from_bytes(cls, data: bytes, game: Optional[str] = None,
                   options: Optional[MeltOptions] = None,
                   name: Optional[str] = None) -> "SaveContainer":
        options = options or MeltOptions()
        _check_size(len(data), options.max_input_size)
        return cls(io.BytesIO(data), len(data), game, options, name=name)

    @classmethod
    def from_stream(cls, stream: BinaryIO, game: Optional[str] = None,
                    options: Optional[MeltOptions] = None,
                    name: Optional[str] = None) -> "SaveContainer":
        """Wrap a binary stream, measuring it before reading from it.

        Seekable streams are measured with seek/tell from their current
        position. Anything else is copied through a limited reader into a
        spooled temporary file, aborting once the ceiling is passed.
        """
        options = options or MeltOptions()
        label = name or getattr(stream, "name", None)
        if game is None and isinstance(label, str):
            guessed = flavor_for_path(label)
            game = guessed.name if guessed is not None else None

        seekable = getattr(stream, "seekable", None)
        if seekable is not None and seekable():
            start = stream.tell()
            end = stream.seek(0, io.SEEK_END)
            stream.seek(start)
            _check_size(end - start, options.max_input_size)
            return cls(stream, end - start, game, options, name=name)

        spool, size = _spool(stream, options.max_input_size)
        return cls(spool, size, game, options, name=name, owned=True)

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None
        if self._owned:
            self._stream.close()

    def __enter__(self) -> "SaveContainer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- detection ---------------------------------------------------------

    def _read_at(self, offset: int, size: int) -> bytes:
        self._stream.seek(self._base + offset)
        return self._stream.read(size)

    def _detect(self) -> Tuple[ContainerKind, Encoding]:
        head = self._read_at(0, SNIFF_SIZE)

        if head.startswith(ZIP_MAGIC):
            self._open_zip()
            return ContainerKind.ZIP, self._zip_encoding()

        if head.startswith(SAV_MAGIC):
            self.header = SaveHeader.parse(head)
            kind = self.header.known_kind
            if kind.is_zip:
                self._open_zip()
                encoding = Encoding.BINARY_ZIP if kind.is_binary else Encoding.TEXT_ZIP
            else:
                encoding = Encoding.BINARY if kind.is_binary else Encoding.TEXT
            return ContainerKind.SAV, encoding

        for flavor in FLAVORS.values():
            for magic, encoding in ((flavor.binary_magic, Encoding.BINARY),
                                    (flavor.text_magic, Encoding.TEXT)):
                if magic and head.startswith(magic):
                    if self.flavor is None:
                        self.flavor = flavor
                    return ContainerKind.MAGIC, encoding

        return ContainerKind.RAW, Encoding.BINARY if b"\x00" in head else Encoding.TEXT

    def _open_zip(self) -> None:
        self._stream.seek(self._base)
        try:
            self._zip = zipfile.ZipFile(self._stream)
        except zipfile.BadZipFile as exc:
            raise UnsupportedContainerError("unreadable zip archive: {}".format(exc)) from exc

    def _zip_encoding(self) -> Encoding:
        name = self._default_member()
        with self._sniff_member(name) as view:
            return Encoding.BINARY_ZIP if view.binary else Encoding.TEXT_ZIP

    def _sniff(self, stream, member: Optional[str]) -> TapeView:
        head = stream.read(SNIFF_SIZE)
        flavors = [self.flavor] if self.flavor is not None else list(FLAVORS.values())
        for flavor in flavors:
            if flavor.binary_magic and head.startswith(flavor.binary_magic):
                self.flavor = flavor
                return TapeView(_PrefixedReader(head[len(flavor.binary_magic):], stream), True, member)
            if flavor.text_magic and head.startswith(flavor.text_magic):
                self.flavor = flavor
                rest = head[len(flavor.text_magic):]
                if rest.startswith(b"\r\n"):
                    rest = rest[2:]
                elif rest.startswith(b"\n"):
                    rest = rest[1:]
                return TapeView(_PrefixedReader(rest, stream), False, member)
        return TapeView(_PrefixedReader(head, stream), b"\x00" in head, member)

    # -- members -----------------------------------------------------------

    def entries(self) -> List[ContainerEntry]:
        """Members of a zip container; empty for single-body files."""
        if self._zip is None:
            return []
        return [
            ContainerEntry(info.filename, info.file_size, info.compress_size, info.compress_type)
            for info in self._zip.infolist()
        ]

    def _default_member(self) -> str:
        names = self._zip.namelist()
        members = self.flavor.zip_members if self.flavor is not None else ("gamestate",)
        for candidate in members + ("gamestate",):
            if candidate in names:
                return candidate
        if len(names) == 1:
            return names[0]
        raise UnsupportedContainerError(
            "archive has no gamestate member (members: {})".format(", ".join(names))
        )

    def _open_member(self, name: str):
        try:
            info = self._zip.getinfo(name)
        except KeyError:
            raise UnsupportedContainerError("archive has no member '{}'".format(name)) from None
        if info.compress_type not in SUPPORTED_COMPRESSION:
            raise UnsupportedContainerError(
                "member '{}' uses unsupported compression method {}".format(name, info.compress_type)
            )
        _check_size(info.file_size, self.options.max_input_size)
        return self._zip.open(info)

    def _sniff_member(self, name: str) -> TapeView:
        return self._sniff(self._open_member(name), name)

    def as_tape(self, member: Optional[str] = None) -> TapeView:
        """Locate the body to melt: a zip member or the file's own body."""
        if self._zip is not None:
            return self._sniff_member(member or self._default_member())
        if member is not None:
            raise UnsupportedContainerError("'{}' is not an archive".format(self.name or "input"))

        if self.kind is ContainerKind.SAV:
            self._stream.seek(self._base + self.header.header_len)
        elif self.kind is ContainerKind.MAGIC:
            self._stream.seek(self._base)
            return self._sniff(self._stream, None)
        else:
            self._stream.seek(self._base)
        return TapeView(self._stream, self.encoding.is_binary)

    # -- operations --------------------------------------------------------

    def _require_flavor(self) -> FormatFlavor:
        if self.flavor is None and DEFAULT_GAME:
            self.flavor = flavor_for(DEFAULT_GAME)
        if self.flavor is None:
            raise UnsupportedContainerError(
                "cannot tell which game {} belongs to; pass a game explicitly".format(
                    self.name or "the input"
                )
            )
        return self.flavor

    def melt(self, sink, resolver, options: Optional[MeltOptions] = None) -> MeltedDocument:
        """Write the native text form of this save to ``sink``."""
        options = options or self.options
        flavor = self._require_flavor()
        document = MeltedDocument()
        logger.info("Melting %s as %s (%s)", self.name or "input", flavor.name, self.encoding.value)
        try:
            if self.kind is ContainerKind.SAV:
                self._melt_sav(sink, resolver, options, flavor, document)
            elif self.kind is ContainerKind.ZIP:
                self._melt_zip(sink, resolver, options, flavor, document)
            else:
                self._melt_body(sink, resolver, options, flavor, document)
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise MalformedInputError("corrupt archive data: {}".format(exc)) from exc
        if document.unknown_tokens:
            logger.warning("%d unknown tokens in %s", len(document.unknown_tokens),
                           self.name or "input")
        return document

    def _melt_body(self, sink, resolver, options, flavor, document) -> None:
        view = self.as_tape()
        if not view.binary:
            self._stream.seek(self._base)
            _copy(self._stream, sink, document)
            return
        if self.kind is ContainerKind.MAGIC and flavor.text_magic:
            _emit(sink, flavor.text_magic + b"\n", document)
        Melter(view.reader(flavor.lookup_tokens), resolver, flavor, options, document).run(sink)

    def _melt_zip(self, sink, resolver, options, flavor, document) -> None:
        names = self._zip.namelist()
        members = [m for m in flavor.zip_members if m in names] or [self._default_member()]
        if flavor.text_magic:
            _emit(sink, flavor.text_magic + b"\n", document)
        for member in members:
            with self.as_tape(member) as view:
                if view.binary:
                    reader = view.reader(flavor.lookup_tokens)
                    Melter(reader, resolver, flavor, options, document).run(sink)
                elif not _copy(view.stream, sink, document).endswith(b"\n"):
                    _emit(sink, b"\n", document)

    def _melt_sav(self, sink, resolver, options, flavor, document) -> None:
        header = self.header.with_kind(SaveHeaderKind.TEXT)
        if not self.encoding.is_binary:
            if self._zip is None:
                self._stream.seek(self._base)
                _copy(self._stream, sink, document)
                return
            _emit(sink, header.to_bytes(), document)
            with self.as_tape() as view:
                _copy(view.stream, sink, document)
            return

        with self.as_tape() as view:
            melter = Melter(view.reader(flavor.lookup_tokens), resolver, flavor, options, document)
            written = document.bytes_written
            metadata = io.BytesIO()
            melter.run(metadata, header=True)
            document.bytes_written = written

            block = metadata.getvalue()
            _emit(sink, header.with_meta_len(len(block)).to_bytes(), document)
            _emit(sink, block, document)
            melter.run(sink)

    def checksum(self) -> str:
        """Content checksum of the raw input bytes."""
        self._stream.seek(self._base)
        return checksum_stream(self._stream)
