"""Tests for save container detection, limits and melting.

WHY: Containers are where untrusted uploads first meet the code. These
tests cover every layout the games write, plus the limits that must
hold before anything is decompressed.

HOW: Saves are assembled in memory: SaveHeader for the SAV line,
zipfile for archives, TapeBuilder for bodies.
"""

from __future__ import annotations

import io
import zipfile

import pytest

from pdx_melt.container import (
    ContainerKind,
    Encoding,
    SaveContainer,
    SaveHeader,
    SaveHeaderKind,
)
from pdx_melt.core.checksum import checksum_stream
from pdx_melt.core.dates import PdsDate
from pdx_melt.core.melt import MeltOptions
from pdx_melt.errors import InputTooLargeError, UnsupportedContainerError
from pdx_melt.resolvers import StringLookupResolver
from tapes import BAR, DATE, FOO, METADATA, tape

METADATA_TAPE = tape().key(METADATA).open().key(FOO).i32(1).close().key(BAR).i32(2).build()
METADATA_TEXT = b"metadata={\n\tfoo=1\n}\n"


def make_zip(members, compression=zipfile.ZIP_DEFLATED) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data, compress_type=compression)
    return buf.getvalue()


def sav_header(kind, meta_len=0x99, header_len=24) -> SaveHeader:
    return SaveHeader(b"01", int(kind), b"0004c2a1", meta_len, header_len)


def melt_container(container, resolver) -> bytes:
    sink = io.BytesIO()
    container.melt(sink, resolver)
    return sink.getvalue()


class CountingStream(io.BytesIO):
    """BytesIO that records how many read() calls it served."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.reads = 0

    def read(self, size=-1):
        self.reads += 1
        return super().read(size)


class UnseekableStream:
    """Read-only stream without seek support, like a socket or pipe."""

    def __init__(self, data: bytes) -> None:
        self._inner = io.BytesIO(data)

    def read(self, size=-1):
        return self._inner.read(size)

    def seekable(self):
        return False


class TestSaveHeader:
    def test_parse_and_render(self):
        header = sav_header(SaveHeaderKind.UNIFIED_BINARY, 0x1234)
        raw = header.to_bytes()
        assert raw == b"SAV01030004c2a100001234\n"
        assert SaveHeader.parse(raw) == header

    def test_crlf(self):
        raw = b"SAV0100" + b"0004c2a1" + b"00000010" + b"\r\n"
        header = SaveHeader.parse(raw)
        assert header.header_len == 25
        assert header.to_bytes() == raw

    def test_kind_rewrite(self):
        header = sav_header(SaveHeaderKind.BINARY).with_kind(SaveHeaderKind.TEXT).with_meta_len(20)
        assert header.to_bytes() == b"SAV01000004c2a100000014\n"

    def test_not_hex(self):
        with pytest.raises(UnsupportedContainerError):
            SaveHeader.parse(b"SAV01zz0004c2a100000014\n")

    def test_unknown_kind(self):
        with pytest.raises(UnsupportedContainerError):
            SaveContainer.from_bytes(sav_header(9).to_bytes() + b"foo=1\n", game="ck3")

    def test_kind_properties(self):
        assert SaveHeaderKind.SPLIT_BINARY.is_binary and SaveHeaderKind.SPLIT_BINARY.is_zip
        assert not SaveHeaderKind.TEXT.is_binary and not SaveHeaderKind.TEXT.is_zip


class TestSavContainers:
    """CK3/Imperator/Vic3/EU5 layouts."""

    def test_binary_body(self, resolver):
        data = sav_header(SaveHeaderKind.BINARY).to_bytes() + METADATA_TAPE
        with SaveContainer.from_bytes(data, game="ck3") as container:
            assert container.kind is ContainerKind.SAV
            assert container.encoding is Encoding.BINARY
            output = melt_container(container, resolver)

        expected_header = sav_header(SaveHeaderKind.TEXT, len(METADATA_TEXT)).to_bytes()
        assert output == expected_header + METADATA_TEXT + b"bar=2\n"

    def test_binary_body_bytes_written(self, resolver):
        data = sav_header(SaveHeaderKind.BINARY).to_bytes() + METADATA_TAPE
        sink = io.BytesIO()
        with SaveContainer.from_bytes(data, game="vic3") as container:
            document = container.melt(sink, resolver)
        assert document.bytes_written == len(sink.getvalue())

    def test_unified_binary_zip(self, resolver):
        data = (sav_header(SaveHeaderKind.UNIFIED_BINARY).to_bytes()
                + make_zip({"gamestate": METADATA_TAPE}))
        with SaveContainer.from_bytes(data, game="ck3") as container:
            assert container.encoding is Encoding.BINARY_ZIP
            assert [e.name for e in container.entries()] == ["gamestate"]
            output = melt_container(container, resolver)

        expected_header = sav_header(SaveHeaderKind.TEXT, len(METADATA_TEXT)).to_bytes()
        assert output == expected_header + METADATA_TEXT + b"bar=2\n"

    def test_text_body_passes_through(self, resolver):
        data = sav_header(SaveHeaderKind.TEXT, 0).to_bytes() + b"foo=1\n"
        with SaveContainer.from_bytes(data, game="ck3") as container:
            assert container.encoding is Encoding.TEXT
            assert melt_container(container, resolver) == data

    def test_text_zip(self, resolver):
        body = b"metadata={\n\tfoo=1\n}\nbar=2\n"
        data = sav_header(SaveHeaderKind.UNIFIED_TEXT).to_bytes() + make_zip({"gamestate": body})
        with SaveContainer.from_bytes(data, game="ck3") as container:
            assert container.encoding is Encoding.TEXT_ZIP
            output = melt_container(container, resolver)
        assert output == sav_header(SaveHeaderKind.TEXT).to_bytes() + body


class TestEu4Containers:
    """EU4 magic files and three-member archives."""

    def test_binary_zip(self, resolver):
        date = PdsDate(1444, 11, 11).to_binary()
        data = make_zip({
            "meta": b"EU4bin" + tape().key(DATE).i32(date).build(),
            "gamestate": b"EU4bin" + tape().key(FOO).i32(1).build(),
            "ai": b"EU4bin" + tape().key(BAR).i32(2).build(),
        })
        with SaveContainer.from_bytes(data) as container:
            assert container.kind is ContainerKind.ZIP
            assert container.encoding is Encoding.BINARY_ZIP
            assert container.flavor.name == "eu4"
            output = melt_container(container, resolver)
        assert output == b"EU4txt\ndate=1444.11.11\nfoo=1\nbar=2\n"

    def test_text_zip(self, resolver):
        data = make_zip({
            "meta": b"EU4txt\nfoo=1\n",
            "gamestate": b"EU4txt\nbar=2\n",
        })
        with SaveContainer.from_bytes(data) as container:
            assert container.encoding is Encoding.TEXT_ZIP
            output = melt_container(container, resolver)
        assert output == b"EU4txt\nfoo=1\nbar=2\n"

    def test_binary_magic_file(self, resolver):
        data = b"EU4bin" + tape().key(FOO).i32(1).build()
        with SaveContainer.from_bytes(data) as container:
            assert container.kind is ContainerKind.MAGIC
            assert container.encoding is Encoding.BINARY
            assert melt_container(container, resolver) == b"EU4txt\nfoo=1\n"

    def test_text_magic_file_passes_through(self, resolver):
        data = b"EU4txt\nfoo=1\n"
        with SaveContainer.from_bytes(data) as container:
            assert container.encoding is Encoding.TEXT
            assert melt_container(container, resolver) == data


class TestRawBodies:
    def test_binary(self, resolver):
        with SaveContainer.from_bytes(tape().key(FOO).i32(1).build(), game="ck3") as container:
            assert container.kind is ContainerKind.RAW
            assert melt_container(container, resolver) == b"foo=1\n"

    def test_eu5_lookup_tokens(self, resolver):
        strings = StringLookupResolver(resolver, ["alpha"])
        with SaveContainer.from_bytes(tape().key(FOO).lookup_u8(0).build(), game="eu5") as container:
            assert melt_container(container, strings) == b"foo=alpha\n"

    def test_text(self, resolver):
        with SaveContainer.from_bytes(b"foo=1\n", game="ck3") as container:
            assert container.encoding is Encoding.TEXT
            assert melt_container(container, resolver) == b"foo=1\n"

    def test_text_has_no_tape(self):
        with SaveContainer.from_bytes(b"foo=1\n", game="ck3") as container:
            with pytest.raises(UnsupportedContainerError):
                container.as_tape().reader()

    def test_game_required_for_raw_binary(self, resolver, monkeypatch):
        monkeypatch.setattr("pdx_melt.container.save.DEFAULT_GAME", "")
        with SaveContainer.from_bytes(tape().key(FOO).i32(1).build()) as container:
            with pytest.raises(UnsupportedContainerError):
                melt_container(container, resolver)


class TestLimits:
    """Size ceilings and unsupported archives."""

    def test_seekable_stream_checked_before_reading(self):
        stream = CountingStream(b"\x00" * 100)
        with pytest.raises(InputTooLargeError) as info:
            SaveContainer.from_stream(stream, game="ck3", options=MeltOptions(max_input_size=50))
        assert stream.reads == 0
        assert info.value.size == 100
        assert info.value.limit == 50

    def test_unseekable_stream_aborts_at_ceiling(self):
        with pytest.raises(InputTooLargeError):
            SaveContainer.from_stream(
                UnseekableStream(b"\x00" * 100), game="ck3",
                options=MeltOptions(max_input_size=50),
            )

    def test_unseekable_stream_under_ceiling(self, resolver):
        stream = UnseekableStream(tape().key(FOO).i32(1).build())
        with SaveContainer.from_stream(stream, game="ck3") as container:
            assert melt_container(container, resolver) == b"foo=1\n"

    def test_stream_name_guesses_game(self, tmp_path, resolver):
        path = tmp_path / "autosave.ck3"
        path.write_bytes(tape().key(FOO).i32(1).build())
        with open(path, "rb") as handle:
            with SaveContainer.from_stream(handle) as container:
                assert container.flavor.name == "ck3"

    def test_open_checks_size(self, tmp_path):
        path = tmp_path / "big.ck3"
        path.write_bytes(b"\x00" * 100)
        with pytest.raises(InputTooLargeError):
            SaveContainer.open(path, options=MeltOptions(max_input_size=10))

    def test_open_guesses_game(self, tmp_path, resolver):
        path = tmp_path / "save.v3"
        path.write_bytes(sav_header(SaveHeaderKind.BINARY).to_bytes() + METADATA_TAPE)
        with SaveContainer.open(path) as container:
            assert container.flavor.name == "vic3"
            assert melt_container(container, resolver).endswith(b"bar=2\n")

    def test_member_ceiling(self):
        data = make_zip({"gamestate": b"\x00" * 10000})
        assert len(data) < 5000
        with pytest.raises(InputTooLargeError):
            SaveContainer.from_bytes(data, game="ck3", options=MeltOptions(max_input_size=5000))

    def test_unsupported_compression(self):
        data = make_zip({"gamestate": b"\x00" * 100}, compression=zipfile.ZIP_BZIP2)
        with pytest.raises(UnsupportedContainerError) as info:
            SaveContainer.from_bytes(data, game="ck3")
        assert "compression" in str(info.value)

    def test_corrupt_zip(self):
        with pytest.raises(UnsupportedContainerError):
            SaveContainer.from_bytes(b"PK\x03\x04" + b"\x01" * 40, game="ck3")

    def test_missing_gamestate(self):
        data = make_zip({"a": b"x", "b": b"y"})
        with pytest.raises(UnsupportedContainerError):
            SaveContainer.from_bytes(data, game="ck3")


class TestChecksum:
    def test_covers_raw_bytes(self):
        data = make_zip({"gamestate": METADATA_TAPE})
        with SaveContainer.from_bytes(data, game="ck3") as container:
            assert container.checksum() == checksum_stream(io.BytesIO(data))
