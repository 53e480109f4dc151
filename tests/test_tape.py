"""Tests for the streaming binary tape reader.

WHY: The reader refills a small window from the stream; tokens that
straddle a refill boundary are where a streaming decoder breaks.

RULES:
- Every test decodes with a tiny chunk size to force refills mid-token
"""

from __future__ import annotations

import io

import pytest

from pdx_melt.core.tape import LOOKUP_U8, BinaryTapeReader, TapeToken, TokenKind, TokenTape
from pdx_melt.errors import MalformedInputError
from tapes import BAR, FOO, tape


def _reader(data: bytes, chunk_size: int = 3) -> BinaryTapeReader:
    return BinaryTapeReader(io.BytesIO(data), chunk_size=chunk_size)


class TestDecode:
    """Token decoding across chunk boundaries."""

    def test_scalars(self):
        data = (
            tape().i32(-5).u32(7).i64(-9).u64(2 ** 40).bool(True).bool(False)
            .quoted("hello").unquoted("world").build()
        )
        tokens = list(_reader(data))
        assert [(t.kind, t.value) for t in tokens] == [
            (TokenKind.I32, -5),
            (TokenKind.U32, 7),
            (TokenKind.I64, -9),
            (TokenKind.U64, 2 ** 40),
            (TokenKind.BOOL, True),
            (TokenKind.BOOL, False),
            (TokenKind.QUOTED, b"hello"),
            (TokenKind.UNQUOTED, b"world"),
        ]

    def test_structure_and_ids(self):
        data = tape().key(FOO).open().token(BAR).close().build()
        kinds = [t.kind for t in _reader(data)]
        assert kinds == [TokenKind.ID, TokenKind.EQUAL, TokenKind.OPEN, TokenKind.ID, TokenKind.CLOSE]

    def test_floats_stay_raw(self):
        data = tape().f32_raw(b"\x01\x02\x03\x04").f64_fixed(1022).build()
        f32, f64 = list(_reader(data))
        assert f32.value == b"\x01\x02\x03\x04"
        assert f64.value == (1022).to_bytes(8, "little")

    def test_rgb(self):
        data = tape().rgb(10, 20, 30).rgb(1, 2, 3, 4).build()
        assert [t.value for t in _reader(data)] == [(10, 20, 30), (1, 2, 3, 4)]

    def test_offsets(self):
        data = tape().key(FOO).i32(1).token(BAR).build()
        assert [t.offset for t in _reader(data)] == [0, 2, 4, 10]

    def test_lookup_indices(self):
        data = tape().key(FOO).lookup_u8(7).key(BAR).lookup_u16(0x1234).token(FOO).build()
        reader = BinaryTapeReader(io.BytesIO(data), chunk_size=3, lookup_tokens=True)
        assert [(t.kind, t.value, t.offset) for t in reader] == [
            (TokenKind.ID, FOO, 0),
            (TokenKind.EQUAL, None, 2),
            (TokenKind.LOOKUP, 7, 4),
            (TokenKind.ID, BAR, 7),
            (TokenKind.EQUAL, None, 9),
            (TokenKind.LOOKUP, 0x1234, 11),
            (TokenKind.ID, FOO, 15),
        ]

    def test_lookup_codes_are_ids_unless_enabled(self):
        data = tape().token(LOOKUP_U8).token(FOO).build()
        assert [(t.kind, t.value) for t in _reader(data)] == [
            (TokenKind.ID, LOOKUP_U8),
            (TokenKind.ID, FOO),
        ]


class TestCursor:
    """peek/read/skip semantics."""

    def test_peek_does_not_consume(self):
        reader = _reader(tape().token(FOO).token(BAR).build())
        assert reader.peek().value == FOO
        assert reader.peek().value == FOO
        assert reader.next().value == FOO
        assert reader.next().value == BAR
        assert reader.next() is None

    def test_read_at_end_is_an_error(self):
        with pytest.raises(MalformedInputError):
            _reader(b"").read()

    def test_skip_container(self):
        data = tape().open().key(FOO).open().i32(1).close().close().token(BAR).build()
        reader = _reader(data)
        reader.next()
        reader.skip_container()
        assert reader.next().value == BAR

    def test_position_tracks_peek(self):
        reader = _reader(tape().token(FOO).token(BAR).build())
        reader.next()
        assert reader.position == 2
        reader.peek()
        assert reader.position == 2


class TestMalformed:
    """Truncated or corrupt tapes."""

    def test_truncated_payload_reports_offset(self):
        data = tape().token(FOO).build() + tape().i32(1).build()[:4]
        reader = _reader(data)
        reader.next()
        with pytest.raises(MalformedInputError) as info:
            reader.next()
        assert info.value.offset == 2

    def test_truncated_lookup_index(self):
        data = tape().token(FOO).build() + tape().lookup_u16(1).build()[:3]
        reader = BinaryTapeReader(io.BytesIO(data), lookup_tokens=True)
        reader.next()
        with pytest.raises(MalformedInputError) as info:
            reader.next()
        assert info.value.offset == 2

    def test_dangling_byte(self):
        with pytest.raises(MalformedInputError):
            list(_reader(b"\x00\x10\x01"))

    def test_rgb_needs_channels(self):
        data = tape().code(0x0243).open().u32(1).close().build()
        with pytest.raises(MalformedInputError):
            list(_reader(data))


class TestTokenTape:
    """In-memory tape."""

    def test_same_api(self):
        tokens = [TapeToken(TokenKind.ID, FOO), TapeToken(TokenKind.EQUAL), TapeToken(TokenKind.I32, 1)]
        tape_ = TokenTape(tokens)
        assert tape_.peek().kind is TokenKind.ID
        assert [t.offset for t in tape_] == [0, 1, 2]
        assert tape_.next() is None
