"""Tests for per-game float, date and text rules.

WHY: A wrong float rule produces melts that differ from the game's own
text save only near rounding boundaries, which is exactly where bugs
hide. These tables pin the decode rules to published vectors.

RULES:
- Vectors for the modern families come from the engine's own test data
- EU4 f64 floors (not truncates) toward negative infinity
"""

from __future__ import annotations

import struct

import pytest

from pdx_melt.core.dates import PdsDate
from pdx_melt.core.flavor import (
    CK3, EU4, EU5, FLAVORS, VIC3, Game, Shape, flavor_for, flavor_for_path,
)


def _i64(value: int) -> bytes:
    return struct.pack("<q", value)


class TestFixedEpsilonF64:
    """f64 rule shared by CK3, Imperator, Vic3 and EU5."""

    @pytest.mark.parametrize("payload,expected", [
        (bytes([3, 176, 63, 231, 0, 0, 0, 0]), 38797.10723),
        (bytes([254, 3, 0, 0, 0, 0, 0, 0]), 0.01022),
        (bytes([85, 98, 0, 0, 0, 0, 0, 0]), 0.25173),
        (bytes([65, 0, 0, 0, 0, 0, 0, 0]), 0.00065),
        (bytes([4, 0, 0, 0, 0, 0, 0, 0]), 0.00004),
    ])
    def test_published_vectors(self, payload, expected):
        for flavor in (CK3, VIC3, EU5):
            assert flavor.decode_f64(payload) == expected

    def test_negative_values_keep_sign(self):
        assert EU5.decode_f64(_i64(-1022)) == -0.01022

    def test_zero(self):
        assert EU5.decode_f64(_i64(0)) == 0.0

    def test_text_rendering_trims_zeros(self):
        assert EU5.format_f64(EU5.decode_f64(bytes([3, 176, 63, 231, 0, 0, 0, 0]))) == "38797.10723"
        assert EU5.format_f64(EU5.decode_f64(_i64(150000))) == "1.5"
        assert EU5.format_f64(EU5.decode_f64(_i64(200000))) == "2"


class TestEu4Floats:
    """EU4 fixed-point rules."""

    def test_f32_is_thousandths(self):
        assert EU4.decode_f32(struct.pack("<i", 1500)) == 1.5
        assert EU4.decode_f32(struct.pack("<i", -1500)) == -1.5

    def test_f32_prints_three_decimals(self):
        assert EU4.format_f32(1.5) == "1.500"
        assert EU4.format_f32(-1.5) == "-1.500"

    def test_f64_is_q15(self):
        assert EU4.decode_f64(_i64(65536)) == 2.0
        assert EU4.format_f64(2.0) == "2.00000"

    def test_f64_floors_positive(self):
        # 1 / 32768 = 0.0000305...
        assert EU4.decode_f64(_i64(1)) == 0.00003

    def test_f64_floors_negative_toward_minus_infinity(self):
        assert EU4.decode_f64(_i64(-1)) == -0.00004
        assert EU4.format_f64(-0.00004) == "-0.00004"


class TestIeeeF32:
    """Modern families read f32 as IEEE-754."""

    def test_decode(self):
        assert CK3.decode_f32(struct.pack("<f", 1.5)) == 1.5

    def test_format_trims(self):
        assert CK3.format_f32(1.5) == "1.5"
        assert CK3.format_f32(0.25) == "0.25"

    @pytest.mark.parametrize("literal, text", [
        (0.1234567, "0.1234567"),
        (1e-07, "0.0000001"),
        (-2.5, "-2.5"),
        (100.0, "100"),
    ])
    def test_format_reads_back_as_same_f32(self, literal, text):
        value = CK3.decode_f32(struct.pack("<f", literal))
        formatted = CK3.format_f32(value)
        assert formatted == text
        assert struct.pack("<f", float(formatted)) == struct.pack("<f", literal)

    def test_negative_zero_drops_sign(self):
        assert CK3.format_f32(-0.0) == "0"

    def test_eu4_keeps_fixed_decimals(self):
        assert EU4.format_f32(1.5) == "1.500"
        assert EU4.format_f32(0.0001) == "0.000"


class TestNegativeZero:
    """Negative zero never keeps its sign in text."""

    def test_trimmed(self):
        assert EU5.format_f64(-0.0) == "0"
        assert EU5.format_f64(-0.000001) == "0"

    def test_fixed(self):
        assert EU4.format_f64(-0.000001) == "0.00000"


class TestDateRules:
    """Strict and heuristic date acceptance per family."""

    def test_no_hours_rejects_hours(self):
        assert CK3.date_from_binary(PdsDate(1066, 9, 15, 3).to_binary()) is None

    def test_no_hours_heuristic_rejects_ancient_years(self):
        value = PdsDate(-200, 1, 1).to_binary()
        assert CK3.date_from_binary(value) == PdsDate(-200, 1, 1)
        assert CK3.date_from_binary(value, heuristic=True) is None

    def test_vic3_accepts_quarter_day_hours(self):
        date = PdsDate(1836, 1, 1, 6)
        assert VIC3.date_from_binary(date.to_binary(), heuristic=True) == date

    def test_vic3_rejects_other_hours(self):
        assert VIC3.date_from_binary(PdsDate(1836, 1, 1, 5).to_binary()) is None

    def test_vic3_heuristic_needs_modern_year(self):
        assert VIC3.date_from_binary(PdsDate(1600, 1, 1).to_binary(), heuristic=True) is None
        assert VIC3.date_from_binary(PdsDate(1, 1, 1).to_binary(), heuristic=True) == PdsDate(1, 1, 1)

    def test_eu5_strict_allows_odd_hours(self):
        date = PdsDate(1337, 4, 1, 3)
        assert EU5.date_from_binary(date.to_binary()) == date
        assert EU5.date_from_binary(date.to_binary(), heuristic=True) is None

    def test_eu5_rejects_hour_23(self):
        assert EU5.date_from_binary(PdsDate(1337, 4, 1, 23).to_binary()) is None

    def test_only_vic3_is_strict_about_known_dates(self):
        assert [f.game for f in FLAVORS.values() if f.strict_dates] == [Game.VIC3]


class TestRegistry:
    """FLAVORS lookup helpers."""

    def test_every_game_has_a_flavor(self):
        assert set(FLAVORS) == set(Game)

    def test_lookup_by_string(self):
        assert flavor_for("EU4") is EU4
        assert flavor_for(Game.VIC3) is VIC3

    def test_unknown_game_lists_available(self):
        with pytest.raises(ValueError, match="Available"):
            flavor_for("hoi4")

    def test_lookup_by_extension(self):
        assert flavor_for_path("autosave.eu4") is EU4
        assert flavor_for_path("saves/Ironman.V3") is VIC3
        assert flavor_for_path("notes.txt") is None

    def test_codepages(self):
        assert EU4.encode_name("Bourbon") == b"Bourbon"
        assert EU4.decode_text(b"Fran\xe7ois") == "François"
        assert CK3.decode_text("François".encode("utf-8")) == "François"

    def test_shape_hints(self):
        assert EU4.shape_hint("flags") is Shape.OBJECT
        assert CK3.shape_hint("color") is Shape.COLOR
        assert CK3.shape_hint("flags") is None
