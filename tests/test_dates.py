"""Tests for binary date decoding and formatting.

WHY: Dates are plain i32 values on the tape. An off-by-one in the
calendar arithmetic shifts every date in a melted save.

RULES:
- The engine calendar has 365 days every year and counts hours from
  1 January of year -5000
"""

from __future__ import annotations

import pytest

from pdx_melt.core.dates import PdsDate, month_day_from_ordinal


class TestFromBinary:
    """PdsDate.from_binary decoding."""

    def test_year_one(self):
        assert PdsDate.from_binary(43808760) == PdsDate(1, 1, 1)

    def test_round_trip_common_start_dates(self):
        for date in (PdsDate(1444, 11, 11), PdsDate(1836, 1, 1), PdsDate(867, 1, 1),
                     PdsDate(1337, 12, 31), PdsDate(1, 2, 28)):
            assert PdsDate.from_binary(date.to_binary()) == date

    def test_hours_are_kept(self):
        date = PdsDate(1836, 1, 1, 6)
        assert PdsDate.from_binary(date.to_binary()) == date

    def test_negative_hour_is_not_a_date(self):
        assert PdsDate.from_binary(-1) is None

    def test_epoch(self):
        assert PdsDate.from_binary(0) == PdsDate(-5000, 1, 1)

    def test_year_outside_i16_is_rejected(self):
        assert PdsDate.from_binary(2 ** 31 - 1) is None


class TestMonthDay:
    """Ordinal day to month/day conversion."""

    @pytest.mark.parametrize("ordinal,expected", [
        (0, (1, 1)),
        (30, (1, 31)),
        (31, (2, 1)),
        (58, (2, 28)),
        (59, (3, 1)),
        (364, (12, 31)),
    ])
    def test_boundaries(self, ordinal, expected):
        assert month_day_from_ordinal(ordinal) == expected


class TestFormatting:
    """Game and ISO renderings."""

    def test_game_format_without_hour(self):
        assert PdsDate(1444, 11, 11).game_fmt() == "1444.11.11"

    def test_game_format_with_hour(self):
        assert PdsDate(1836, 1, 1, 12).game_fmt() == "1836.1.1.12"

    def test_str_is_game_format(self):
        assert str(PdsDate(769, 1, 1)) == "769.1.1"

    def test_hour_stays_in_game_format(self):
        # Clock-time renderings differ per family; a date only knows game format
        date = PdsDate(1836, 1, 1, 6)
        assert str(date) == "1836.1.1.6"
        assert not hasattr(date, "iso_8601")
