"""Binary date decoding and game-format rendering.

WHY: Binary saves store dates as a plain 32-bit integer, indistinguishable
from any other integer on the tape. Melting must turn them back into the
``1444.11.11`` text the engine writes, using the engine's own calendar.

HOW: The integer counts hours since 1 January of year -5000 on a
365-day calendar (the engines have no leap days). PdsDate.from_binary
splits it into year/month/day/hour with truncating arithmetic, so any
negative remainder marks an invalid date.

RULES:
- Every year has 365 days; February always has 28
- Hour 0 means "no hour component" and is omitted from game format
- Per-family validation (allowed hours, plausibility heuristics) lives
  in the flavor's DateRule, not here
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

EPOCH_YEAR = -5000
HOURS_PER_DAY = 24
DAYS_PER_YEAR = 365

DAYS_PER_MONTH = (0, 31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)

# First day-of-year index of each month (1-based months)
_MONTH_STARTS = (0, 0, 31, 59, 90, 120, 151, 181, 212, 243, 273, 304, 334)


def _trunc_divmod(value: int, divisor: int) -> Tuple[int, int]:
    """divmod with truncation toward zero, matching the engine's arithmetic."""
    quotient = abs(value) // divisor
    if value < 0:
        quotient = -quotient
    return quotient, value - quotient * divisor


def month_day_from_ordinal(day_of_year: int) -> Tuple[int, int]:
    """Convert a 0-based day of a 365-day year into (month, day)."""
    month = 12
    while _MONTH_STARTS[month] > day_of_year:
        month -= 1
    return month, day_of_year - _MONTH_STARTS[month] + 1


@dataclass(frozen=True, order=True)
class PdsDate:
    """A calendar date with an optional hour component."""

    year: int
    month: int
    day: int
    hour: int = 0

    @classmethod
    def from_binary(cls, value: int) -> Optional["PdsDate"]:
        """Decode a binary date integer, or None if it cannot be a date."""
        days, hour = _trunc_divmod(value, HOURS_PER_DAY)
        years, day_of_year = _trunc_divmod(days, DAYS_PER_YEAR)
        if hour < 0 or day_of_year < 0:
            return None

        year = years + EPOCH_YEAR
        if not -32768 <= year <= 32767:
            return None

        month, day = month_day_from_ordinal(day_of_year)
        return cls(year, month, day, hour)

    def to_binary(self) -> int:
        day_of_year = _MONTH_STARTS[self.month] + self.day - 1
        days = (self.year - EPOCH_YEAR) * DAYS_PER_YEAR + day_of_year
        return days * HOURS_PER_DAY + self.hour

    @property
    def has_hour(self) -> bool:
        return self.hour != 0

    def game_fmt(self) -> str:
        """Format as the engine writes it: Y.M.D, plus .H when an hour is set."""
        text = "{}.{}.{}".format(self.year, self.month, self.day)
        if self.hour:
            text += ".{}".format(self.hour)
        return text

    def __str__(self) -> str:
        return self.game_fmt()
