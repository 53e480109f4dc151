"""Per-engine-family numeric, text and date policy ("flavors").

WHY: Titles built on the same engine share the binary container format
but disagree on how the bytes behind a float decode, which codepage
strings use, how many decimals the text serializer prints, and which
dates are legal. Copying the wrong rule produces melts that differ from
the native text save, often only for values near a rounding boundary.
The flavor is the single place each divergence is declared.

HOW: FormatFlavor is a frozen dataclass. The set of families is closed:
one instance per Game member, registered in FLAVORS. Decode rules are
enum-tagged (FloatRule, DateRule) so each family's behavior reads as
data rather than as a subclass.

RULES:
- Flavors are stateless and pure: the same bytes always decode the same
- EU4 floats are fixed-point: f32 = i32 / 1000, f64 = i64 / 32768
  floored to 5 decimals; text prints 3 and 5 fixed decimals
- CK3, Imperator, Vic3 and EU5 use IEEE f32 and f64 = i64 / 100000 with
  an f32::EPSILON nudge toward the value's sign before truncation
- IEEE f32 prints the fewest decimals that read back as the same f32
- EU4 strings are Windows-1252, every newer family is UTF-8
- Adding a family is a code change: a Game member plus a FLAVORS entry
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional, Tuple, Union

from pdx_melt.core.dates import DAYS_PER_MONTH, PdsDate

F32_EPSILON = 1.1920928955078125e-07
"""Rust's f32::EPSILON widened to f64, as used by the engine's f64 rule."""

FIXED_POINT_SCALE = 100_000.0
Q15_SCALE = 32_768.0
MILLI_SCALE = 1_000.0

_LE_I32 = struct.Struct("<i")
_LE_I64 = struct.Struct("<q")
_LE_F32 = struct.Struct("<f")


class Game(str, Enum):
    """Supported engine families."""

    EU4 = "eu4"
    CK3 = "ck3"
    IMPERATOR = "imperator"
    VIC3 = "vic3"
    EU5 = "eu5"


class FloatRule(Enum):
    """How a binary float payload becomes a number."""

    IEEE_754 = "ieee754"
    FIXED_MILLI = "fixed_milli"
    Q49_15 = "q49_15"
    FIXED_EPSILON = "fixed_epsilon"


class DateRule(Enum):
    """Which decoded dates a family accepts, strictly and heuristically."""

    NO_HOURS = "no_hours"
    QUARTER_DAY_HOURS = "quarter_day_hours"
    EVEN_HOURS = "even_hours"


class Shape(Enum):
    """Container shape hints for fields whose shape the tape cannot tell."""

    OBJECT = "object"
    ARRAY = "array"
    COLOR = "color"


def _decode_f32(rule: FloatRule, data: bytes) -> float:
    if rule is FloatRule.IEEE_754:
        return _LE_F32.unpack(data)[0]
    if rule is FloatRule.FIXED_MILLI:
        return _LE_I32.unpack(data)[0] / MILLI_SCALE
    raise ValueError("{} is not a 32-bit float rule".format(rule))


def _decode_f64(rule: FloatRule, data: bytes) -> float:
    raw = _LE_I64.unpack(data)[0]
    if rule is FloatRule.Q49_15:
        value = raw / Q15_SCALE
        return math.floor(value * FIXED_POINT_SCALE) / FIXED_POINT_SCALE
    if rule is FloatRule.FIXED_EPSILON:
        x = float(raw)
        # Rust's signum: +1.0 for zero
        sign = -1.0 if x < 0 else 1.0
        return math.trunc(x + F32_EPSILON * sign) / FIXED_POINT_SCALE
    raise ValueError("{} is not a 64-bit float rule".format(rule))


def _format_float(value: float, precision: int, trim: bool) -> str:
    text = "{:.{}f}".format(value, precision)
    if trim and "." in text:
        text = text.rstrip("0").rstrip(".")
    return _unsigned_zero(text)


def _format_shortest_f32(value: float) -> str:
    if not math.isfinite(value):
        return "{}".format(value)
    packed = _LE_F32.pack(value)
    # nine significant digits always identify an f32
    for digits in range(1, 10):
        text = "{:.{}e}".format(value, digits - 1)
        if _LE_F32.pack(float(text)) == packed:
            break
    return _unsigned_zero(format(Decimal(text), "f"))


def _unsigned_zero(text: str) -> str:
    if text.startswith("-") and not text.strip("-0."):
        text = text[1:]
    return text


@dataclass(frozen=True)
class FormatFlavor:
    """Immutable numeric/text/date policy for one engine family.

    Attributes:
        game: The family this flavor describes.
        title: Human-readable game name.
        encoding: Python codec for string payloads and emitted names.
        f32_rule / f64_rule: Decode rules for 4- and 8-byte floats.
        f32_precision / f64_precision: Decimal places the text serializer prints;
            None prints the fewest decimals that read back as the same f32.
        trim_float_zeros: Whether trailing zeros (and a bare ".") are dropped.
        date_rule: Which hours are legal and which plausibility heuristic applies.
        strict_dates: Whether an invalid value in a known date field aborts an
                      ERROR-policy melt instead of printing as an integer.
        lookup_tokens: Whether the tape carries string-lookup codes (indices
                       into a string table the resolver may hold).
        number_fields: Fields whose i32 values are never dates (e.g. seeds).
        date_fields: Fields whose i32 values are always dates.
        scaled_fields: Fields whose f64 values print as the raw fixed-point integer.
        stripped_fields: Fields dropped from non-verbatim melts.
        field_shapes: Container shape hints keyed by field name.
        extensions: Save file extensions (lowercase, with dot).
        binary_magic / text_magic: Leading file magic, for families that have one.
        zip_members: Archive members holding save data, in melt order.
    """

    game: Game
    title: str
    encoding: str
    f32_rule: FloatRule
    f64_rule: FloatRule
    f32_precision: Optional[int]
    f64_precision: int
    trim_float_zeros: bool
    date_rule: DateRule
    strict_dates: bool = False
    lookup_tokens: bool = False
    number_fields: FrozenSet[str] = frozenset()
    date_fields: FrozenSet[str] = frozenset()
    scaled_fields: FrozenSet[str] = frozenset()
    stripped_fields: FrozenSet[str] = frozenset()
    field_shapes: Mapping[str, Shape] = field(default_factory=lambda: MappingProxyType({}))
    extensions: Tuple[str, ...] = ()
    binary_magic: Optional[bytes] = None
    text_magic: Optional[bytes] = None
    zip_members: Tuple[str, ...] = ("gamestate",)

    @property
    def name(self) -> str:
        return self.game.value

    # -- numbers -----------------------------------------------------------

    def decode_f32(self, data: bytes) -> float:
        """Decode a 4-byte little-endian float payload."""
        return _decode_f32(self.f32_rule, data)

    def decode_f64(self, data: bytes) -> float:
        """Decode an 8-byte little-endian float payload.

        EU4 reads the payload as a signed Q49.15 fixed-point number and
        floors it to 5 decimals. The newer families read a signed integer
        x, add f32::EPSILON carrying x's sign, truncate toward zero and
        divide by 100000. The nudge compensates for values that were
        themselves rounded when the engine wrote them.
        """
        return _decode_f64(self.f64_rule, data)

    def format_f32(self, value: float) -> str:
        if self.f32_precision is None:
            return _format_shortest_f32(value)
        return _format_float(value, self.f32_precision, self.trim_float_zeros)

    def format_f64(self, value: float) -> str:
        return _format_float(value, self.f64_precision, self.trim_float_zeros)

    # -- text --------------------------------------------------------------

    def encode_name(self, name: str) -> bytes:
        return name.encode(self.encoding)

    def decode_text(self, data: bytes) -> str:
        return data.decode(self.encoding, errors="replace")

    # -- dates -------------------------------------------------------------

    def date_from_binary(self, value: int, heuristic: bool = False) -> Optional[PdsDate]:
        """Decode an i32 as a date under this family's rules.

        With ``heuristic`` set, the date must also look plausible, for
        integers on the tape that may or may not be dates.
        """
        date = PdsDate.from_binary(value)
        if date is None or date.day > DAYS_PER_MONTH[date.month]:
            return None

        rule = self.date_rule
        if rule is DateRule.NO_HOURS:
            if date.has_hour:
                return None
            if heuristic and date.year <= -100:
                return None
        elif rule is DateRule.QUARTER_DAY_HOURS:
            if date.hour not in (0, 6, 12, 18):
                return None
            if heuristic and not (
                date.year > 1700
                or (date.year == 1 and date.month == 1 and date.day == 1 and not date.has_hour)
            ):
                return None
        elif rule is DateRule.EVEN_HOURS:
            if date.hour > 22:
                return None
            if heuristic and (date.hour % 2 == 1 or date.year <= -100):
                return None
        return date

    # -- fields ------------------------------------------------------------

    def shape_hint(self, field_name: str) -> Optional[Shape]:
        return self.field_shapes.get(field_name)


def _shapes(**shapes: Shape) -> Mapping[str, Shape]:
    return MappingProxyType(dict(shapes))


_VIC3_SCALED_FIELDS = frozenset({
    "workforce", "dependents", "num_literate", "population_total",
    "population_incorporated", "current_manpower", "political_strength",
    "radicals_political_strength", "loyalists_political_strength",
    "population_total_coastal", "population_incorporated_coastal", "votes",
    "lower_strata_pops", "middle_strata_pops", "population_by_profession",
    "population_by_strata", "population_employable_qualifications",
    "population_government_workforce", "population_laborer_workforce",
    "population_lower_strata", "population_loyalists", "population_middle_strata",
    "population_military_workforce", "population_political_participants",
    "population_qualifications", "population_radicals",
    "population_salaried_workforce", "population_unemployed_workforce",
    "population_upper_strata", "population_workforce_by_profession",
    "salaried_working_adults", "trend_loyalists", "trend_population",
    "trend_population_lower_strata", "trend_population_middle_strata",
    "trend_population_upper_strata", "trend_radicals",
    "unemployed_working_adults", "upper_strata_pops",
})

_COLOR_SHAPES = {
    "color": Shape.COLOR,
    "map_color": Shape.COLOR,
    "country_color": Shape.COLOR,
    "revolutionary_colors": Shape.COLOR,
}

EU4 = FormatFlavor(
    game=Game.EU4,
    title="Europa Universalis IV",
    encoding="cp1252",
    f32_rule=FloatRule.FIXED_MILLI,
    f64_rule=FloatRule.Q49_15,
    f32_precision=3,
    f64_precision=5,
    trim_float_zeros=False,
    date_rule=DateRule.NO_HOURS,
    number_fields=frozenset({"seed", "random"}),
    stripped_fields=frozenset({"is_ironman"}),
    field_shapes=_shapes(
        flags=Shape.OBJECT,
        hidden_flags=Shape.OBJECT,
        variables=Shape.OBJECT,
        **_COLOR_SHAPES
    ),
    extensions=(".eu4",),
    binary_magic=b"EU4bin",
    text_magic=b"EU4txt",
    zip_members=("meta", "gamestate", "ai"),
)

CK3 = FormatFlavor(
    game=Game.CK3,
    title="Crusader Kings III",
    encoding="utf-8",
    f32_rule=FloatRule.IEEE_754,
    f64_rule=FloatRule.FIXED_EPSILON,
    f32_precision=None,
    f64_precision=5,
    trim_float_zeros=True,
    date_rule=DateRule.NO_HOURS,
    number_fields=frozenset({"seed"}),
    field_shapes=_shapes(**_COLOR_SHAPES),
    extensions=(".ck3",),
)

IMPERATOR = FormatFlavor(
    game=Game.IMPERATOR,
    title="Imperator: Rome",
    encoding="utf-8",
    f32_rule=FloatRule.IEEE_754,
    f64_rule=FloatRule.FIXED_EPSILON,
    f32_precision=None,
    f64_precision=5,
    trim_float_zeros=True,
    date_rule=DateRule.NO_HOURS,
    number_fields=frozenset({"seed"}),
    field_shapes=_shapes(**_COLOR_SHAPES),
    extensions=(".rome",),
)

VIC3 = FormatFlavor(
    game=Game.VIC3,
    title="Victoria 3",
    encoding="utf-8",
    f32_rule=FloatRule.IEEE_754,
    f64_rule=FloatRule.FIXED_EPSILON,
    f32_precision=None,
    f64_precision=5,
    trim_float_zeros=True,
    date_rule=DateRule.QUARTER_DAY_HOURS,
    strict_dates=True,
    number_fields=frozenset({"seed"}),
    date_fields=frozenset({"real_date"}),
    scaled_fields=_VIC3_SCALED_FIELDS,
    stripped_fields=frozenset({"is_ironman"}),
    field_shapes=_shapes(**_COLOR_SHAPES),
    extensions=(".v3",),
)

EU5 = FormatFlavor(
    game=Game.EU5,
    title="Europa Universalis V",
    encoding="utf-8",
    f32_rule=FloatRule.IEEE_754,
    f64_rule=FloatRule.FIXED_EPSILON,
    f32_precision=None,
    f64_precision=5,
    trim_float_zeros=True,
    date_rule=DateRule.EVEN_HOURS,
    lookup_tokens=True,
    number_fields=frozenset({"seed"}),
    date_fields=frozenset({"date"}),
    stripped_fields=frozenset({"ironman"}),
    field_shapes=_shapes(**_COLOR_SHAPES),
    extensions=(".eu5",),
)

FLAVORS: Mapping[Game, FormatFlavor] = MappingProxyType({
    Game.EU4: EU4,
    Game.CK3: CK3,
    Game.IMPERATOR: IMPERATOR,
    Game.VIC3: VIC3,
    Game.EU5: EU5,
})


def flavor_for(game: Union[str, Game]) -> FormatFlavor:
    """Look up a flavor by Game member or its string value ("eu4", "vic3", ...)."""
    try:
        return FLAVORS[Game(game.lower() if isinstance(game, str) else game)]
    except ValueError:
        available = ", ".join(g.value for g in Game)
        raise ValueError("Unknown game '{}'. Available: {}".format(game, available)) from None


def flavor_for_path(path: Union[str, Path]) -> Optional[FormatFlavor]:
    """Guess a flavor from a save file's extension, or None."""
    suffix = Path(path).suffix.lower()
    for flavor in FLAVORS.values():
        if suffix in flavor.extensions:
            return flavor
    return None
