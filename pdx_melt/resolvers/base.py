"""Resolver protocol and token-table parsing shared by the variants.

WHY: Binary saves replace every field name with a 16-bit token. Which
names those tokens stand for is not shipped with the games, so tables
come from several places: a compact index bundled at build time, a
path named by the environment, or an ad-hoc file. The melt engine must
not care which.

HOW: TokenResolver is a structural Protocol with a single method.
Variants are independent classes with no shared base. They only agree
on the table text format parsed here.
StringLookup is the optional second capability: resolvers that also
hold a save's string table answer lookup(index) for EU5 lookup tokens.

RULES:
- Lines are ``<token> <name>``; token is hexadecimal, ``0x`` optional
- Blank lines and lines starting with ``#`` are ignored
- A token outside the u16 range or a line without a name is an error
- When a token appears twice, the last line wins
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional, Protocol, Tuple, runtime_checkable

from pdx_melt.errors import TokenTableError

MAX_TOKEN = 0xFFFF


@runtime_checkable
class TokenResolver(Protocol):
    """Maps a 16-bit token to its field name, or None when unknown."""

    def resolve(self, token: int) -> Optional[str]:
        ...


@runtime_checkable
class StringLookup(Protocol):
    """Maps a string-lookup index to its string, or None when unknown."""

    def lookup(self, index: int) -> Optional[str]:
        ...


def parse_token(text: str) -> int:
    """Parse a hexadecimal token number, with or without a ``0x`` prefix."""
    text = text.strip()
    digits = text[2:] if text.lower().startswith("0x") else text
    value = int(digits, 16)
    if not 0 <= value <= MAX_TOKEN:
        raise ValueError("token {} is outside the 16-bit range".format(text))
    return value


def parse_token_lines(lines: Iterable[str]) -> Iterator[Tuple[int, str]]:
    """Yield (token, name) pairs from token-table lines."""
    for number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            raise TokenTableError("expected '<token> <name>', got {!r}".format(line), number)
        try:
            token = parse_token(parts[0])
        except ValueError as exc:
            raise TokenTableError(str(exc), number) from exc
        yield token, parts[1].strip()
