"""Resolver that adds an EU5 string-lookup table to a token resolver.

WHY: EU5 binary saves refer to some strings by a u8/u16 index into a
string table kept apart from the tape. Field names still come from the
game's token table, so the string table rides along with whichever
resolver already serves tokens.

HOW: StringLookupResolver delegates resolve() to the wrapped resolver
and answers lookup() from a tuple indexed by position.

RULES:
- Index i is the i-th string of the table, counting from 0
- An index past the end of the table is unknown (None)
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from pdx_melt.resolvers.base import TokenResolver


class StringLookupResolver:
    """Token resolver plus string table."""

    def __init__(self, resolver: TokenResolver, strings: Iterable[str]) -> None:
        self._resolver = resolver
        self._strings: Tuple[str, ...] = tuple(strings)

    def __len__(self) -> int:
        return len(self._strings)

    def resolve(self, token: int) -> Optional[str]:
        return self._resolver.resolve(token)

    def lookup(self, index: int) -> Optional[str]:
        if 0 <= index < len(self._strings):
            return self._strings[index]
        return None
