"""Resolver over a UTF-8 token table file."""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

from pdx_melt.errors import TokenTableError
from pdx_melt.resolvers.base import parse_token_lines

logger = logging.getLogger(__name__)


class TextFileResolver:
    """Reads a ``<token> <name>`` table once, at construction.

    Backed by a read-only mapping, which suits sparse or ad-hoc tables
    (a handful of tokens found while reverse-engineering a patch).
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                self._names = _freeze(handle)
        except OSError as exc:
            raise TokenTableError("unable to read token table {}: {}".format(path, exc)) from exc
        except UnicodeDecodeError as exc:
            raise TokenTableError("token table {} is not UTF-8: {}".format(path, exc)) from exc
        logger.debug("Loaded %d tokens from %s", len(self._names), self.path)

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "TextFileResolver":
        resolver = cls.__new__(cls)
        resolver.path = None
        resolver._names = _freeze(lines)
        return resolver

    def __len__(self) -> int:
        return len(self._names)

    def resolve(self, token: int) -> Optional[str]:
        return self._names.get(token)


def _freeze(lines: Iterable[str]) -> Mapping[int, str]:
    return MappingProxyType(dict(parse_token_lines(lines)))
