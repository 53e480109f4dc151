"""Resolver seeded from a token table named by the environment.

WHY: Deployments that receive token tables out of band (a secrets mount,
a build artifact) point at them with PDX_TOKENS_<GAME> or
PDX_TOKENS_DIR. The table is read once per process.

HOW: Parses the table into a dense tuple indexed by token, so resolve()
is a bounds check and an index.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from pdx_melt.config import token_table_env_var, token_table_path
from pdx_melt.errors import TokenTableError
from pdx_melt.resolvers.base import parse_token_lines

logger = logging.getLogger(__name__)


class EnvironmentSeededResolver:
    """Dense-tuple resolver built from a token table."""

    def __init__(self, names: Tuple[Optional[str], ...], source: Optional[Path] = None) -> None:
        self._names = names
        self.source = source

    def __len__(self) -> int:
        return sum(1 for name in self._names if name is not None)

    def resolve(self, token: int) -> Optional[str]:
        if token < len(self._names):
            return self._names[token]
        return None

    @classmethod
    def from_lines(cls, lines: Iterable[str], source: Optional[Path] = None) -> "EnvironmentSeededResolver":
        table = dict(parse_token_lines(lines))
        names: List[Optional[str]] = [None] * (max(table) + 1 if table else 0)
        for token, name in table.items():
            names[token] = name
        return cls(tuple(names), source)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "EnvironmentSeededResolver":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                resolver = cls.from_lines(handle, path)
        except OSError as exc:
            raise TokenTableError("unable to read token table {}: {}".format(path, exc)) from exc
        except UnicodeDecodeError as exc:
            raise TokenTableError("token table {} is not UTF-8: {}".format(path, exc)) from exc
        logger.info("Loaded %d tokens from %s", len(resolver), path)
        return resolver

    @classmethod
    def from_environment(cls, game: str) -> "EnvironmentSeededResolver":
        """Build from PDX_TOKENS_<GAME> or PDX_TOKENS_DIR/<game>.txt.

        Raises TokenTableError when neither variable is set.
        """
        path = token_table_path(game)
        if path is None:
            raise TokenTableError(
                "no token table configured for '{}': set {} or PDX_TOKENS_DIR".format(
                    game, token_table_env_var(game)
                )
            )
        return cls.from_path(path)
