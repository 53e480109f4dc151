"""Construct-once resolver factory used by the CLI and HTTP server.

WHY: Building a resolver reads and decodes a table of tens of thousands
of names. Servers melt many saves per process and must not pay that per
request.

HOW: load_resolver() is wrapped in functools.lru_cache, keyed by game
and explicit path. Sources are tried in a fixed order.

RULES:
- Order: explicit path, then environment, then bundled index
- An explicit path ending in .bin is read as an embedded index,
  anything else as a text table
- No source at all is a TokenTableError naming what to configure
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pdx_melt.config import token_table_env_var, token_table_path
from pdx_melt.core.flavor import flavor_for
from pdx_melt.errors import TokenTableError
from pdx_melt.resolvers.base import TokenResolver
from pdx_melt.resolvers.embedded import EmbeddedIndexResolver, package_index_path
from pdx_melt.resolvers.environment import EnvironmentSeededResolver
from pdx_melt.resolvers.text_file import TextFileResolver

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def load_resolver(game: str, tokens_path: Optional[str] = None) -> TokenResolver:
    """Return the shared resolver for ``game``."""
    name = flavor_for(game).name

    if tokens_path:
        if Path(tokens_path).suffix.lower() == ".bin":
            return EmbeddedIndexResolver.from_file(tokens_path)
        return TextFileResolver(tokens_path)

    if token_table_path(name) is not None:
        return EnvironmentSeededResolver.from_environment(name)

    if package_index_path(name).is_file():
        return EmbeddedIndexResolver.from_package(name)

    raise TokenTableError(
        "no token table for '{}': pass --tokens, set {} or PDX_TOKENS_DIR".format(
            name, token_table_env_var(name)
        )
    )
