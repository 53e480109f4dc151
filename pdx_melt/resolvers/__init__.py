"""Token resolvers: 16-bit binary token to field name.

Every variant satisfies the TokenResolver protocol. load_resolver() picks
and caches one per game for long-running callers.
"""

from __future__ import annotations

from pdx_melt.resolvers.base import StringLookup, TokenResolver, parse_token_lines
from pdx_melt.resolvers.embedded import EmbeddedIndexResolver, build_index
from pdx_melt.resolvers.environment import EnvironmentSeededResolver
from pdx_melt.resolvers.loader import load_resolver
from pdx_melt.resolvers.lookup import StringLookupResolver
from pdx_melt.resolvers.null import NullResolver
from pdx_melt.resolvers.text_file import TextFileResolver

__all__ = [
    "EmbeddedIndexResolver",
    "EnvironmentSeededResolver",
    "NullResolver",
    "StringLookup",
    "StringLookupResolver",
    "TextFileResolver",
    "TokenResolver",
    "build_index",
    "load_resolver",
    "parse_token_lines",
]
