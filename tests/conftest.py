"""Shared test fixtures for the pdx_melt test suite.

Tape building helpers and the token table live in tapes.py; this module
turns them into fixtures.
"""

from __future__ import annotations

import pytest

from pdx_melt.resolvers import TextFileResolver, load_resolver
from tapes import TOKEN_TABLE


@pytest.fixture
def resolver():
    """Resolver over the test token table."""
    return TextFileResolver.from_lines(TOKEN_TABLE.splitlines())


@pytest.fixture
def token_table_file(tmp_path):
    """The test token table written to disk."""
    path = tmp_path / "tokens.txt"
    path.write_text(TOKEN_TABLE, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clear_resolver_cache():
    """load_resolver caches per process; isolate tests from each other."""
    load_resolver.cache_clear()
    yield
    load_resolver.cache_clear()
