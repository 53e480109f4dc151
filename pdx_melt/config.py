"""Configuration constants, size limits and .env loading.

WHY: Token tables cannot be redistributed with the package, so their
location has to come from the deployment environment. The input-size
ceiling and server settings are operational knobs that differ between a
desktop CLI run and a shared upload service.

HOW: python-dotenv loads the .env file on import. Constants are
module-level values overridable through environment variables. The
token-table helpers return paths without reading anything.

RULES:
- Every default can be overridden via an environment variable
- PDX_TOKENS_<GAME> names a token table for one game and wins over
  PDX_TOKENS_DIR/<game>.txt
- Missing token configuration is not an error here; the resolver
  loader decides what to do
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()

# ---------------------------------------------------------------------------
# Input limits
# ---------------------------------------------------------------------------

DEFAULT_MAX_INPUT_SIZE = 512 * 1024 * 1024
"""Largest save (compressed or uncompressed member) accepted by default."""

MAX_INPUT_SIZE = int(os.getenv("PDX_MELT_MAX_INPUT_SIZE", str(DEFAULT_MAX_INPUT_SIZE)))

CHUNK_SIZE = 64 * 1024
"""Read/flush granularity for streaming checksum and melt output."""

# ---------------------------------------------------------------------------
# Token tables
# ---------------------------------------------------------------------------

TOKENS_DIR = os.getenv("PDX_TOKENS_DIR", "")
TOKENS_ENV_PREFIX = "PDX_TOKENS_"

DEFAULT_GAME = os.getenv("PDX_MELT_DEFAULT_GAME", "")


def token_table_env_var(game: str) -> str:
    """Name of the environment variable that points at a game's token table."""
    return "{}{}".format(TOKENS_ENV_PREFIX, game.upper())


def token_table_path(game: str) -> Optional[Path]:
    """Locate the token table for a game from the environment.

    WHY: The seeded resolver is built from a table whose location is a
    deployment concern.

    HOW: Checks PDX_TOKENS_<GAME> first, then PDX_TOKENS_DIR/<game>.txt.

    RULES:
    - Returns None when neither is configured
    - Does not check that the file exists
    """
    explicit = os.getenv(token_table_env_var(game), "").strip()
    if explicit:
        return Path(explicit)
    tokens_dir = os.getenv("PDX_TOKENS_DIR", TOKENS_DIR).strip()
    if tokens_dir:
        return Path(tokens_dir) / "{}.txt".format(game.lower())
    return None


# ---------------------------------------------------------------------------
# HTTP server
# ---------------------------------------------------------------------------

SERVER_HOST = os.getenv("PDX_MELT_HOST", "127.0.0.1")
SERVER_PORT = int(os.getenv("PDX_MELT_PORT", "8080"))
