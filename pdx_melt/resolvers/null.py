"""Resolver that knows no tokens."""

from __future__ import annotations

from typing import Optional


class NullResolver:
    """Resolves nothing. Pair with SUBSTITUTE to inspect a save's raw shape."""

    def resolve(self, token: int) -> Optional[str]:
        return None
