"""Save containers: zip archives, SAV headers and file magic around a body."""

from __future__ import annotations

from pdx_melt.container.header import SaveHeader, SaveHeaderKind
from pdx_melt.container.save import ContainerKind, Encoding, SaveContainer, TapeView

__all__ = [
    "ContainerKind",
    "Encoding",
    "SaveContainer",
    "SaveHeader",
    "SaveHeaderKind",
    "TapeView",
]
