"""Streaming content checksum of raw save bytes.

WHY: Uploaded saves are deduplicated by content. The checksum must be
identical whether the bytes arrive in one piece, in 64KB reads from disk
or in whatever chunks a multipart upload delivers, and it must not
require holding the file in memory.

HOW: A keyed BLAKE2b-256 hash (hashlib) absorbs bytes incrementally.
The key is four fixed 64-bit constants, so digests are stable across
processes and releases. The final 32-byte digest is rendered as
URL-safe base64 (44 characters, with padding).

RULES:
- Chunk boundaries never change the digest
- finish() consumes the checksum; append() after finish() is an error
- Read failures while streaming surface as ChecksumSourceError with
  the byte offset reached so far
"""

from __future__ import annotations

import base64
import hashlib
import logging
import struct
from pathlib import Path
from typing import BinaryIO, Union

from pdx_melt.config import CHUNK_SIZE
from pdx_melt.errors import ChecksumSourceError

logger = logging.getLogger(__name__)

CHECKSUM_KEY = struct.pack("<4Q", 10619863, 6620830889, 80630964769, 228204732751)
DIGEST_SIZE = 32


class ContentChecksum:
    """Incremental checksum: append() any number of chunks, then finish()."""

    def __init__(self) -> None:
        self._hasher = hashlib.blake2b(key=CHECKSUM_KEY, digest_size=DIGEST_SIZE)
        self._finished = False
        self.bytes_seen = 0

    def append(self, data: bytes) -> None:
        if self._finished:
            raise ValueError("checksum already finished")
        self._hasher.update(data)
        self.bytes_seen += len(data)

    def finish(self) -> str:
        """Return the URL-safe base64 digest and close the checksum."""
        if self._finished:
            raise ValueError("checksum already finished")
        self._finished = True
        return base64.urlsafe_b64encode(self._hasher.digest()).decode("ascii")


class ChecksumReader:
    """Wraps a binary stream and hashes bytes as a consumer reads them.

    Lets one pass over an upload feed both the melt and the checksum.
    """

    def __init__(self, stream: BinaryIO, checksum: ContentChecksum) -> None:
        self._stream = stream
        self.checksum = checksum

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        if data:
            self.checksum.append(data)
        return data

    def readable(self) -> bool:
        return True


def checksum_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """Checksum everything left in ``stream``, reading fixed-size chunks."""
    checksum = ContentChecksum()
    while True:
        try:
            chunk = stream.read(chunk_size)
        except OSError as exc:
            raise ChecksumSourceError(checksum.bytes_seen, exc) from exc
        if not chunk:
            break
        checksum.append(chunk)
    return checksum.finish()


def file_checksum(path: Union[str, Path], chunk_size: int = CHUNK_SIZE) -> str:
    """Checksum a file on disk without loading it whole."""
    try:
        handle = open(path, "rb")
    except OSError as exc:
        raise ChecksumSourceError(0, exc) from exc
    with handle:
        digest = checksum_stream(handle, chunk_size)
    logger.debug("Checksummed %s: %s", path, digest)
    return digest
