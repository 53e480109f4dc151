"""Exception hierarchy for melting and checksumming saves.

WHY: Callers (CLI, HTTP API, batch jobs) need to tell apart a corrupt
save, an unsupported archive, a policy-driven abort on an unknown token
and a broken output pipe. One base class lets them catch everything from
this package, while subclasses carry the context needed to locate the
faulting region of a multi-megabyte file without re-scanning it.

HOW: Every error derives from PdxMeltError. Positional context (byte
offset, token position, bytes written) is stored as attributes and
included in the message.

RULES:
- No error is retried internally: all conditions are deterministic
- Partial output already written to a sink is never rolled back
- Errors always carry an offset/position where one exists
"""

from __future__ import annotations

from typing import Optional


class PdxMeltError(Exception):
    """Base class for all errors raised by pdx_melt."""


class MalformedInputError(PdxMeltError):
    """The tape is structurally corrupt or truncated."""

    def __init__(self, message: str, offset: Optional[int] = None) -> None:
        self.offset = offset
        if offset is not None:
            message = "{} (at byte offset {})".format(message, offset)
        super().__init__(message)


class InvalidDateError(MalformedInputError):
    """A field known to hold a date carried an undecodable value."""

    def __init__(self, value: int, offset: Optional[int] = None) -> None:
        self.value = value
        super().__init__("invalid binary date: {}".format(value), offset)


class UnresolvedTokenError(PdxMeltError):
    """A token had no name under the ERROR resolution policy."""

    def __init__(self, token: int, position: Optional[int] = None) -> None:
        self.token = token
        self.position = position
        message = "unknown binary token 0x{:04x}".format(token)
        if position is not None:
            message = "{} at position {}".format(message, position)
        super().__init__(message)


class UnsupportedContainerError(PdxMeltError):
    """The file is not a recognized save container or uses an unknown codec."""


class InputTooLargeError(PdxMeltError):
    """The input exceeds the configured size ceiling."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(
            "input of {} bytes exceeds the configured ceiling of {} bytes".format(size, limit)
        )


class SinkFailureError(PdxMeltError):
    """Writing melted output to the caller's sink failed."""

    def __init__(self, bytes_written: int, cause: BaseException) -> None:
        self.bytes_written = bytes_written
        self.cause = cause
        super().__init__(
            "output sink failed after {} bytes: {}".format(bytes_written, cause)
        )


class ChecksumSourceError(PdxMeltError):
    """Reading the source while computing a checksum failed."""

    def __init__(self, offset: int, cause: BaseException) -> None:
        self.offset = offset
        self.cause = cause
        super().__init__(
            "read failed at byte offset {} while checksumming: {}".format(offset, cause)
        )


class TokenTableError(PdxMeltError):
    """A token table (text or embedded index) could not be loaded."""

    def __init__(self, message: str, line: Optional[int] = None) -> None:
        self.line = line
        if line is not None:
            message = "{} (line {})".format(message, line)
        super().__init__(message)
