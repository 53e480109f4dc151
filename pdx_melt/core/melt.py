"""Melt engine: binary tape in, native plain text out.

WHY: Binary saves are compact and fast for the game, but every external
tool (editors, diffing, the text parsers of third-party analysers) wants
the plain-text format the game writes when ironman is off. The melt must
be byte-for-byte what the game would have written, so the engine cannot
pretty-print on its own terms.

HOW: Melter walks the tape once. Token ids go through the resolver,
scalars through the flavor's decode and format rules, and every event
goes to a TextWriter that decides container shapes and layout. A small
amount of look-behind state (the last resolved field name) drives the
per-field rules: number fields, date fields, Vic3 scaled fields and
rewrites.

RULES:
- The failed-resolve policy is chosen once per melt call
- IGNORE drops an unknown key together with its value, drops an unknown
  bare element, and writes the placeholder where a value is required
- SUBSTITUTE writes ``__unknown_0x<hex>`` (lower-case hex) everywhere
- An unresolved EU5 string lookup writes ``__id_0x<hex>`` under IGNORE
  and SUBSTITUTE alike
- An invalid known date aborts an ERROR-policy melt only for strict-date
  flavors; elsewhere it prints as the integer
- Unless verbatim, the flavor's stripped fields vanish with their value
- Partial output already flushed to the sink is never rolled back
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional, Set

from pdx_melt.config import MAX_INPUT_SIZE
from pdx_melt.core.flavor import FIXED_POINT_SCALE, FormatFlavor, Shape
from pdx_melt.core.tape import TapeToken, TokenKind
from pdx_melt.core.writer import TextWriter
from pdx_melt.errors import InvalidDateError, MalformedInputError, UnresolvedTokenError
from pdx_melt.resolvers.base import StringLookup

logger = logging.getLogger(__name__)

UNKNOWN_TOKEN_FORMAT = "__unknown_0x{:x}"
UNKNOWN_LOOKUP_FORMAT = "__id_0x{:x}"


class FailedResolveStrategy(str, Enum):
    """What to do with a token the resolver has no name for."""

    ERROR = "error"
    IGNORE = "ignore"
    SUBSTITUTE = "substitute"


@dataclass(frozen=True)
class MeltOptions:
    """Per-call melt configuration.

    Attributes:
        on_failed_resolve: Policy for unknown tokens.
        verbatim: Keep the fields the flavor would otherwise strip.
        rewrites: Extra field rewrites: field name to replacement value
                  text, or None to drop the field and its value.
        max_input_size: Size ceiling enforced by SaveContainer.
    """

    on_failed_resolve: FailedResolveStrategy = FailedResolveStrategy.IGNORE
    verbatim: bool = False
    rewrites: Mapping[str, Optional[str]] = field(default_factory=lambda: MappingProxyType({}))
    max_input_size: int = MAX_INPUT_SIZE

    def field_rewrites(self, flavor: FormatFlavor) -> Mapping[str, Optional[str]]:
        rules = {} if self.verbatim else dict.fromkeys(flavor.stripped_fields)
        rules.update(self.rewrites)
        return MappingProxyType(rules)


@dataclass
class MeltedDocument:
    """What a melt produced besides the text itself."""

    unknown_tokens: Set[int] = field(default_factory=set)
    bytes_written: int = 0


class Melter:
    """Melts one tape, possibly in several runs (header block, then body).

    Each call to run() writes to its own sink and stops either at the end
    of the tape or, in header mode, right after the first top-level
    container closes. The same MeltedDocument accumulates across runs.
    """

    def __init__(self, tape, resolver, flavor: FormatFlavor,
                 options: Optional[MeltOptions] = None,
                 document: Optional[MeltedDocument] = None) -> None:
        self._tape = tape
        self._resolver = resolver
        self._lookup = resolver.lookup if isinstance(resolver, StringLookup) else None
        self._flavor = flavor
        self._options = options or MeltOptions()
        self._rewrites = self._options.field_rewrites(flavor)
        self.document = document if document is not None else MeltedDocument()

    def run(self, sink, header: bool = False) -> MeltedDocument:
        """Melt tokens into ``sink`` until the tape (or header block) ends."""
        start = self.document.bytes_written
        writer = TextWriter(sink, bytes_written=start)
        try:
            has_read = self._run(writer, header)
            writer.finish(trailing_newline=has_read)
        finally:
            self.document.bytes_written = writer.bytes_written
        logger.debug(
            "Melted %d bytes (%s game, %d unknown tokens so far)",
            writer.bytes_written - start, self._flavor.name, len(self.document.unknown_tokens),
        )
        return self.document

    def _run(self, writer: TextWriter, header: bool) -> bool:
        tape = self._tape
        flavor = self._flavor
        has_read = False
        known_number = False
        known_date = False
        scale_queued = False
        scale_stack: List[bool] = []

        while True:
            token = tape.next()
            if token is None:
                break
            has_read = True
            kind = token.kind

            if kind is TokenKind.OPEN:
                scale_stack.append(scale_queued)
                scale_queued = False
                writer.write_start()
            elif kind is TokenKind.CLOSE:
                if not writer.depth:
                    raise MalformedInputError("unbalanced container close", token.offset)
                scale_stack.pop()
                writer.write_end()
                if header and not writer.depth:
                    break
            elif kind is TokenKind.EQUAL:
                try:
                    writer.write_operator()
                except ValueError as exc:
                    raise MalformedInputError(str(exc), token.offset) from exc
            elif kind is TokenKind.ID:
                name = self._resolver.resolve(token.value)
                known_number = known_date = scale_queued = False
                if name is None:
                    self._unresolved(token, writer)
                    continue
                if writer.expecting_key() and name in self._rewrites:
                    self._rewrite(name, writer)
                    continue
                known_number = name in flavor.number_fields
                known_date = name in flavor.date_fields
                scale_queued = name in flavor.scaled_fields
                writer.write_raw(flavor.encode_name(name))
                writer.hint_next_container(flavor.shape_hint(name))
            elif kind is TokenKind.I32:
                writer.write_raw(self._render_i32(token, known_number, known_date, writer))
                known_number = known_date = False
            elif kind is TokenKind.LOOKUP:
                self._write_lookup(token, writer)
                known_number = known_date = False
            elif kind is TokenKind.F64:
                scaled = scale_queued or (scale_stack[-1] if scale_stack else False)
                scale_queued = False
                if scaled:
                    value = flavor.decode_f64(token.value)
                    text = str(round(value * FIXED_POINT_SCALE))
                else:
                    text = flavor.format_f64(flavor.decode_f64(token.value))
                writer.write_raw(text.encode("ascii"))
                known_number = known_date = False
            else:
                self._scalar(token, writer)
                known_number = known_date = False

        if writer.depth:
            raise MalformedInputError("unterminated container at end of tape", tape.position)
        return has_read

    # -- scalars -----------------------------------------------------------

    def _render_i32(self, token: TapeToken, known_number: bool, known_date: bool,
                    writer: TextWriter) -> bytes:
        value = token.value
        if known_number or writer.current_hint is Shape.COLOR:
            return str(value).encode("ascii")
        if known_date:
            date = self._flavor.date_from_binary(value)
            if date is None:
                if (self._flavor.strict_dates
                        and self._options.on_failed_resolve is FailedResolveStrategy.ERROR):
                    raise InvalidDateError(value, token.offset)
                return str(value).encode("ascii")
            return date.game_fmt().encode("ascii")
        date = self._flavor.date_from_binary(value, heuristic=True)
        if date is not None:
            return date.game_fmt().encode("ascii")
        return str(value).encode("ascii")

    def _scalar(self, token: TapeToken, writer: TextWriter) -> None:
        kind = token.kind
        if kind is TokenKind.QUOTED:
            writer.write_quoted(token.value)
        elif kind is TokenKind.UNQUOTED:
            writer.write_unquoted(token.value)
        elif kind is TokenKind.BOOL:
            writer.write_raw(b"yes" if token.value else b"no")
        elif kind is TokenKind.F32:
            flavor = self._flavor
            writer.write_raw(flavor.format_f32(flavor.decode_f32(token.value)).encode("ascii"))
        elif kind is TokenKind.RGB:
            writer.write_rgb(token.value)
        else:
            # U32, I64, U64
            writer.write_raw(str(token.value).encode("ascii"))

    # -- field policies ----------------------------------------------------

    def _unresolved(self, token: TapeToken, writer: TextWriter) -> None:
        policy = self._options.on_failed_resolve
        if policy is FailedResolveStrategy.ERROR:
            raise UnresolvedTokenError(token.value, token.offset)

        if policy is FailedResolveStrategy.IGNORE and not writer.at_value():
            following = self._tape.peek()
            if following is not None and following.kind is TokenKind.EQUAL:
                self._tape.next()
                self._skip_value()
            elif following is not None and following.kind is TokenKind.OPEN:
                self._tape.next()
                self._tape.skip_container()
            logger.debug("Dropped unknown token 0x%04x at %d", token.value, token.offset)
            return

        self.document.unknown_tokens.add(token.value)
        writer.write_raw(UNKNOWN_TOKEN_FORMAT.format(token.value).encode("ascii"))

    def _write_lookup(self, token: TapeToken, writer: TextWriter) -> None:
        index = token.value
        text = self._lookup(index) if self._lookup is not None else None
        if text is not None:
            writer.write_unquoted(self._flavor.encode_name(text))
            return
        if self._options.on_failed_resolve is FailedResolveStrategy.ERROR:
            raise UnresolvedTokenError(index, token.offset)
        self.document.unknown_tokens.add(index)
        writer.write_unquoted(UNKNOWN_LOOKUP_FORMAT.format(index).encode("ascii"))

    def _skip_value(self) -> None:
        value = self._tape.read()
        if value.kind is TokenKind.OPEN:
            self._tape.skip_container()

    def _rewrite(self, name: str, writer: TextWriter) -> None:
        replacement = self._rewrites[name]
        following = self._tape.peek()
        if following is None or following.kind is not TokenKind.EQUAL:
            if replacement is None and following is not None and following.kind is TokenKind.OPEN:
                self._tape.next()
                self._tape.skip_container()
            elif replacement is not None:
                writer.write_raw(self._flavor.encode_name(name))
            return

        self._tape.next()
        self._skip_value()
        if replacement is None:
            return
        writer.write_raw(self._flavor.encode_name(name))
        writer.write_operator()
        writer.write_raw(replacement.encode(self._flavor.encoding))


def melt(tape, resolver, flavor: FormatFlavor, options: Optional[MeltOptions] = None,
         sink=None) -> MeltedDocument:
    """Melt a whole tape into ``sink`` and report what was produced."""
    if sink is None:
        raise ValueError("melt() needs a sink with a write(bytes) method")
    return Melter(tape, resolver, flavor, options).run(sink)
