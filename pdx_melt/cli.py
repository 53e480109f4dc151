"""Command-line interface for PDX Melt.

WHY: Most melts are one-off conversions run from a terminal or a shell
script: melt this ironman save so I can read it, checksum these uploads,
rebuild the bundled token index after a patch. Each is one subcommand.

HOW: argparse with subparsers (melt, checksum, tokenize, serve). Melted
text streams to stdout (or --output) through the binary buffer, so the
command can be piped. Status and diagnostics go to stderr; logging is
configured once in main() with -v switching to DEBUG.

RULES:
- Melt output goes to stdout unless --output is given
- Status messages go to stderr (never stdout)
- Any PdxMeltError or OSError is a one-line diagnostic and exit code 1
- Python 3.9 compatible: no match/case
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pdx_melt import __version__
from pdx_melt.config import DEFAULT_GAME, MAX_INPUT_SIZE, SERVER_HOST, SERVER_PORT
from pdx_melt.container.save import SaveContainer
from pdx_melt.core.checksum import file_checksum
from pdx_melt.core.flavor import Game, flavor_for_path
from pdx_melt.core.melt import FailedResolveStrategy, MeltOptions
from pdx_melt.errors import PdxMeltError, UnsupportedContainerError
from pdx_melt.resolvers import NullResolver, build_index, load_resolver, parse_token_lines

logger = logging.getLogger(__name__)


def _status(msg: str) -> None:
    """Print a status message to stderr, flushed immediately."""
    print(msg, file=sys.stderr, flush=True)


def _parse_rewrites(drops: Optional[List[str]], sets: Optional[List[str]]) -> dict:
    rewrites: dict = {}
    for name in drops or []:
        rewrites[name] = None
    for pair in sets or []:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ValueError("--set expects FIELD=VALUE, got '{}'".format(pair))
        rewrites[name] = value
    return rewrites


def _cmd_melt(args: argparse.Namespace) -> int:
    options = MeltOptions(
        on_failed_resolve=FailedResolveStrategy(args.on_unknown),
        verbatim=args.verbatim,
        rewrites=_parse_rewrites(args.drop, args.set),
        max_input_size=args.max_size,
    )
    path = Path(args.input_file)
    game = args.game or (None if flavor_for_path(path) else DEFAULT_GAME or None)

    with SaveContainer.open(path, game=game, options=options) as container:
        if container.encoding.is_binary and not args.no_tokens:
            if container.flavor is None:
                raise UnsupportedContainerError(
                    "cannot tell which game {} belongs to; pass --game".format(path.name)
                )
            resolver = load_resolver(container.flavor.name, args.tokens)
        else:
            resolver = NullResolver()

        if args.output:
            with open(args.output, "wb") as sink:
                document = container.melt(sink, resolver, options)
            _status("Melted {} to {} ({} bytes)".format(path.name, args.output,
                                                        document.bytes_written))
        else:
            document = container.melt(sys.stdout.buffer, resolver, options)
            sys.stdout.buffer.flush()

    if document.unknown_tokens:
        _status("{} unknown token(s): {}".format(
            len(document.unknown_tokens),
            " ".join("0x{:04x}".format(t) for t in sorted(document.unknown_tokens)),
        ))
    return 0


def _cmd_checksum(args: argparse.Namespace) -> int:
    for name in args.files:
        print("{}  {}".format(file_checksum(name), name), flush=True)
    return 0


def _cmd_tokenize(args: argparse.Namespace) -> int:
    with open(args.table, "r", encoding="utf-8") as handle:
        pairs = list(parse_token_lines(handle))
    data = build_index(pairs)
    Path(args.output).write_bytes(data)
    _status("Wrote {} tokens ({} bytes) to {}".format(len(pairs), len(data), args.output))
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    from pdx_melt.server.app import run_api

    run_api(host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser; kept separate from main() for tests."""
    parser = argparse.ArgumentParser(
        prog="pdx-melt",
        description="Melt binary grand-strategy save files into plain text.",
    )
    parser.add_argument("--version", action="version", version="%(prog)s " + __version__)
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    melt = sub.add_parser("melt", help="Convert a binary save to plain text.")
    melt.add_argument("input_file", help="Path to the save file.")
    melt.add_argument(
        "--game",
        choices=[g.value for g in Game],
        default=None,
        help="Game the save belongs to (default: guessed from extension or magic).",
    )
    melt.add_argument("--tokens", default=None,
                      help="Token table (.txt) or index (.bin) to resolve field names.")
    melt.add_argument("--no-tokens", action="store_true",
                      help="Melt without a token table (pair with --on-unknown substitute).")
    melt.add_argument("-o", "--output", default=None,
                      help="Write melted text here instead of stdout.")
    melt.add_argument(
        "--on-unknown",
        choices=[s.value for s in FailedResolveStrategy],
        default=FailedResolveStrategy.IGNORE.value,
        help="What to do with tokens missing from the table (default: %(default)s).",
    )
    melt.add_argument("--verbatim", action="store_true",
                      help="Keep fields normally stripped (e.g. the ironman flag).")
    melt.add_argument("--drop", action="append", default=None, metavar="FIELD",
                      help="Drop a field and its value. Can be repeated.")
    melt.add_argument("--set", action="append", default=None, metavar="FIELD=VALUE",
                      help="Replace a field's value. Can be repeated.")
    melt.add_argument("--max-size", type=int, default=MAX_INPUT_SIZE,
                      help="Refuse inputs larger than this many bytes (default: %(default)s).")
    melt.set_defaults(func=_cmd_melt)

    checksum = sub.add_parser("checksum", help="Print content checksums of files.")
    checksum.add_argument("files", nargs="+", help="Files to checksum.")
    checksum.set_defaults(func=_cmd_checksum)

    tokenize = sub.add_parser("tokenize", help="Build a binary token index from a text table.")
    tokenize.add_argument("table", help="Token table, one '<token> <name>' per line.")
    tokenize.add_argument("output", help="Where to write the index (e.g. eu4.bin).")
    tokenize.set_defaults(func=_cmd_tokenize)

    serve = sub.add_parser("serve", help="Run the HTTP melt service.")
    serve.add_argument("--host", default=SERVER_HOST, help="Bind address (default: %(default)s).")
    serve.add_argument("--port", type=int, default=SERVER_PORT,
                       help="Bind port (default: %(default)s).")
    serve.set_defaults(func=_cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI; returns the process exit code.

    argv=None means use sys.argv. Explicit argv is for testing.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        return args.func(args)
    except (PdxMeltError, OSError, ValueError) as exc:
        _status("Error: {}".format(exc))
        return 1
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
