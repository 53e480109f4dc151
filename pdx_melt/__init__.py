"""PDX Melt: binary save files to native plain text.

WHY: Games on the shared grand-strategy engine write ironman and
compressed saves as binary token streams. Tools, editors and analysers
all expect the plain-text format the engine writes otherwise. This
package converts the first into the second, byte-for-byte, and computes
a stable content checksum used to deduplicate uploads.

HOW: Four-stage pipeline. The container layer unwraps zip archives and
file headers, the tape reader streams binary tokens, the melt engine
resolves token ids to names and renders scalars under the game's
flavor, and the text writer lays out containers the way the engine does.

RULES:
- Melt output streams to a caller-supplied sink; never buffered whole
- Token tables are configuration, never hardcoded
- Every error raised derives from pdx_melt.errors.PdxMeltError
"""

__version__ = "0.1.0"
