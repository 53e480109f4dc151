"""Core melt modules.

WHY: The core package is the stable heart of the melter: the tape
model, the per-game flavors, the melt engine with its text writer, and
the content checksum. Container and surface layers build on it.

HOW: tape.py defines tokens and the streaming binary reader, dates.py
and flavor.py hold the per-game decode rules, melt.py walks a tape and
writer.py renders it, checksum.py hashes raw bytes.

RULES:
- Nothing in core knows about files, archives or HTTP
- Flavors and resolvers are read, never mutated, by the engine
"""
