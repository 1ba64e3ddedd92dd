# vobsub_ocr/parsers/idx.py
# -*- coding: utf-8 -*-
"""
VobSub .idx index parser.

The .idx file is a small text file written by VobSub/mkvextract:

    # VobSub index file, v7 (do not modify this line!)
    size: 720x480
    org: 0, 0
    time offset: 0
    palette: 000000, f0f0f0, cccccc, 999999, ...   (16 colors)
    langidx: 0
    id: en, index: 0
    timestamp: 00:00:01:234, filepos: 000000000

Each `id:` line opens a stream block; the `timestamp:` lines that follow
belong to that stream.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import MalformedIndex
from .base import IdxEntry, StreamIndex

logger = logging.getLogger(__name__)

PALETTE_SIZE = 16
MAX_STREAMS = 32

_SIZE_RE = re.compile(r"^(\d+)\s*x\s*(\d+)$")
_ORG_RE = re.compile(r"^(-?\d+)\s*,\s*(-?\d+)$")
_ID_RE = re.compile(r"^([^,]*?)\s*,\s*index:\s*(\d+)$")
_TIMESTAMP_RE = re.compile(
    r"^(\d+):(\d{2}):(\d{2})[:.,](\d{3})\s*,\s*filepos:\s*([0-9a-fA-F]+)$"
)
_HEX_COLOR_RE = re.compile(r"^[0-9a-fA-F]{6}$")


@dataclass
class _StreamBlock:
    language: str
    index: int
    entries: list[IdxEntry] = field(default_factory=list)
    # source line of each entry, for error messages
    lines: list[int] = field(default_factory=list)


def load_idx(path: Path | str, stream_index: int | None = None) -> StreamIndex:
    """
    Read and parse an .idx file from disk.

    Args:
        path: Path to the .idx file
        stream_index: Stream to select (defaults to `langidx`)

    Returns:
        StreamIndex for the selected stream
    """
    path = Path(path)
    with open(path, encoding="utf-8", errors="replace") as f:
        text = f.read()
    logger.debug(f"Parsing index {path.name} ({len(text)} chars)")
    return parse_idx(text, stream_index=stream_index)


def parse_idx(text: str, stream_index: int | None = None) -> StreamIndex:
    """
    Parse .idx content.

    Args:
        text: Full contents of the .idx file
        stream_index: Stream to select. When None, the `langidx` stream is
            used, falling back to the first stream that has entries.

    Returns:
        StreamIndex with strictly increasing entries

    Raises:
        MalformedIndex: if palette, size or entries are missing or invalid
    """
    size: tuple[int, int] | None = None
    palette: list[tuple[int, int, int]] | None = None
    origin = (0, 0)
    time_offset_ms = 0
    langidx: int | None = None
    streams: dict[int, _StreamBlock] = {}
    current: _StreamBlock | None = None

    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()

        if key == "size":
            match = _SIZE_RE.match(value)
            if not match:
                raise MalformedIndex(f"invalid size {value!r}", line_number)
            size = (int(match.group(1)), int(match.group(2)))
            if size[0] <= 0 or size[1] <= 0:
                raise MalformedIndex(f"invalid size {value!r}", line_number)

        elif key == "org":
            match = _ORG_RE.match(value)
            if not match:
                raise MalformedIndex(f"invalid org {value!r}", line_number)
            origin = (int(match.group(1)), int(match.group(2)))

        elif key == "palette":
            palette = _parse_palette(value, line_number)

        elif key == "time offset":
            try:
                time_offset_ms = int(value)
            except ValueError:
                raise MalformedIndex(
                    f"invalid time offset {value!r}", line_number
                ) from None

        elif key == "langidx":
            try:
                langidx = int(value)
            except ValueError:
                raise MalformedIndex(f"invalid langidx {value!r}", line_number) from None

        elif key == "id":
            match = _ID_RE.match(value)
            if not match:
                raise MalformedIndex(f"invalid stream id {value!r}", line_number)
            index = int(match.group(2))
            if index >= MAX_STREAMS:
                raise MalformedIndex(f"stream index {index} out of range", line_number)
            current = streams.setdefault(index, _StreamBlock(match.group(1), index))

        elif key == "timestamp":
            entry = _parse_timestamp(value, line_number)
            if current is None:
                current = streams.setdefault(0, _StreamBlock("", 0))
            current.entries.append(entry)
            current.lines.append(line_number)

    if palette is None:
        raise MalformedIndex("missing palette")
    if size is None:
        raise MalformedIndex("missing size")

    block = _select_stream(streams, stream_index, langidx)
    entries = _apply_offset(block, time_offset_ms)

    logger.info(
        f"Index: stream {block.index} ({block.language or '??'}), "
        f"{len(entries)} entries, frame {size[0]}x{size[1]}"
    )

    return StreamIndex(
        entries=tuple(entries),
        palette=tuple(palette),
        frame_width=size[0],
        frame_height=size[1],
        language=block.language,
        stream_index=block.index,
        origin=origin,
        time_offset_ms=time_offset_ms,
    )


def _parse_palette(value: str, line_number: int) -> list[tuple[int, int, int]]:
    colors = [c.strip() for c in value.split(",")]
    if len(colors) != PALETTE_SIZE:
        raise MalformedIndex(
            f"palette has {len(colors)} colors, expected {PALETTE_SIZE}", line_number
        )
    palette = []
    for color in colors:
        if not _HEX_COLOR_RE.match(color):
            raise MalformedIndex(f"invalid palette color {color!r}", line_number)
        rgb = int(color, 16)
        palette.append(((rgb >> 16) & 0xFF, (rgb >> 8) & 0xFF, rgb & 0xFF))
    return palette


def _parse_timestamp(value: str, line_number: int) -> IdxEntry:
    match = _TIMESTAMP_RE.match(value)
    if not match:
        raise MalformedIndex(f"invalid timestamp entry {value!r}", line_number)
    hours, minutes, seconds, millis, filepos = match.groups()
    if int(minutes) >= 60 or int(seconds) >= 60:
        raise MalformedIndex(f"invalid timestamp entry {value!r}", line_number)
    timestamp_ms = (
        int(hours) * 3600000 + int(minutes) * 60000 + int(seconds) * 1000 + int(millis)
    )
    return IdxEntry(timestamp_ms=timestamp_ms, file_position=int(filepos, 16))


def _select_stream(
    streams: dict[int, _StreamBlock],
    stream_index: int | None,
    langidx: int | None,
) -> _StreamBlock:
    if stream_index is not None:
        block = streams.get(stream_index)
        if block is None or not block.entries:
            raise MalformedIndex(f"stream {stream_index} has no timestamp entries")
        return block

    if langidx is not None:
        block = streams.get(langidx)
        if block is not None and block.entries:
            return block
        logger.debug(f"langidx {langidx} has no entries, using first non-empty stream")

    for index in sorted(streams):
        if streams[index].entries:
            return streams[index]

    raise MalformedIndex("no timestamp entries")


def _apply_offset(block: _StreamBlock, time_offset_ms: int) -> list[IdxEntry]:
    entries: list[IdxEntry] = []
    for entry, line_number in zip(block.entries, block.lines):
        timestamp_ms = entry.timestamp_ms + time_offset_ms
        if timestamp_ms < 0:
            raise MalformedIndex(
                f"timestamp becomes negative after time offset ({timestamp_ms} ms)",
                line_number,
            )
        if entries and timestamp_ms <= entries[-1].timestamp_ms:
            raise MalformedIndex(
                "timestamps are not strictly increasing", line_number
            )
        entries.append(IdxEntry(timestamp_ms, entry.file_position))
    return entries
