# vobsub_ocr/parsers/base.py
# -*- coding: utf-8 -*-
"""
Dataclasses shared by the VobSub parsing stages.

Flow of data through the parsers:
    StreamIndex (from .idx) -> RawPacket (from .sub) -> DecodedBitmap

All times are integer milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

RGB = Tuple[int, int, int]

# Private stream 1 substream ids used by DVD subpictures
SUBPICTURE_STREAM_BASE = 0x20
SUBPICTURE_STREAM_LAST = 0x3F


@dataclass(frozen=True)
class IdxEntry:
    """One timestamp/filepos pair from the .idx file."""

    timestamp_ms: int
    file_position: int


@dataclass(frozen=True)
class StreamIndex:
    """
    Parsed .idx file for a single subtitle stream.

    Attributes:
        entries: Timestamp/offset pairs, strictly increasing in time
        palette: The 16-color master palette as RGB tuples
        frame_width: Video frame width from the `size:` field
        frame_height: Video frame height from the `size:` field
        language: Two-letter language id of the selected stream
        stream_index: Index of the selected stream (0-31)
        origin: `org:` offset of the subtitle plane
        time_offset_ms: `time offset:` already applied to the entries
    """

    entries: Tuple[IdxEntry, ...]
    palette: Tuple[RGB, ...]
    frame_width: int
    frame_height: int
    language: str = "en"
    stream_index: int = 0
    origin: Tuple[int, int] = (0, 0)
    time_offset_ms: int = 0

    @property
    def stream_id(self) -> int:
        """Substream id carried by this stream's PES packets."""
        return SUBPICTURE_STREAM_BASE + self.stream_index

    def next_timestamp_ms(self, position: int) -> Optional[int]:
        """Start time of the entry after `position`, if any."""
        if position + 1 < len(self.entries):
            return self.entries[position + 1].timestamp_ms
        return None

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class PalidityMap:
    """
    Per-subtitle 4-slot palette selection with contrast values.

    Slot order is background, pattern, emphasis 1, emphasis 2, which is
    also the meaning of the 2-bit pixel values in the bitmap.

    Attributes:
        colors: Indices into the 16-color master palette
        alphas: Contrast per slot, 0 (transparent) to 15 (opaque)
    """

    colors: Tuple[int, int, int, int] = (0, 1, 2, 3)
    alphas: Tuple[int, int, int, int] = (0, 15, 15, 15)

    def rgb(self, slot: int, palette: Tuple[RGB, ...]) -> RGB:
        return palette[self.colors[slot]]


@dataclass(frozen=True)
class RawPacket:
    """
    A subpicture unit reassembled from one or more PES packets.

    Attributes:
        offset: Byte offset of the first pack header in the .sub file
        stream_id: Substream id (0x20-0x3F)
        data: SPU bytes, exactly `size` long
        size: Declared SPU size
        control_offset: Offset of the first control sequence inside `data`
        pts_ms: Presentation timestamp of the first PES packet, if present
    """

    offset: int
    stream_id: int
    data: bytes
    size: int
    control_offset: int
    pts_ms: Optional[int] = None


@dataclass
class DecodedBitmap:
    """
    A decoded subtitle raster of 2-bit palette slots.

    Attributes:
        entry_index: Position of the source entry in the StreamIndex
        indices: uint8 array (height, width) with values 0-3
        x: Left edge of the display area on screen
        y: Top edge of the display area on screen
        palidity: Slot colors and contrast for this subtitle
        start_ms: Display start
        end_ms: Display end from the stop directive, or None if absent
        forced: Whether the forced-display directive was present
    """

    entry_index: int
    indices: np.ndarray
    x: int
    y: int
    palidity: PalidityMap
    start_ms: int
    end_ms: Optional[int] = None
    forced: bool = False

    @property
    def width(self) -> int:
        return int(self.indices.shape[1])

    @property
    def height(self) -> int:
        return int(self.indices.shape[0])
