# vobsub_ocr/parsers/vobsub.py
# -*- coding: utf-8 -*-
"""
VobSub (.sub/.idx) subpicture decoder.

An SPU holds two run-length encoded fields (even and odd scanlines) and a
chain of control sequences:

    SP_DCSQ:
        2 bytes  delay in 1024/90000 s ticks
        2 bytes  offset of the next SP_DCSQ (points to itself on the last one)
        commands until 0xFF

RLE encoding (from the DVD subpicture format):
    Value      Bits   Format
    1-3        4      nncc               (half a byte)
    4-15       8      00nnnncc           (one byte)
    16-63     12      0000nnnnnncc       (one and a half byte)
    64-255    16      000000nnnnnnnncc   (two bytes)
    rest       16      00000000000000cc   (fill to end of line)

Each scanline ends on a byte boundary.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path

import numpy as np

from ..errors import (
    CorruptRunLength,
    InvalidPacketHeader,
    UnsupportedControlSequence,
)
from .base import DecodedBitmap, PalidityMap, RawPacket, StreamIndex
from .demux import PacketDemuxer
from .idx import load_idx

logger = logging.getLogger(__name__)

CMD_FORCED = 0x00
CMD_START = 0x01
CMD_STOP = 0x02
CMD_COLORS = 0x03
CMD_ALPHAS = 0x04
CMD_AREA = 0x05
CMD_FIELDS = 0x06
CMD_CHANGE_COLCON = 0x07
CMD_END = 0xFF

# Smallest valid code for a given number of nibbles read so far;
# anything below it continues into a longer code.
_MIN_CODE = {1: 0x004, 2: 0x010, 3: 0x040}


@dataclass
class ControlInfo:
    """Display parameters collected from the control sequence chain."""

    palidity: PalidityMap = field(default_factory=PalidityMap)
    area: tuple[int, int, int, int] | None = None  # x1, y1, x2, y2
    field_offsets: tuple[int, int] | None = None  # top, bottom
    start_delay_ms: int = 0
    stop_delay_ms: int | None = None
    forced: bool = False


def _ticks_to_ms(ticks: int) -> int:
    return ticks * 1024 // 90


def _nibbles(data: bytes, pos: int) -> tuple[int, int, int, int]:
    """Return the 4 slot values of a 16-bit color/contrast word, slot 0 first."""
    b1, b2 = data[pos], data[pos + 1]
    return (b2 & 0x0F, b2 >> 4, b1 & 0x0F, b1 >> 4)


def parse_control_sequence(packet: RawPacket) -> ControlInfo:
    """
    Walk the SP_DCSQ chain of a packet.

    Raises:
        UnsupportedControlSequence: on a directive outside the known set
        InvalidPacketHeader: on truncated directives, loops or missing fields
    """
    data = packet.data
    size = packet.size
    info = ControlInfo()
    colors = info.palidity.colors
    alphas = info.palidity.alphas

    offset = packet.control_offset
    visited: set[int] = set()

    while True:
        if offset in visited:
            raise InvalidPacketHeader(f"control sequence chain loops at {offset}")
        visited.add(offset)
        if offset + 4 > size:
            raise InvalidPacketHeader(f"control sequence header at {offset} cut off")

        delay, next_offset = struct.unpack(">HH", data[offset : offset + 4])
        pos = offset + 4

        while True:
            if pos >= size:
                raise InvalidPacketHeader(f"control sequence at {offset} not terminated")
            cmd = data[pos]
            pos += 1

            if cmd == CMD_END:
                break
            elif cmd == CMD_FORCED:
                info.forced = True
            elif cmd == CMD_START:
                info.start_delay_ms = _ticks_to_ms(delay)
            elif cmd == CMD_STOP:
                info.stop_delay_ms = _ticks_to_ms(delay)
            elif cmd == CMD_COLORS:
                _need(pos, 2, size, cmd)
                colors = _nibbles(data, pos)
                pos += 2
            elif cmd == CMD_ALPHAS:
                _need(pos, 2, size, cmd)
                alphas = _nibbles(data, pos)
                pos += 2
            elif cmd == CMD_AREA:
                _need(pos, 6, size, cmd)
                a = data[pos : pos + 6]
                x1 = (a[0] << 4) | (a[1] >> 4)
                x2 = ((a[1] & 0x0F) << 8) | a[2]
                y1 = (a[3] << 4) | (a[4] >> 4)
                y2 = ((a[4] & 0x0F) << 8) | a[5]
                info.area = (x1, y1, x2, y2)
                pos += 6
            elif cmd == CMD_FIELDS:
                _need(pos, 4, size, cmd)
                info.field_offsets = struct.unpack(">HH", data[pos : pos + 4])
                pos += 4
            elif cmd == CMD_CHANGE_COLCON:
                # Mid-subtitle palette changes; skipped by their declared size
                _need(pos, 2, size, cmd)
                (length,) = struct.unpack(">H", data[pos : pos + 2])
                if length < 2:
                    raise InvalidPacketHeader(f"CHG_COLCON length {length} at {pos}")
                _need(pos, length, size, cmd)
                logger.debug(f"Skipping CHG_COLCON of {length} bytes")
                pos += length
            else:
                raise UnsupportedControlSequence(cmd, pos - 1)

        if next_offset == offset:
            break
        offset = next_offset

    info.palidity = PalidityMap(colors=tuple(colors), alphas=tuple(alphas))
    return info


def _need(pos: int, count: int, size: int, cmd: int) -> None:
    if pos + count > size:
        raise InvalidPacketHeader(
            f"arguments of directive 0x{cmd:02X} at {pos - 1} run past end of packet"
        )


class _RleState(Enum):
    READ_RUN = auto()
    READ_ESCAPE = auto()
    END_OF_LINE = auto()


class _NibbleReader:
    """Reads 4-bit values from a byte range, high nibble first."""

    def __init__(self, data: bytes, start: int, limit: int):
        self.data = data
        self.pos = start * 2
        self.limit = limit * 2

    def read(self) -> int:
        if self.pos >= self.limit:
            raise CorruptRunLength(
                f"field data exhausted at byte {self.pos // 2}"
            )
        byte = self.data[self.pos >> 1]
        nibble = byte >> 4 if self.pos & 1 == 0 else byte & 0x0F
        self.pos += 1
        return nibble

    def align(self) -> None:
        self.pos += self.pos & 1


def decode_field(
    data: bytes, start: int, limit: int, width: int, rows: int
) -> np.ndarray:
    """
    Decode one interlaced field.

    Args:
        data: SPU bytes
        start: Byte offset of the field's RLE data
        limit: First byte offset past the field's data
        width: Scanline width in pixels
        rows: Number of scanlines in this field

    Returns:
        uint8 array (rows, width) of palette slots 0-3

    Raises:
        CorruptRunLength: if a run overflows the scanline or data runs out
    """
    out = np.zeros((rows, width), dtype=np.uint8)
    reader = _NibbleReader(data, start, limit)
    state = _RleState.READ_RUN
    value = 0
    nibbles = 0
    x = 0
    y = 0

    while y < rows:
        if state is _RleState.END_OF_LINE:
            reader.align()
            x = 0
            y += 1
            state = _RleState.READ_RUN
            continue

        nibble = reader.read()
        if state is _RleState.READ_RUN:
            value, nibbles = nibble, 1
        else:
            value, nibbles = (value << 4) | nibble, nibbles + 1

        if nibbles < 4 and value < _MIN_CODE[nibbles]:
            state = _RleState.READ_ESCAPE
            continue

        run = value >> 2
        color = value & 0x03
        if run == 0:
            run = width - x
        if x + run > width:
            raise CorruptRunLength(
                f"run of {run} at x={x} overflows scanline {y} of width {width}"
            )

        out[y, x : x + run] = color
        x += run
        state = _RleState.END_OF_LINE if x == width else _RleState.READ_RUN

    return out


def _field_limit(start: int, boundaries: list[int], size: int) -> int:
    """End of a field: the nearest known section start after it."""
    after = [b for b in boundaries if b > start]
    return min(after) if after else size


def decode_packet(packet: RawPacket, entry_index: int, timestamp_ms: int) -> DecodedBitmap:
    """
    Decode an SPU into a 2-bit indexed raster.

    Args:
        packet: Reassembled SPU from the demuxer
        entry_index: Position of the entry in the StreamIndex
        timestamp_ms: Entry timestamp from the .idx file

    Returns:
        DecodedBitmap with timing from the control sequence
    """
    info = parse_control_sequence(packet)

    if info.area is None:
        raise InvalidPacketHeader("control sequence has no display area")
    if info.field_offsets is None:
        raise InvalidPacketHeader("control sequence has no field offsets")

    x1, y1, x2, y2 = info.area
    width = x2 - x1 + 1
    height = y2 - y1 + 1
    if width <= 0 or height <= 0:
        raise InvalidPacketHeader(f"empty display area {info.area}")

    top, bottom = info.field_offsets
    for offset in (top, bottom):
        if offset < 4 or offset >= packet.size:
            raise InvalidPacketHeader(f"field offset {offset} outside packet")

    boundaries = [top, bottom, packet.control_offset]
    indices = np.zeros((height, width), dtype=np.uint8)
    indices[0::2] = decode_field(
        packet.data, top, _field_limit(top, boundaries, packet.size),
        width, (height + 1) // 2,
    )
    if height > 1:
        indices[1::2] = decode_field(
            packet.data, bottom, _field_limit(bottom, boundaries, packet.size),
            width, height // 2,
        )

    end_ms = None
    if info.stop_delay_ms is not None:
        end_ms = timestamp_ms + info.stop_delay_ms

    logger.debug(
        f"Entry {entry_index}: {width}x{height} at ({x1},{y1}), "
        f"colors={info.palidity.colors}, alphas={info.palidity.alphas}, "
        f"forced={info.forced}"
    )

    return DecodedBitmap(
        entry_index=entry_index,
        indices=indices,
        x=x1,
        y=y1,
        palidity=info.palidity,
        start_ms=timestamp_ms + info.start_delay_ms,
        end_ms=end_ms,
        forced=info.forced,
    )


class VobSubParser:
    """
    Reads a VobSub .idx/.sub pair and decodes its entries on demand.

    The index and the .sub data are loaded once; `decode_entry` is safe to
    call from several threads.
    """

    def __init__(
        self,
        idx_path: Path | str,
        sub_path: Path | str | None = None,
        stream_index: int | None = None,
    ):
        self.idx_path = Path(idx_path)
        self.sub_path = Path(sub_path) if sub_path else self.idx_path.with_suffix(".sub")
        self.stream_index = stream_index

        if not self.idx_path.exists():
            raise FileNotFoundError(f"IDX file not found: {self.idx_path}")
        if not self.sub_path.exists():
            raise FileNotFoundError(f"SUB file not found: {self.sub_path}")

        self.index: StreamIndex | None = None
        self.demuxer: PacketDemuxer | None = None

    @staticmethod
    def can_parse(file_path: Path) -> bool:
        """Check if file is one half of a VobSub pair."""
        suffix = file_path.suffix.lower()
        if suffix == ".idx":
            return file_path.with_suffix(".sub").exists()
        elif suffix == ".sub":
            return file_path.with_suffix(".idx").exists()
        return False

    def load(self) -> StreamIndex:
        """Parse the index and read the .sub data into memory."""
        self.index = load_idx(self.idx_path, stream_index=self.stream_index)
        self.demuxer = PacketDemuxer(self.sub_path.read_bytes())
        logger.info(
            f"Loaded {self.sub_path.name}: {len(self.demuxer.data)} bytes, "
            f"{len(self.index)} entries"
        )
        return self.index

    def decode_entry(self, position: int) -> DecodedBitmap:
        """Demux and decode the entry at `position` in the index."""
        if self.index is None or self.demuxer is None:
            self.load()
        entry = self.index.entries[position]
        packet = self.demuxer.read_packet(entry.file_position, self.index.stream_id)
        return decode_packet(packet, position, entry.timestamp_ms)
