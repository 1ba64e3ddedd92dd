# vobsub_ocr/parsers/demux.py
# -*- coding: utf-8 -*-
"""
MPEG-2 program stream demuxer for VobSub .sub files.

A .sub file is a sequence of 2048-byte packs. Each subtitle (SPU) starts at
the pack header referenced by `filepos` in the .idx file and may continue
over several packs:

    pack header (00 00 01 BA)
    PES private stream 1 (00 00 01 BD) -> substream id (0x20-0x3F) -> SPU bytes
    PES padding stream  (00 00 01 BE) -> ignored
    pack header ...
    PES private stream 1 -> same substream id -> more SPU bytes

The first two SPU bytes give the total SPU size, the next two the offset
of the control sequence.
"""

from __future__ import annotations

import logging
import struct

from ..errors import InvalidPacketHeader, TruncatedStream
from .base import SUBPICTURE_STREAM_BASE, SUBPICTURE_STREAM_LAST, RawPacket

logger = logging.getLogger(__name__)

START_CODE_PREFIX = b"\x00\x00\x01"
PACK_HEADER = 0xBA
PROGRAM_END = 0xB9
PRIVATE_STREAM_1 = 0xBD
PADDING_STREAM = 0xBE

MPEG2_PACK_HEADER_SIZE = 14
MPEG1_PACK_HEADER_SIZE = 12


class PacketDemuxer:
    """
    Random-access reader for subtitle packets in a .sub file.

    Holds the whole file in memory; instances are read-only and can be
    shared between worker threads.
    """

    def __init__(self, data: bytes):
        self.data = bytes(data)

    def read_packet(self, offset: int, stream_id: int | None = None) -> RawPacket:
        """
        Reassemble the SPU starting at `offset`.

        Args:
            offset: Byte offset of the pack header from the .idx entry
            stream_id: Expected substream id; taken from the first packet if None

        Returns:
            RawPacket with exactly the declared number of SPU bytes

        Raises:
            TruncatedStream: if the data ends before the SPU is complete
            InvalidPacketHeader: if a header field is inconsistent
        """
        if offset < 0 or offset >= len(self.data):
            raise InvalidPacketHeader(
                f"offset 0x{offset:X} outside data of {len(self.data)} bytes"
            )

        pos = offset
        payload = bytearray()
        spu_size: int | None = None
        pts_ms: int | None = None
        fragments = 0

        while spu_size is None or len(payload) < spu_size:
            code = self._start_code(pos)

            if code == PACK_HEADER:
                pos = self._skip_pack_header(pos)
                continue

            if code == PROGRAM_END:
                raise TruncatedStream(
                    f"program end at 0x{pos:X} after {len(payload)} of "
                    f"{spu_size if spu_size is not None else '?'} SPU bytes"
                )

            body_start = pos + 6
            if body_start > len(self.data):
                raise TruncatedStream(f"PES header at 0x{pos:X} cut off")
            (length,) = struct.unpack(">H", self.data[pos + 4 : body_start])
            body_end = body_start + length
            if body_end > len(self.data):
                raise TruncatedStream(
                    f"PES packet at 0x{pos:X} declares {length} bytes, "
                    f"{len(self.data) - body_start} available"
                )

            if code == PRIVATE_STREAM_1:
                substream, chunk, pts = self._private_payload(pos, body_start, body_end)

                if fragments == 0:
                    if not SUBPICTURE_STREAM_BASE <= substream <= SUBPICTURE_STREAM_LAST:
                        raise InvalidPacketHeader(
                            f"substream 0x{substream:02X} at 0x{pos:X} is not a subpicture stream"
                        )
                    if stream_id is not None and substream != stream_id:
                        raise InvalidPacketHeader(
                            f"expected substream 0x{stream_id:02X}, "
                            f"found 0x{substream:02X} at 0x{pos:X}"
                        )
                    stream_id = substream
                    pts_ms = pts

                if substream == stream_id:
                    payload.extend(chunk)
                    fragments += 1
                    if spu_size is None and len(payload) >= 2:
                        (spu_size,) = struct.unpack(">H", payload[0:2])
                        if spu_size < 4:
                            raise InvalidPacketHeader(
                                f"declared SPU size {spu_size} at 0x{offset:X} is too small"
                            )
                else:
                    logger.debug(
                        f"Skipping interleaved substream 0x{substream:02X} at 0x{pos:X}"
                    )
            elif code != PADDING_STREAM:
                logger.debug(f"Skipping stream 0x{code:02X} at 0x{pos:X}")

            pos = body_end

        data = bytes(payload[:spu_size])
        (control_offset,) = struct.unpack(">H", data[2:4])
        if control_offset < 4 or control_offset >= spu_size:
            raise InvalidPacketHeader(
                f"control offset {control_offset} outside SPU of {spu_size} bytes"
            )

        if fragments > 1:
            logger.debug(
                f"SPU at 0x{offset:X}: {spu_size} bytes from {fragments} fragments"
            )

        return RawPacket(
            offset=offset,
            stream_id=stream_id,
            data=data,
            size=spu_size,
            control_offset=control_offset,
            pts_ms=pts_ms,
        )

    def _start_code(self, pos: int) -> int:
        if pos + 4 > len(self.data):
            raise TruncatedStream(f"data ends at 0x{len(self.data):X} inside packet")
        if self.data[pos : pos + 3] != START_CODE_PREFIX:
            raise InvalidPacketHeader(f"missing start code at 0x{pos:X}")
        return self.data[pos + 3]

    def _skip_pack_header(self, pos: int) -> int:
        """Return the position after the pack header at `pos`."""
        if pos + 5 > len(self.data):
            raise TruncatedStream(f"pack header at 0x{pos:X} cut off")

        marker = self.data[pos + 4]
        if marker >> 6 == 0b01:
            # MPEG-2: low 3 bits of byte 13 hold the stuffing length
            if pos + MPEG2_PACK_HEADER_SIZE > len(self.data):
                raise TruncatedStream(f"pack header at 0x{pos:X} cut off")
            stuffing = self.data[pos + 13] & 0x07
            end = pos + MPEG2_PACK_HEADER_SIZE + stuffing
        elif marker >> 4 == 0b0010:
            end = pos + MPEG1_PACK_HEADER_SIZE
        else:
            raise InvalidPacketHeader(f"unknown pack header version at 0x{pos:X}")

        if end > len(self.data):
            raise TruncatedStream(f"pack header at 0x{pos:X} cut off")
        return end

    def _private_payload(
        self, pos: int, body_start: int, body_end: int
    ) -> tuple[int, bytes, int | None]:
        """Split a private stream 1 PES body into (substream id, payload, pts_ms)."""
        if body_end - body_start < 3:
            raise InvalidPacketHeader(f"PES packet at 0x{pos:X} too short")

        flags = self.data[body_start]
        if flags >> 6 != 0b10:
            raise InvalidPacketHeader(f"PES packet at 0x{pos:X} is not MPEG-2")

        pts_flags = self.data[body_start + 1] >> 6
        header_length = self.data[body_start + 2]
        header_end = body_start + 3 + header_length
        if header_end >= body_end:
            raise InvalidPacketHeader(
                f"PES header length {header_length} at 0x{pos:X} exceeds packet"
            )

        pts_ms = None
        if pts_flags & 0b10 and header_length >= 5:
            pts_ms = _decode_pts(self.data[body_start + 3 : body_start + 8]) // 90

        substream = self.data[header_end]
        return substream, self.data[header_end + 1 : body_end], pts_ms


def _decode_pts(raw: bytes) -> int:
    """Decode a 33-bit PTS from its 5-byte marker-bit layout (90 kHz ticks)."""
    return (
        ((raw[0] >> 1) & 0x07) << 30
        | raw[1] << 22
        | (raw[2] >> 1) << 15
        | raw[3] << 7
        | raw[4] >> 1
    )
