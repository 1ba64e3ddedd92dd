# vobsub_ocr/parsers/__init__.py
"""
VobSub parsers

Stages that turn an .idx/.sub pair into indexed subtitle bitmaps:
    - idx: text index (timestamps, byte offsets, palette, frame size)
    - demux: MPEG-2 program stream packet reassembly
    - vobsub: control sequence and run-length bitmap decoding
"""

from .base import (
    DecodedBitmap,
    IdxEntry,
    PalidityMap,
    RawPacket,
    StreamIndex,
)
from .demux import PacketDemuxer
from .idx import load_idx, parse_idx
from .vobsub import VobSubParser, decode_packet, parse_control_sequence

__all__ = [
    'DecodedBitmap',
    'IdxEntry',
    'PacketDemuxer',
    'PalidityMap',
    'RawPacket',
    'StreamIndex',
    'VobSubParser',
    'decode_packet',
    'load_idx',
    'parse_control_sequence',
    'parse_idx',
]
