# tests/test_decoder.py
import struct

import numpy as np
import pytest

from vobsub_ocr.errors import (
    CorruptRunLength,
    InvalidPacketHeader,
    UnsupportedControlSequence,
)
from vobsub_ocr.parsers import RawPacket, decode_packet, parse_control_sequence
from vobsub_ocr.parsers.vobsub import decode_field
from tests.fakes import build_spu, encode_field, text_raster


def as_packet(spu: bytes) -> RawPacket:
    (control_offset,) = struct.unpack(">H", spu[2:4])
    return RawPacket(
        offset=0, stream_id=0x20, data=spu, size=len(spu), control_offset=control_offset
    )


def test_rle_round_trip_random_raster():
    rng = np.random.default_rng(7)
    raster = rng.integers(0, 4, size=(11, 37), dtype=np.uint8)

    bitmap = decode_packet(as_packet(build_spu(raster)), entry_index=3, timestamp_ms=0)

    assert bitmap.entry_index == 3
    assert bitmap.indices.shape == (11, 37)
    np.testing.assert_array_equal(bitmap.indices, raster)


def test_rle_round_trip_long_runs():
    # Runs of every code length, including ones split past 255
    raster = np.zeros((6, 300), dtype=np.uint8)
    raster[0, :] = 1
    raster[1, 2:5] = 2
    raster[2, 10:22] = 3
    raster[3, 40:100] = 1
    raster[4, 0:299] = 2
    raster[5, 150:] = 3

    bitmap = decode_packet(as_packet(build_spu(raster)), 0, 0)
    np.testing.assert_array_equal(bitmap.indices, raster)


def test_fill_to_end_of_line_code():
    # 16-bit code with run 0 fills the rest of the scanline
    field = bytes([0x00, 0x01])
    rows = decode_field(field + field, 0, 4, width=9, rows=2)
    np.testing.assert_array_equal(rows, np.ones((2, 9), dtype=np.uint8))


def test_interlaced_fields():
    raster = np.zeros((5, 8), dtype=np.uint8)
    raster[0::2] = 1
    raster[1::2] = 2

    bitmap = decode_packet(as_packet(build_spu(raster)), 0, 0)
    assert (bitmap.indices[0::2] == 1).all()
    assert (bitmap.indices[1::2] == 2).all()


def test_single_row_raster():
    raster = np.array([[0, 1, 1, 2, 3]], dtype=np.uint8)
    bitmap = decode_packet(as_packet(build_spu(raster)), 0, 0)
    np.testing.assert_array_equal(bitmap.indices, raster)


def test_position_and_palidity():
    spu = build_spu(
        text_raster([10]), x=100, y=380, colors=(5, 6, 7, 8), alphas=(0, 3, 9, 15)
    )
    bitmap = decode_packet(as_packet(spu), 0, 0)

    assert (bitmap.x, bitmap.y) == (100, 380)
    assert bitmap.palidity.colors == (5, 6, 7, 8)
    assert bitmap.palidity.alphas == (0, 3, 9, 15)


def test_timing_from_control_sequence():
    spu = build_spu(text_raster([10]), start_delay=90, stop_delay=225)
    bitmap = decode_packet(as_packet(spu), 0, timestamp_ms=1000)

    assert bitmap.start_ms == 1000 + 1024
    assert bitmap.end_ms == 1000 + 2560


def test_no_stop_directive_leaves_end_open():
    bitmap = decode_packet(as_packet(build_spu(text_raster([10]))), 0, 5000)
    assert bitmap.start_ms == 5000
    assert bitmap.end_ms is None


def test_forced_flag():
    assert decode_packet(as_packet(build_spu(text_raster([10]), forced=True)), 0, 0).forced
    assert not decode_packet(as_packet(build_spu(text_raster([10]))), 0, 0).forced


def test_colcon_change_skipped():
    raster = text_raster([10])
    spu = build_spu(raster, extra_commands=b"\x07\x00\x06\x01\x02\x03\x04")
    bitmap = decode_packet(as_packet(spu), 0, 0)
    np.testing.assert_array_equal(bitmap.indices, raster)


def test_unknown_directive_rejected():
    spu = build_spu(text_raster([10]), extra_commands=b"\x09")
    with pytest.raises(UnsupportedControlSequence) as excinfo:
        parse_control_sequence(as_packet(spu))
    assert excinfo.value.command == 0x09


def test_run_overflowing_scanline():
    # One 16-bit code: run 255 of color 1, on a 120 pixel line
    spu = build_spu(text_raster([10]), top_field=b"\x03\xFD")
    with pytest.raises(CorruptRunLength, match="overflows"):
        decode_packet(as_packet(spu), 0, 0)


def test_field_data_ending_early():
    raster = text_raster([40, 60])
    spu = build_spu(raster, top_field=encode_field(raster[0::2])[:-3])
    with pytest.raises(CorruptRunLength, match="exhausted"):
        decode_packet(as_packet(spu), 0, 0)


def test_missing_display_area():
    spu = build_spu(text_raster([10]), include_area=False)
    with pytest.raises(InvalidPacketHeader, match="display area"):
        decode_packet(as_packet(spu), 0, 0)


def test_control_chain_loop():
    spu = bytearray(build_spu(text_raster([10]), stop_delay=100))
    (control_offset,) = struct.unpack(">H", spu[2:4])
    (second,) = struct.unpack(">H", spu[control_offset + 2:control_offset + 4])
    spu[second + 2:second + 4] = struct.pack(">H", control_offset)

    with pytest.raises(InvalidPacketHeader, match="loops"):
        parse_control_sequence(as_packet(bytes(spu)))
