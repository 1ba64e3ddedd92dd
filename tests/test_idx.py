# tests/test_idx.py
import pytest

from vobsub_ocr.errors import MalformedIndex
from vobsub_ocr.parsers import load_idx, parse_idx
from tests.fakes import DEFAULT_PALETTE, build_idx


def test_entries_match_timestamp_lines_and_increase():
    pairs = [(1000, 0x0), (3500, 0x800), (7250, 0x1000), (3723456, 0x1800)]
    index = parse_idx(build_idx(pairs))

    assert len(index) == len(pairs)
    assert [e.timestamp_ms for e in index.entries] == [1000, 3500, 7250, 3723456]
    assert [e.file_position for e in index.entries] == [0x0, 0x800, 0x1000, 0x1800]
    stamps = [e.timestamp_ms for e in index.entries]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


def test_palette_and_frame_geometry():
    index = parse_idx(build_idx([(0, 0)], size=(720, 576)))

    assert index.frame_width == 720
    assert index.frame_height == 576
    assert len(index.palette) == 16
    assert index.palette[1] == (0xF0, 0xF0, 0xF0)
    assert index.palette[4] == (0xFF, 0x00, 0x00)
    assert index.stream_id == 0x20


def test_missing_palette_is_malformed():
    text = "size: 720x480\ntimestamp: 00:00:01:000, filepos: 000000000\n"
    with pytest.raises(MalformedIndex, match="palette"):
        parse_idx(text)


def test_missing_size_is_malformed():
    text = build_idx([(0, 0)]).replace("size: 720x480\n", "")
    with pytest.raises(MalformedIndex, match="size"):
        parse_idx(text)


def test_no_entries_is_malformed():
    with pytest.raises(MalformedIndex, match="no timestamp entries"):
        parse_idx(build_idx([]))


def test_short_palette_reports_line_number():
    text = build_idx([(0, 0)], palette=DEFAULT_PALETTE[:15])
    with pytest.raises(MalformedIndex) as excinfo:
        parse_idx(text)
    assert excinfo.value.line_number is not None
    assert "15 colors" in str(excinfo.value)


def test_bad_palette_color():
    palette = list(DEFAULT_PALETTE)
    palette[3] = "zz0000"
    with pytest.raises(MalformedIndex, match="palette color"):
        parse_idx(build_idx([(0, 0)], palette=palette))


def test_bad_timestamp_format():
    text = build_idx([(0, 0)]) + "timestamp: 00:00:xx:000, filepos: 000000000\n"
    with pytest.raises(MalformedIndex, match="invalid timestamp"):
        parse_idx(text)


def test_non_increasing_timestamps_rejected():
    with pytest.raises(MalformedIndex, match="strictly increasing"):
        parse_idx(build_idx([(2000, 0), (2000, 0x800)]))


def test_time_offset_applied_to_every_entry():
    index = parse_idx(build_idx([(1000, 0), (2000, 0x800)], time_offset=-500))

    assert [e.timestamp_ms for e in index.entries] == [500, 1500]
    assert index.time_offset_ms == -500


def test_time_offset_making_timestamps_negative():
    with pytest.raises(MalformedIndex, match="negative"):
        parse_idx(build_idx([(100, 0)], time_offset=-500))


def test_stream_selection():
    streams = {
        0: [(1000, 0x0), (2000, 0x800)],
        1: [(1500, 0x1000)],
    }
    text = build_idx(streams=streams, langidx=1)

    by_langidx = parse_idx(text)
    assert by_langidx.stream_index == 1
    assert by_langidx.stream_id == 0x21
    assert by_langidx.language == "de"
    assert [e.file_position for e in by_langidx.entries] == [0x1000]

    explicit = parse_idx(text, stream_index=0)
    assert explicit.stream_index == 0
    assert len(explicit) == 2

    with pytest.raises(MalformedIndex):
        parse_idx(text, stream_index=5)


def test_langidx_pointing_at_empty_stream_falls_back():
    streams = {0: [], 1: [(1500, 0x0)]}
    index = parse_idx(build_idx(streams=streams, langidx=0))
    assert index.stream_index == 1


@pytest.mark.parametrize("language", ["--", "", "zh-Hant"])
def test_unusual_stream_language_ids_accepted(language):
    text = build_idx([(1000, 0x0)]).replace("id: en", f"id: {language}")
    index = parse_idx(text)

    assert index.language == language
    assert [e.timestamp_ms for e in index.entries] == [1000]


def test_load_idx_from_disk(tmp_path):
    path = tmp_path / "movie.idx"
    path.write_text(build_idx([(1000, 0)]), encoding="utf-8")

    index = load_idx(path)
    assert len(index) == 1
    assert index.next_timestamp_ms(0) is None
