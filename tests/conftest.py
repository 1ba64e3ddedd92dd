# tests/conftest.py
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pytest

from vobsub_ocr.config import OCRSettings
from tests.fakes import build_idx, build_sub, wrap_spu


@pytest.fixture
def make_vobsub(tmp_path: Path):
    """
    Factory writing an .idx/.sub pair into tmp_path.

    Call with [(timestamp_ms, spu_bytes), ...]; returns the .idx path.
    """
    def _make(
        items: Sequence[Tuple[int, bytes]],
        name: str = "movie",
        fragment_size: Optional[int] = None,
        padding: int = 0,
        **idx_kwargs,
    ) -> Path:
        data, offsets = build_sub(
            wrap_spu(spu, fragment_size=fragment_size, padding=padding)
            for _, spu in items
        )
        entries: List[Tuple[int, int]] = [
            (timestamp_ms, offset) for (timestamp_ms, _), offset in zip(items, offsets)
        ]
        idx_path = tmp_path / f"{name}.idx"
        idx_path.write_text(build_idx(entries, **idx_kwargs), encoding="utf-8")
        idx_path.with_suffix(".sub").write_bytes(data)
        return idx_path

    return _make


@pytest.fixture
def sequential_settings():
    """Settings for an inline, single-worker run."""
    return OCRSettings(max_workers=1)


@pytest.fixture
def capture_progress():
    events = []
    def cb(message: str, progress: float):
        events.append((message, progress))
    return events, cb
