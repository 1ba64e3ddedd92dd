# vobsub_ocr/writers/srt_writer.py
# -*- coding: utf-8 -*-
"""
SRT subtitle file writer.

Converts assembled SubtitleCues to SRT format. Empty text lines are left
out of a block, since a blank line ends an SRT block.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, TextIO

if TYPE_CHECKING:
    from ..output import SubtitleCue

logger = logging.getLogger(__name__)


def format_srt(cues: Iterable['SubtitleCue']) -> str:
    """
    Render cues as SRT text.

    Args:
        cues: Cues in output order

    Returns:
        SRT document, every block terminated by a blank line
    """
    lines = []

    for cue in cues:
        # Index line
        lines.append(str(cue.index))

        # Timing line
        start_str = _format_srt_time(cue.start_ms)
        end_str = _format_srt_time(cue.end_ms)
        lines.append(f'{start_str} --> {end_str}')

        # Text
        lines.extend(line for line in cue.lines if line.strip())

        # Blank line separator
        lines.append('')

    if not lines:
        return ''
    return '\n'.join(lines) + '\n'


def write_srt(cues: Iterable['SubtitleCue'], stream: TextIO) -> None:
    """Write cues as SRT to an open text stream."""
    stream.write(format_srt(cues))


def write_srt_file(cues: Iterable['SubtitleCue'], path: Path | str | None) -> None:
    """
    Write cues to an SRT file.

    Args:
        cues: Cues in output order
        path: Output path, or None for standard output
    """
    if path is None:
        write_srt(cues, sys.stdout)
        sys.stdout.flush()
        return

    path = Path(path)
    with open(path, 'w', encoding='utf-8') as f:
        write_srt(cues, f)
    logger.info(f"Wrote {path}")


def _format_srt_time(ms: int) -> str:
    """
    Format milliseconds to SRT timestamp.

    Args:
        ms: Time in integer milliseconds

    Returns:
        SRT timestamp (HH:MM:SS,mmm)
    """
    total_ms = int(ms)

    if total_ms < 0:
        total_ms = 0

    milliseconds = total_ms % 1000
    total_seconds = total_ms // 1000
    seconds = total_seconds % 60
    total_minutes = total_seconds // 60
    minutes = total_minutes % 60
    hours = total_minutes // 60

    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{milliseconds:03d}"
