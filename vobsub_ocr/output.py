# vobsub_ocr/output.py
"""
OCR Output - Subtitle Assembly

Merges per-entry recognition results into numbered SubtitleCues.

Workers finish in any order, so results are sorted by their position in the
index before numbering. Entries whose decode failed never produce a result,
so numbering simply skips them.

End time resolution, first match wins:
    1. Stop-display directive from the packet
    2. Start time of the next entry in the index
    3. Start time + default duration
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MS = 4000


@dataclass(frozen=True, slots=True)
class SubtitleCue:
    """One numbered subtitle block."""

    index: int
    start_ms: int
    end_ms: int
    lines: tuple[str, ...] = ()
    forced: bool = False

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def is_blank(self) -> bool:
        return not any(line.strip() for line in self.lines)


@dataclass(slots=True)
class EntryResult:
    """
    Recognition result for one index entry, before numbering.

    Attributes:
        position: Entry position in the StreamIndex
        start_ms: Display start from the decoder
        end_ms: Display end from the stop directive, or None
        next_start_ms: Timestamp of the following index entry, or None
        lines: Recognised text per line crop, top to bottom
        forced: Forced-display flag from the packet
    """

    position: int
    start_ms: int
    end_ms: int | None = None
    next_start_ms: int | None = None
    lines: list[str] = field(default_factory=list)
    forced: bool = False

    def resolve_end_ms(self, default_duration_ms: int = DEFAULT_DURATION_MS) -> int:
        if self.end_ms is not None:
            return self.end_ms
        if self.next_start_ms is not None:
            return self.next_start_ms
        return self.start_ms + default_duration_ms


def assemble_cues(
    results: Iterable[EntryResult],
    keep_empty: bool = True,
    default_duration_ms: int = DEFAULT_DURATION_MS,
) -> list[SubtitleCue]:
    """
    Build numbered cues from entry results.

    Args:
        results: Per-entry results in any order
        keep_empty: Keep entries whose recognised text is blank
        default_duration_ms: Duration used when no end time is known

    Returns:
        Cues numbered 1..N in index order
    """
    cues: list[SubtitleCue] = []
    dropped = 0

    for result in sorted(results, key=lambda r: r.position):
        lines = tuple(result.lines)
        if not keep_empty and not any(line.strip() for line in lines):
            dropped += 1
            continue

        end_ms = result.resolve_end_ms(default_duration_ms)
        if end_ms < result.start_ms:
            logger.warning(
                f"Entry {result.position}: end {end_ms}ms before start "
                f"{result.start_ms}ms, clamping"
            )
            end_ms = result.start_ms

        cues.append(
            SubtitleCue(
                index=len(cues) + 1,
                start_ms=result.start_ms,
                end_ms=end_ms,
                lines=lines,
                forced=result.forced,
            )
        )

    if dropped:
        logger.info(f"Dropped {dropped} blank subtitle(s)")

    return cues
