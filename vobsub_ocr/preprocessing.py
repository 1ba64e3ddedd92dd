# vobsub_ocr/preprocessing.py
"""
Line segmentation for OCR

Tesseract's single-line mode (PSM 7) is far more accurate on DVD subtitles
than block mode, so every composited subtitle is cut into one image per
text line before recognition.

Steps per subtitle:
    1. Find runs of rows that contain ink (horizontal projection)
    2. Merge runs separated by very thin blank gaps
    3. Crop each run, optionally tightened to its ink columns
    4. Optionally upscale short lines
    5. Add a white border
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import cv2
import numpy as np

from .compositor import WHITE, NormalizedImage

if TYPE_CHECKING:
    from .config import OCRSettings

logger = logging.getLogger(__name__)


@dataclass
class PreprocessingConfig:
    """Configuration for line segmentation."""

    # White border around each line crop, in pixels
    border_size: int = 10

    # Blank gaps shorter than this are treated as part of the line
    # (tolerates broken descenders and interlacing dropouts)
    min_gap_rows: int = 2

    # Crop each line to its ink columns instead of the full subtitle width
    crop_horizontal: bool = True

    # Upscaling (disabled when upscale_threshold_height is 0)
    upscale_threshold_height: int = 0
    target_height: int = 80


@dataclass
class LineCrop:
    """
    One text line cut from a subtitle image.

    Attributes:
        entry_index: Position of the parent subtitle in the index
        line_index: Top-to-bottom order within the parent
        image: uint8 black-on-white image including the border
        top, bottom: Row range of the line in the parent (bottom exclusive)
        left, right: Column range of the line in the parent (right exclusive)
    """

    entry_index: int
    line_index: int
    image: np.ndarray
    top: int
    bottom: int
    left: int
    right: int


class LineSegmenter:
    """Splits a NormalizedImage into per-line crops."""

    def __init__(self, config: PreprocessingConfig | None = None):
        self.config = config or PreprocessingConfig()

    def segment(self, image: NormalizedImage) -> list[LineCrop]:
        """
        Split a subtitle image into lines.

        Args:
            image: Composited subtitle

        Returns:
            LineCrops in top-to-bottom order; empty for a blank image
        """
        mask = image.foreground_mask
        row_has_ink = np.any(mask, axis=1)

        if not row_has_ink.any():
            logger.debug(f"Entry {image.entry_index}: blank image, no lines")
            return []

        runs = self._merge_runs(self._find_runs(row_has_ink))

        crops = []
        for line_index, (top, bottom) in enumerate(runs):
            if self.config.crop_horizontal:
                cols = np.flatnonzero(np.any(mask[top:bottom], axis=0))
                left, right = int(cols[0]), int(cols[-1]) + 1
            else:
                left, right = 0, image.width

            line = np.ascontiguousarray(image.pixels[top:bottom, left:right])
            line = self._upscale(line)
            line = self._add_border(line)

            crops.append(
                LineCrop(
                    entry_index=image.entry_index,
                    line_index=line_index,
                    image=line,
                    top=top,
                    bottom=bottom,
                    left=left,
                    right=right,
                )
            )

        logger.debug(f"Entry {image.entry_index}: {len(crops)} line(s) at rows {runs}")
        return crops

    @staticmethod
    def _find_runs(row_has_ink: np.ndarray) -> list[tuple[int, int]]:
        """Contiguous True runs as (start, end) with end exclusive."""
        runs = []
        in_line = False
        line_start = 0

        for i, has_ink in enumerate(row_has_ink):
            if has_ink and not in_line:
                line_start = i
                in_line = True
            elif not has_ink and in_line:
                runs.append((line_start, i))
                in_line = False

        if in_line:
            runs.append((line_start, len(row_has_ink)))

        return runs

    def _merge_runs(self, runs: list[tuple[int, int]]) -> list[tuple[int, int]]:
        merged: list[tuple[int, int]] = []
        for start, end in runs:
            if merged and start - merged[-1][1] < self.config.min_gap_rows:
                merged[-1] = (merged[-1][0], end)
            else:
                merged.append((start, end))
        return merged

    def _upscale(self, line: np.ndarray) -> np.ndarray:
        """
        Upscale short lines to the target height.

        Lanczos leaves gray edges, so binary input is re-thresholded to
        stay binary.
        """
        threshold = self.config.upscale_threshold_height
        height = line.shape[0]
        if threshold <= 0 or height >= threshold or height >= self.config.target_height:
            return line

        scale = self.config.target_height / height
        new_width = max(1, int(round(line.shape[1] * scale)))
        upscaled = cv2.resize(
            line, (new_width, self.config.target_height), interpolation=cv2.INTER_LANCZOS4
        )

        if np.isin(line, (0, WHITE)).all():
            _, upscaled = cv2.threshold(upscaled, 127, WHITE, cv2.THRESH_BINARY)

        return upscaled

    def _add_border(self, line: np.ndarray) -> np.ndarray:
        """
        Add white border around a line.

        Tesseract performs better when text isn't at the edge.
        """
        size = self.config.border_size
        if size <= 0:
            return line

        return cv2.copyMakeBorder(
            line,
            top=size,
            bottom=size,
            left=size,
            right=size,
            borderType=cv2.BORDER_CONSTANT,
            value=WHITE,
        )


def create_preprocessor(settings: OCRSettings) -> LineSegmenter:
    """
    Create a line segmenter from OCR settings.

    Args:
        settings: Typed OCR settings

    Returns:
        Configured LineSegmenter
    """
    config = PreprocessingConfig(
        border_size=settings.border_size,
        min_gap_rows=settings.min_gap_rows,
        crop_horizontal=settings.crop_horizontal,
        upscale_threshold_height=settings.upscale_threshold_height,
        target_height=settings.target_height,
    )
    return LineSegmenter(config)
