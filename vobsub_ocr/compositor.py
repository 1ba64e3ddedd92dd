# vobsub_ocr/compositor.py
# -*- coding: utf-8 -*-
"""
Palette compositing for decoded VobSub bitmaps.

Turns the 2-bit slot raster into an 8-bit image with black text on a white
background, which is what Tesseract expects.

DVD subtitles typically have:
    - Slot 0: Background (transparent)
    - Slot 1: Light text fill (white/yellow) - THE ACTUAL TEXT
    - Slot 2: Dark outline (black) around the glyphs
    - Slot 3: Gray anti-aliasing

Each visible slot gets an ink density from its luminance (relative to the
brightest visible slot) weighted by its contrast value. Bright, opaque
slots become ink; dark outlines and transparent slots drop out. The
background slot is always white, whatever its contrast says.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from .parsers.base import RGB, DecodedBitmap

if TYPE_CHECKING:
    from .config import OCRSettings

logger = logging.getLogger(__name__)

WHITE = 255
MAX_ALPHA = 15


@dataclass
class CompositorConfig:
    """Configuration for palette compositing."""

    # 'binary' -> pure black/white, 'grayscale' -> ink density as gray levels
    mode: str = "binary"
    # Ink density above which a slot counts as text in binary mode (0.0-1.0)
    threshold: float = 0.6


@dataclass
class NormalizedImage:
    """
    Black-on-white 8-bit image of one subtitle.

    Every pixel is either the background value or strictly darker.
    """

    pixels: np.ndarray
    entry_index: int
    background: int = WHITE

    @property
    def foreground_mask(self) -> np.ndarray:
        return self.pixels < self.background

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


def srgb_to_linear(channel: int) -> float:
    """Convert an 8-bit sRGB channel to linear light."""
    value = channel / 255.0
    if value <= 0.04045:
        return value / 12.92
    return ((value + 0.055) / 1.055) ** 2.4


def relative_luminance(rgb: RGB) -> float:
    """Rec. 709 luminance of an sRGB color, 0.0-1.0."""
    r, g, b = (srgb_to_linear(c) for c in rgb)
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


class ImageCompositor:
    """Maps slot rasters through the palette onto a white canvas."""

    def __init__(self, config: CompositorConfig | None = None):
        self.config = config or CompositorConfig()
        if self.config.mode not in ("binary", "grayscale"):
            raise ValueError(f"Unknown composite mode: {self.config.mode!r}")

    def slot_densities(
        self, bitmap: DecodedBitmap, palette: tuple[RGB, ...]
    ) -> list[float]:
        """
        Ink density (0.0-1.0) for each of the 4 slots.

        Slots that are transparent or never used in the raster are 0.0.
        Slot 0 is always 0.0.
        """
        used = np.bincount(bitmap.indices.ravel(), minlength=4) > 0
        palidity = bitmap.palidity

        visible = [
            slot != 0 and bool(used[slot]) and palidity.alphas[slot] > 0
            for slot in range(4)
        ]
        luminances = [
            relative_luminance(palidity.rgb(slot, palette)) for slot in range(4)
        ]

        max_luminance = max(
            (lum for lum, vis in zip(luminances, visible) if vis), default=0.0
        )

        densities = []
        for slot in range(4):
            if not visible[slot]:
                densities.append(0.0)
                continue
            opacity = palidity.alphas[slot] / MAX_ALPHA
            if max_luminance > 0.0:
                densities.append(luminances[slot] / max_luminance * opacity)
            else:
                # All visible colors are black: fall back to contrast only
                densities.append(opacity)
        return densities

    def build_lut(self, bitmap: DecodedBitmap, palette: tuple[RGB, ...]) -> np.ndarray:
        """4-entry slot -> gray lookup table."""
        densities = self.slot_densities(bitmap, palette)
        lut = np.full(4, WHITE, dtype=np.uint8)

        for slot, density in enumerate(densities):
            if density <= 0.0:
                continue
            if self.config.mode == "binary":
                if density > self.config.threshold:
                    lut[slot] = 0
            else:
                lut[slot] = min(WHITE - 1, int(round(WHITE * (1.0 - density))))

        logger.debug(
            f"Entry {bitmap.entry_index}: densities="
            f"{[round(d, 3) for d in densities]}, lut={lut.tolist()}"
        )
        return lut

    def composite(
        self, bitmap: DecodedBitmap, palette: tuple[RGB, ...]
    ) -> NormalizedImage:
        """
        Composite a decoded bitmap.

        Args:
            bitmap: Decoded slot raster with its PalidityMap
            palette: 16-color master palette from the index

        Returns:
            NormalizedImage with white background and dark text
        """
        lut = self.build_lut(bitmap, palette)
        pixels = lut[bitmap.indices]
        return NormalizedImage(pixels=pixels, entry_index=bitmap.entry_index)


def create_compositor(settings: OCRSettings) -> ImageCompositor:
    """Create a compositor from OCR settings."""
    config = CompositorConfig(
        mode=settings.composite_mode,
        threshold=settings.threshold,
    )
    return ImageCompositor(config)
