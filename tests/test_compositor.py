# tests/test_compositor.py
import numpy as np
import pytest

from vobsub_ocr.compositor import ImageCompositor, CompositorConfig, create_compositor
from vobsub_ocr.config import OCRSettings
from vobsub_ocr.parsers import DecodedBitmap, PalidityMap
from tests.fakes import DEFAULT_PALETTE, text_raster

PALETTE = tuple(
    (int(c[0:2], 16), int(c[2:4], 16), int(c[4:6], 16)) for c in DEFAULT_PALETTE
)


def make_bitmap(raster, colors=(0, 1, 2, 3), alphas=(0, 15, 15, 15)):
    return DecodedBitmap(
        entry_index=0,
        indices=np.asarray(raster, dtype=np.uint8),
        x=0,
        y=0,
        palidity=PalidityMap(colors=colors, alphas=alphas),
        start_ms=0,
    )


def test_light_text_black_outline_dropped():
    raster = text_raster([30], outline=True)
    image = ImageCompositor().composite(make_bitmap(raster), PALETTE)

    assert image.pixels.dtype == np.uint8
    assert (image.pixels[raster == 1] == 0).all()
    assert (image.pixels[raster == 2] == 255).all()
    assert (image.pixels[raster == 0] == 255).all()


def test_composite_is_idempotent():
    raster = np.random.default_rng(3).integers(0, 4, size=(20, 50), dtype=np.uint8)
    bitmap = make_bitmap(raster, alphas=(0, 15, 9, 12))
    compositor = ImageCompositor(CompositorConfig(mode="grayscale"))

    first = compositor.composite(bitmap, PALETTE)
    second = compositor.composite(bitmap, PALETTE)
    np.testing.assert_array_equal(first.pixels, second.pixels)


@pytest.mark.parametrize("mode", ["binary", "grayscale"])
@pytest.mark.parametrize(
    "colors, alphas",
    [
        ((0, 1, 2, 3), (0, 15, 15, 15)),
        ((15, 1, 3, 13), (15, 15, 7, 4)),
        ((1, 0, 0, 0), (15, 15, 15, 15)),
        ((0, 14, 12, 7), (3, 11, 6, 15)),
    ],
)
def test_background_lighter_than_foreground(mode, colors, alphas):
    raster = np.random.default_rng(11).integers(0, 4, size=(16, 40), dtype=np.uint8)
    image = ImageCompositor(CompositorConfig(mode=mode)).composite(
        make_bitmap(raster, colors, alphas), PALETTE
    )

    assert image.background == 255
    assert (image.pixels[raster == 0] == image.background).all()
    foreground = image.pixels[image.foreground_mask]
    if foreground.size:
        assert foreground.max() < image.background


def test_opaque_bright_background_forced_white():
    raster = text_raster([30])
    bitmap = make_bitmap(raster, colors=(15, 1, 2, 3), alphas=(15, 15, 15, 15))
    image = ImageCompositor().composite(bitmap, PALETTE)

    assert (image.pixels[raster == 0] == 255).all()
    assert (image.pixels[raster == 1] == 0).all()


def test_transparent_text_is_blank():
    raster = text_raster([30])
    image = ImageCompositor().composite(make_bitmap(raster, alphas=(0, 0, 15, 15)), PALETTE)
    assert not image.foreground_mask.any()


def test_all_dark_glyphs_fall_back_to_contrast():
    raster = text_raster([30])
    image = ImageCompositor().composite(make_bitmap(raster, colors=(0, 0, 0, 0)), PALETTE)
    assert (image.pixels[raster == 1] == 0).all()


def test_grayscale_uses_contrast_as_density():
    raster = text_raster([30])
    bitmap = make_bitmap(raster, alphas=(0, 8, 15, 15))

    gray = ImageCompositor(CompositorConfig(mode="grayscale")).composite(bitmap, PALETTE)
    assert (gray.pixels[raster == 1] == 119).all()

    # 8/15 is below the default threshold
    binary = ImageCompositor().composite(bitmap, PALETTE)
    assert not binary.foreground_mask.any()


def test_unused_slots_do_not_affect_normalisation():
    # Slot 3 is brighter than slot 1 but absent from the raster
    raster = text_raster([30])
    bitmap = make_bitmap(raster, colors=(0, 13, 2, 15))
    densities = ImageCompositor().slot_densities(bitmap, PALETTE)

    assert densities[1] == pytest.approx(1.0)
    assert densities[3] == 0.0


def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        ImageCompositor(CompositorConfig(mode="sepia"))


def test_create_compositor_from_settings():
    compositor = create_compositor(OCRSettings(composite_mode="grayscale", threshold=0.3))
    assert compositor.config.mode == "grayscale"
    assert compositor.config.threshold == 0.3
