# tests/test_engine.py
import shlex

import numpy as np
import pytesseract
import pytest

from vobsub_ocr.config import OCRSettings
from vobsub_ocr.engine import (
    OCRConfig,
    RecognitionDriver,
    TesseractEngine,
    create_ocr_engine,
)
from vobsub_ocr.errors import RecognitionFailure
from vobsub_ocr.preprocessing import LineCrop
from tests.fakes import FailingEngine, WidthEngine


def make_crop(ink: int, line_index: int = 0) -> LineCrop:
    image = np.full((20, ink + 20), 255, dtype=np.uint8)
    image[5:15, 10:10 + ink] = 0
    return LineCrop(
        entry_index=0, line_index=line_index, image=image,
        top=0, bottom=10, left=0, right=ink,
    )


def test_config_string_defaults():
    args = shlex.split(TesseractEngine().config_string)

    assert args[args.index("--psm") + 1] == "7"
    assert args[args.index("--oem") + 1] == "1"
    assert args[args.index("--dpi") + 1] == "150"
    assert "classify_enable_learning=0" in args
    assert "tessedit_char_blacklist=|\\/`_~" in args
    assert "--tessdata-dir" not in args


def test_config_string_overrides_and_tessdata():
    config = OCRConfig(
        tessdata_path="/opt/tess data",
        config_overrides={"load_system_dawg": "0", "classify_enable_learning": "1"},
    )
    args = shlex.split(TesseractEngine(config).config_string)

    assert args[args.index("--tessdata-dir") + 1] == "/opt/tess data"
    assert "load_system_dawg=0" in args
    assert "classify_enable_learning=1" in args
    assert "classify_enable_learning=0" not in args


def test_recognize_line_passes_settings(monkeypatch):
    seen = {}

    def fake_image_to_string(image, lang, config, timeout):
        seen.update(size=image.size, lang=lang, config=config, timeout=timeout)
        return "  HELLO \n\x0c"

    monkeypatch.setattr(pytesseract, "image_to_string", fake_image_to_string)
    engine = TesseractEngine(OCRConfig(language="deu", timeout=5))

    assert engine.recognize_line(make_crop(30).image) == "HELLO"
    assert seen["lang"] == "deu"
    assert seen["timeout"] == 5
    assert seen["size"] == (50, 20)
    assert seen["config"] == engine.config_string


@pytest.mark.parametrize(
    "error",
    [
        pytesseract.TesseractError(1, "Error opening data file"),
        RuntimeError("Tesseract process timeout"),
        pytesseract.TesseractNotFoundError(),
    ],
)
def test_engine_errors_become_recognition_failure(monkeypatch, error):
    def broken(*args, **kwargs):
        raise error

    monkeypatch.setattr(pytesseract, "image_to_string", broken)
    with pytest.raises(RecognitionFailure):
        TesseractEngine().recognize_line(make_crop(10).image)


def test_driver_degrades_failure_to_empty_line(caplog):
    driver = RecognitionDriver(FailingEngine({30: "OK"}, fail_widths=[40]))

    assert driver.recognize(make_crop(30)) == "OK"
    with caplog.at_level("WARNING"):
        assert driver.recognize(make_crop(40, line_index=1)) == ""

    assert driver.failures == 1
    assert "line 1" in caplog.text


def test_driver_counts_nothing_on_success():
    driver = RecognitionDriver(WidthEngine({30: "OK"}))
    driver.recognize(make_crop(30))
    assert driver.failures == 0


def test_create_ocr_engine_from_settings():
    settings = OCRSettings(
        language="fra", oem=3, dpi=300, char_blacklist="", timeout_seconds=2.5,
        config_overrides={"textord_min_xheight": "8"},
    )
    engine = create_ocr_engine(settings)
    args = shlex.split(engine.config_string)

    assert engine.config.language == "fra"
    assert engine.config.timeout == 2.5
    assert args[args.index("--dpi") + 1] == "300"
    assert not any(a.startswith("tessedit_char_blacklist") for a in args)
    assert "textord_min_xheight=8" in args
