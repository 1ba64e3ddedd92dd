# vobsub_ocr/engine.py
"""
Tesseract OCR Engine Wrapper

Every line crop is recognised on its own in single line mode (PSM 7).

    - RecognitionEngine: abstract single-line recognizer
    - TesseractEngine: pytesseract backed implementation
    - RecognitionDriver: feeds LineCrops to an engine, turning engine
      failures into empty lines so one bad crop never aborts a run

Uses pytesseract as the interface to Tesseract 5.x
"""

from __future__ import annotations

import logging
import shlex
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import pytesseract
from PIL import Image

from .config import DEFAULT_BLACKLIST
from .errors import RecognitionFailure

if TYPE_CHECKING:
    from .config import OCRSettings
    from .preprocessing import LineCrop

logger = logging.getLogger(__name__)

SINGLE_LINE_PSM = 7


@dataclass
class OCRConfig:
    """Configuration for OCR engine."""

    language: str = "eng"
    psm: int = SINGLE_LINE_PSM
    oem: int = 1  # LSTM only
    dpi: int = 150
    tessdata_path: str | None = None
    char_blacklist: str = DEFAULT_BLACKLIST
    # Passed to Tesseract as "-c key=value", uninterpreted
    config_overrides: dict[str, str] = field(default_factory=dict)
    # Per call limit in seconds (0 = no limit)
    timeout: float = 30.0


class RecognitionEngine(ABC):
    """Abstract base class for single-line recognizers."""

    name: str = "base"

    @abstractmethod
    def recognize_line(self, image: np.ndarray) -> str:
        """
        Recognise one line of text.

        Args:
            image: uint8 black-on-white line image

        Returns:
            Recognised text, possibly empty

        Raises:
            RecognitionFailure: if the engine could not process the image
        """
        pass


class TesseractEngine(RecognitionEngine):
    """Tesseract OCR engine using pytesseract."""

    name = "tesseract"

    def __init__(self, config: OCRConfig | None = None):
        self.config = config or OCRConfig()
        self._config_string = self._build_config()

    def _build_config(self) -> str:
        """
        Build Tesseract configuration string.

        pytesseract splits this with shlex, so every value is quoted.
        """
        config_parts = [
            f"--psm {self.config.psm}",
            f"--oem {self.config.oem}",
            f"--dpi {self.config.dpi}",
        ]

        if self.config.tessdata_path:
            config_parts.append(f"--tessdata-dir {shlex.quote(self.config.tessdata_path)}")

        variables = {"classify_enable_learning": "0"}
        if self.config.char_blacklist:
            variables["tessedit_char_blacklist"] = self.config.char_blacklist
        variables.update(self.config.config_overrides)

        for key, value in variables.items():
            config_parts.append(f"-c {shlex.quote(f'{key}={value}')}")

        return " ".join(config_parts)

    @property
    def config_string(self) -> str:
        return self._config_string

    def recognize_line(self, image: np.ndarray) -> str:
        try:
            text = pytesseract.image_to_string(
                Image.fromarray(image),
                lang=self.config.language,
                config=self._config_string,
                timeout=self.config.timeout,
            )
        except pytesseract.TesseractError as e:
            raise RecognitionFailure(f"tesseract failed ({e.status}): {e.message}") from e
        except RuntimeError as e:
            # pytesseract reports a timeout as a bare RuntimeError
            raise RecognitionFailure(f"tesseract: {e}") from e
        except OSError as e:
            raise RecognitionFailure(f"could not run tesseract: {e}") from e

        return " ".join(text.split())


class RecognitionDriver:
    """
    Runs LineCrops through a RecognitionEngine.

    Engine failures are logged, counted and degrade to an empty line.
    Safe to share between worker threads as long as the engine is.
    """

    def __init__(self, engine: RecognitionEngine):
        self.engine = engine
        self._lock = threading.Lock()
        self._failures = 0

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    def recognize(self, crop: LineCrop) -> str:
        try:
            return self.engine.recognize_line(crop.image)
        except RecognitionFailure as e:
            self._count_failure()
            logger.warning(
                f"Entry {crop.entry_index} line {crop.line_index}: "
                f"recognition failed, using empty line: {e}"
            )
            return ""
        except Exception as e:
            self._count_failure()
            logger.warning(
                f"Entry {crop.entry_index} line {crop.line_index}: "
                f"engine error, using empty line: {type(e).__name__}: {e}",
                exc_info=True,
            )
            return ""

    def _count_failure(self):
        with self._lock:
            self._failures += 1


def create_ocr_engine(settings: OCRSettings) -> TesseractEngine:
    """
    Create OCR engine from settings.

    Args:
        settings: Typed OCR settings

    Returns:
        Configured TesseractEngine
    """
    if settings.psm != SINGLE_LINE_PSM:
        logger.warning(
            f"PSM {settings.psm} requested; line crops are meant for PSM {SINGLE_LINE_PSM}"
        )

    config = OCRConfig(
        language=settings.language,
        psm=settings.psm,
        oem=settings.oem,
        dpi=settings.dpi,
        tessdata_path=settings.tessdata_path,
        char_blacklist=settings.char_blacklist,
        config_overrides=dict(settings.config_overrides),
        timeout=settings.timeout_seconds,
    )
    return TesseractEngine(config)


def check_ocr_available() -> tuple[bool, str]:
    """
    Check if OCR is available (Tesseract installed).

    Returns:
        Tuple of (is_available, message)
    """
    try:
        version = pytesseract.get_tesseract_version()
    except (pytesseract.TesseractNotFoundError, OSError) as e:
        return False, f"Tesseract not found: {e}"
    return True, f"Tesseract {version} available"
