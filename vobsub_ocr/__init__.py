# vobsub_ocr/__init__.py
"""
VobSub OCR

Converts DVD VobSub subtitles (.idx/.sub) to SRT using Tesseract.

Components:
    - parsers: .idx index, MPEG-2 demuxer and subpicture decoder
    - compositor: palette + contrast to black-on-white images
    - preprocessing: per-line crops for single line recognition
    - engine: Tesseract wrapper and failure-tolerant recognition driver
    - output: cue assembly and timing resolution
    - writers: SRT serialization
    - pipeline: worker pool tying everything together
"""

from .config import AppConfig, OCRSettings
from .engine import (
    RecognitionDriver,
    RecognitionEngine,
    TesseractEngine,
    check_ocr_available,
)
from .errors import (
    CorruptRunLength,
    DecodeError,
    InvalidPacketHeader,
    MalformedIndex,
    RecognitionFailure,
    TruncatedStream,
    UnsupportedControlSequence,
    VobSubOCRError,
)
from .output import SubtitleCue, assemble_cues
from .pipeline import OCRPipeline, PipelineResult, run_ocr

__all__ = [
    "AppConfig",
    "CorruptRunLength",
    "DecodeError",
    "InvalidPacketHeader",
    "MalformedIndex",
    "OCRPipeline",
    "OCRSettings",
    "PipelineResult",
    "RecognitionDriver",
    "RecognitionEngine",
    "RecognitionFailure",
    "SubtitleCue",
    "TesseractEngine",
    "TruncatedStream",
    "UnsupportedControlSequence",
    "VobSubOCRError",
    "assemble_cues",
    "check_ocr_available",
    "run_ocr",
]
