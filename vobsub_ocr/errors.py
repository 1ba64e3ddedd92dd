# vobsub_ocr/errors.py
"""
Exception hierarchy for the VobSub OCR pipeline.

Index-level errors are fatal for a run. Everything derived from
DecodeError only affects a single subtitle entry, and RecognitionFailure
only a single line crop.
"""


class VobSubOCRError(Exception):
    """Base class for all errors raised by this package."""


class MalformedIndex(VobSubOCRError):
    """The .idx file is missing a required field or a field fails to parse."""

    def __init__(self, message: str, line_number: int | None = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class DecodeError(VobSubOCRError):
    """A single subtitle packet could not be demuxed or decoded."""


class TruncatedStream(DecodeError):
    """Fewer bytes are available than the packet declares."""


class InvalidPacketHeader(DecodeError):
    """A container or control header field is inconsistent."""


class CorruptRunLength(DecodeError):
    """Run-length data overflows a scanline or ends early."""


class UnsupportedControlSequence(DecodeError):
    """A control directive outside the recognized set was found."""

    def __init__(self, command: int, position: int):
        self.command = command
        self.position = position
        super().__init__(
            f"unsupported control directive 0x{command:02X} at byte {position}"
        )


class RecognitionFailure(VobSubOCRError):
    """The OCR engine failed on one line crop."""
