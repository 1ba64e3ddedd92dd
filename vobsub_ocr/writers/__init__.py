# vobsub_ocr/writers/__init__.py
"""Subtitle file writers."""

from .srt_writer import format_srt, write_srt, write_srt_file

__all__ = ["format_srt", "write_srt", "write_srt_file"]
